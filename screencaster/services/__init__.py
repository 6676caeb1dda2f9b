"""Session coordination services."""

from .start_coordinator import StartCoordinator
from .stop_coordinator import StopCoordinator
from .session_manager import SessionManager, SessionStateMachine, StopResult, SESSION_TOPIC

__all__ = [
    'StartCoordinator',
    'StopCoordinator',
    'SessionManager',
    'SessionStateMachine',
    'StopResult',
    'SESSION_TOPIC',
]
