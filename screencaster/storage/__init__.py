"""Persistent storage: session records and recording folders."""

from .state_store import SessionStateStore, is_process_alive
from .file_manager import RecordingFolders, part_file_name

__all__ = [
    'SessionStateStore',
    'is_process_alive',
    'RecordingFolders',
    'part_file_name',
]
