"""Session-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any


class SourceKind(Enum):
    """Capture sources a session can record from."""
    SCREEN = "screen"
    AUDIO = "audio"
    CAMERA = "camera"

    @property
    def is_primary(self) -> bool:
        """The screen stream is the main artifact of a recording."""
        return self is SourceKind.SCREEN


class SessionState(Enum):
    """Coordination state of the recording session."""
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SourceStatus:
    """Persisted view of one capture source."""
    kind: SourceKind
    pid: Optional[int] = None
    file: Optional[str] = None
    alive: bool = False


@dataclass
class SessionStatus:
    """Status of the session as derived from the state store."""
    state: SessionState = SessionState.IDLE
    is_recording: bool = False
    is_paused: bool = False
    is_processing: bool = False
    current_part: int = 0
    start_time: Optional[datetime] = None
    output_dir: Optional[str] = None
    sources: Dict[SourceKind, SourceStatus] = field(default_factory=dict)
    crashed_sources: List[SourceKind] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        return max(0.0, (datetime.now(self.start_time.tzinfo) - self.start_time).total_seconds())

    def to_dict(self) -> Dict[str, Any]:
        """Plain dictionary for JSON output."""
        return {
            "state": self.state.value,
            "is_recording": self.is_recording,
            "is_paused": self.is_paused,
            "is_processing": self.is_processing,
            "current_part": self.current_part,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "duration_seconds": round(self.duration_seconds, 1),
            "output_dir": self.output_dir,
            "sources": {
                kind.value: {"pid": source.pid, "file": source.file, "alive": source.alive}
                for kind, source in self.sources.items()
            },
            "crashed_sources": [kind.value for kind in self.crashed_sources],
        }
