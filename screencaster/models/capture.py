"""Capture-source data models."""

import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .session import SourceKind


@dataclass
class SourceHandle:
    """Launch configuration and runtime handle for one capture process."""
    kind: SourceKind
    command: List[str]
    output_path: str
    device: Optional[str] = None
    process: Optional[subprocess.Popen] = None
    pid: Optional[int] = None
    started: bool = False
    error: Optional[Exception] = None


@dataclass
class LaunchResult:
    """Outcome of launching a capture process."""
    pid: Optional[int] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.pid is not None


@dataclass
class StartReport:
    """What the start coordinator managed to bring up."""
    started: List[SourceHandle] = field(default_factory=list)
    warnings: List[Exception] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)
    start_time: Optional[datetime] = None

    @property
    def started_kinds(self) -> List[SourceKind]:
        return [handle.kind for handle in self.started]


@dataclass
class TeardownReport:
    """What the stop coordinator terminated."""
    stopped: List[SourceKind] = field(default_factory=list)
    warnings: List[Exception] = field(default_factory=list)
    elapsed_seconds: float = 0.0
