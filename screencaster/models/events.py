"""Event models for merge progress reporting."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class MergeStep(Enum):
    """Post-processing steps, in execution order."""
    DENOISE = 0
    ANALYZE = 1
    NORMALIZE = 2
    MERGE = 3
    DERIVED = 4

    @property
    def label(self) -> str:
        return STEP_LABELS[self]


STEP_LABELS = {
    MergeStep.DENOISE: "Removing background noise",
    MergeStep.ANALYZE: "Analyzing audio",
    MergeStep.NORMALIZE: "Normalizing audio",
    MergeStep.MERGE: "Merging video and audio",
    MergeStep.DERIVED: "Creating vertical video",
}


class ProgressKind(Enum):
    """What a progress event says about its step."""
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressKind.COMPLETED, ProgressKind.SKIPPED, ProgressKind.FAILED)


@dataclass
class ProgressEvent:
    """A single merge-pipeline progress event."""
    step: MergeStep
    kind: ProgressKind
    percent: Optional[float] = None  # Only set for PROGRESS events, 0-100
    error: Optional[str] = None      # Failure reason, or why a step was skipped
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class SessionEvent:
    """Session lifecycle event."""
    event_type: str  # "started", "paused", "resumed", "stopped", "completed", "failed"
    part: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    message: Optional[str] = None
