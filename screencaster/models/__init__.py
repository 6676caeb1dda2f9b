"""Data models for the screencaster application."""

from .session import SourceKind, SessionState, SourceStatus, SessionStatus
from .capture import SourceHandle, LaunchResult, StartReport, TeardownReport
from .events import MergeStep, ProgressKind, ProgressEvent, SessionEvent
from .recording_info import (
    RecordingStatus,
    RecordingMetadata,
    RecordingSettings,
    FileInfo,
    ProcessingInfo,
    RecordingInfo,
)

__all__ = [
    "SourceKind",
    "SessionState",
    "SourceStatus",
    "SessionStatus",
    "SourceHandle",
    "LaunchResult",
    "StartReport",
    "TeardownReport",
    # Progress reporting
    "MergeStep",
    "ProgressKind",
    "ProgressEvent",
    "SessionEvent",
    # recording.json
    "RecordingStatus",
    "RecordingMetadata",
    "RecordingSettings",
    "FileInfo",
    "ProcessingInfo",
    "RecordingInfo",
]
