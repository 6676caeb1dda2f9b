"""Durable per-recording record (recording.json) kept next to the captured files."""

import os
import re
import socket
import platform
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .. import __version__
from .session import SessionState, SourceKind

logger = logging.getLogger(__name__)

RECORDING_INFO_FILE = "recording.json"
APP_VERSION = __version__


class RecordingStatus(str, Enum):
    """Lifecycle status written to recording.json."""
    RECORDING = "recording"
    PAUSED = "paused"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_state(cls, state: SessionState) -> "RecordingStatus":
        return cls(state.value)


class RecordingMetadata(BaseModel):
    """User-provided information about a recording."""
    number: int = 0
    title: str = ""
    description: str = ""
    presenter: str = ""
    folder_name: Optional[str] = None

    def generate_folder_name(self) -> str:
        """Build the ``NNN-sanitized-title`` folder name and remember it."""
        sanitized = sanitize_for_filename(self.title) or "recording"
        self.folder_name = f"{self.number:03d}-{sanitized}"
        return self.folder_name


class RecordingSettings(BaseModel):
    """Settings a session was started with, reused by resume."""
    screen_enabled: bool = True
    audio_enabled: bool = True
    camera_enabled: bool = True
    monitor: Optional[str] = None
    audio_device: Optional[str] = None
    camera_device: Optional[str] = None
    camera_fps: int = 60
    hardware_accel: bool = False
    denoise_enabled: bool = False
    normalize_enabled: bool = True
    vertical_enabled: bool = True

    def enabled_sources(self) -> List[SourceKind]:
        enabled = []
        if self.screen_enabled:
            enabled.append(SourceKind.SCREEN)
        if self.audio_enabled:
            enabled.append(SourceKind.AUDIO)
        if self.camera_enabled:
            enabled.append(SourceKind.CAMERA)
        return enabled

    def device_for(self, kind: SourceKind) -> Optional[str]:
        return {
            SourceKind.SCREEN: self.monitor,
            SourceKind.AUDIO: self.audio_device,
            SourceKind.CAMERA: self.camera_device,
        }[kind]


class FileInfo(BaseModel):
    """Paths and sizes of everything a recording produced."""
    folder_path: str = ""
    current_part: int = 0
    parts: Dict[str, List[str]] = Field(default_factory=dict)
    current_files: Dict[str, str] = Field(default_factory=dict)
    merged_file: Optional[str] = None
    vertical_file: Optional[str] = None
    sizes: Dict[str, int] = Field(default_factory=dict)
    total_size: int = 0

    def parts_for(self, kind: SourceKind) -> List[str]:
        return list(self.parts.get(kind.value, []))

    def has_parts(self) -> bool:
        return any(self.parts.values())


class ProcessingInfo(BaseModel):
    """Outcome of post-processing."""
    processed_at: Optional[datetime] = None
    processing_seconds: Optional[float] = None
    normalize_applied: bool = False
    vertical_created: bool = False
    skipped: bool = False
    errors: List[str] = Field(default_factory=list)


class EnvironmentInfo(BaseModel):
    """Machine the recording was made on."""
    os: str = Field(default_factory=lambda: platform.system().lower())
    arch: str = Field(default_factory=platform.machine)
    hostname: str = Field(default_factory=socket.gethostname)
    desktop_environment: str = Field(default_factory=lambda: detect_desktop_environment())


class RecordingInfo(BaseModel):
    """Everything known about one recording, persisted as recording.json."""
    metadata: RecordingMetadata = Field(default_factory=RecordingMetadata)
    status: RecordingStatus = RecordingStatus.RECORDING
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    environment: EnvironmentInfo = Field(default_factory=EnvironmentInfo)
    files: FileInfo = Field(default_factory=FileInfo)
    settings: RecordingSettings = Field(default_factory=RecordingSettings)
    processing: ProcessingInfo = Field(default_factory=ProcessingInfo)
    app_version: str = APP_VERSION
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def info_path(self) -> Path:
        return Path(self.files.folder_path) / RECORDING_INFO_FILE

    def save(self) -> Optional[str]:
        """Write recording.json into the recording folder.

        Returns:
            Path of the written file, or None when no folder is set
        """
        if not self.files.folder_path:
            return None

        self.updated_at = datetime.now()
        info_path = self.info_path
        info_path.parent.mkdir(parents=True, exist_ok=True)
        with open(info_path, "w", encoding="utf-8") as f:
            f.write(self.model_dump_json(indent=2))

        logger.debug(f"Recording info saved: {info_path} (status={self.status.value})")
        return str(info_path)

    @classmethod
    def load(cls, folder_path: str) -> "RecordingInfo":
        """Load recording.json from a recording folder.

        Raises:
            FileNotFoundError: If the folder holds no recording.json
            ValueError: If the file cannot be parsed
        """
        info_path = Path(folder_path) / RECORDING_INFO_FILE
        with open(info_path, "r", encoding="utf-8") as f:
            data = f.read()
        return cls.model_validate_json(data)

    def set_status(self, status: RecordingStatus) -> None:
        self.status = status
        self.updated_at = datetime.now()

    def set_end_time(self, end_time: datetime) -> None:
        self.end_time = end_time
        self.duration_seconds = (end_time - self.start_time).total_seconds()
        self.updated_at = datetime.now()

    def append_part(self, kind: SourceKind, path: str) -> None:
        """Add a new part file to the source's part sequence."""
        parts = self.files.parts.setdefault(kind.value, [])
        if path not in parts:
            parts.append(path)
        self.files.current_files[kind.value] = path

    def update_file_sizes(self) -> None:
        """Refresh the size of every current, merged, and derived file."""
        sizes = {}
        candidates = dict(self.files.current_files)
        if self.files.merged_file:
            candidates["merged"] = self.files.merged_file
        if self.files.vertical_file:
            candidates["vertical"] = self.files.vertical_file

        for name, path in candidates.items():
            if path and os.path.isfile(path):
                sizes[name] = os.path.getsize(path)

        self.files.sizes = sizes
        self.files.total_size = sum(sizes.values())
        self.updated_at = datetime.now()


def sanitize_for_filename(text: str) -> str:
    """Lowercase, hyphenate and strip a title so it is safe as a folder name."""
    text = text.lower().replace(" ", "-")
    text = re.sub(r"[^a-z0-9\-_]", "", text)
    text = re.sub(r"-+", "-", text)
    return text.strip("-")[:50]


def detect_desktop_environment() -> str:
    for var in ("XDG_CURRENT_DESKTOP", "DESKTOP_SESSION"):
        value = os.environ.get(var)
        if value:
            return value
    if os.environ.get("GNOME_DESKTOP_SESSION_ID"):
        return "GNOME"
    if os.environ.get("KDE_FULL_SESSION"):
        return "KDE"
    return "Unknown"


def format_file_size(size: int) -> str:
    """Human readable file size."""
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{int(value)} B" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"
