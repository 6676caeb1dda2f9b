"""File management for recording folders and their recording.json records."""

import re
import logging
from pathlib import Path
from datetime import datetime
from typing import List, Optional

from ..models.recording_info import RecordingInfo, RecordingMetadata, RECORDING_INFO_FILE
from ..models.session import SourceKind

logger = logging.getLogger(__name__)

FOLDER_PATTERN = re.compile(r"^(\d{3})-")

PART_FILE_TEMPLATES = {
    SourceKind.SCREEN: "screen_part{part:03d}.mp4",
    SourceKind.AUDIO: "audio_part{part:03d}.wav",
    SourceKind.CAMERA: "camera_part{part:03d}.mp4",
}


def part_file_name(kind: SourceKind, part: int) -> str:
    """File name of a source's part, e.g. ``screen_part001.mp4``."""
    return PART_FILE_TEMPLATES[kind].format(part=part)


class RecordingFolders:
    """Manages the numbered recording folders under the output root."""

    def __init__(self, output_root: str):
        """Initialize with the directory recording folders are created in.

        Args:
            output_root: Base directory for all recordings
        """
        self.output_root = Path(output_root)
        self.output_root.mkdir(parents=True, exist_ok=True)
        logger.info(f"RecordingFolders initialized with output_root: {self.output_root}")

    def scan_highest_number(self) -> int:
        """Highest ``NNN-`` folder number under the output root (0 if none)."""
        highest = 0
        try:
            for entry in self.output_root.iterdir():
                if not entry.is_dir():
                    continue
                match = FOLDER_PATTERN.match(entry.name)
                if match:
                    highest = max(highest, int(match.group(1)))
        except FileNotFoundError:
            return 0
        return highest

    def next_number(self) -> int:
        return self.scan_highest_number() + 1

    def create_recording_folder(self, title: Optional[str] = None,
                                description: str = "",
                                presenter: str = "") -> RecordingInfo:
        """Create a new numbered recording folder with an initial recording.json.

        Args:
            title: Recording title, defaults to a timestamp
            description: Free-form description
            presenter: Presenter name

        Returns:
            The RecordingInfo of the new recording (already saved)
        """
        metadata = RecordingMetadata(
            number=self.next_number(),
            title=title or datetime.now().strftime("%Y-%m-%d-%H%M%S"),
            description=description,
            presenter=presenter,
        )
        folder = self.output_root / metadata.generate_folder_name()
        folder.mkdir(parents=True, exist_ok=True)

        info = RecordingInfo(metadata=metadata)
        info.files.folder_path = str(folder)
        info.save()

        logger.info(f"Created recording folder: {folder}")
        return info

    def list_recordings(self) -> List[str]:
        """List recording folders that hold a recording.json, oldest first."""
        recordings = []
        try:
            for path in self.output_root.iterdir():
                if path.is_dir() and (path / RECORDING_INFO_FILE).exists():
                    recordings.append(str(path))
        except FileNotFoundError:
            return []
        recordings.sort()
        return recordings

    def load_recording(self, folder: str) -> Optional[RecordingInfo]:
        """Load a recording's info, or None if it is missing or unreadable."""
        try:
            return RecordingInfo.load(folder)
        except FileNotFoundError:
            logger.warning(f"Recording info not found in: {folder}")
            return None
        except ValueError as e:
            logger.error(f"Error loading recording info from {folder}: {e}")
            return None
