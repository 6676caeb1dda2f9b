"""Concrete capture sources: screen, microphone and webcam."""

import os
import sys
import logging
from typing import Dict, List, Optional, Type

from .base import CaptureSource
from ..config import ScreencasterConfig
from ..models.session import SourceKind

logger = logging.getLogger(__name__)


def _is_wayland() -> bool:
    return bool(os.environ.get("WAYLAND_DISPLAY")) or os.environ.get("XDG_SESSION_TYPE") == "wayland"


class ScreenSource(CaptureSource):
    """Screen recorder (wl-screenrec on Wayland, ffmpeg elsewhere)."""

    kind = SourceKind.SCREEN

    def build_command(self, target_path: str, device: Optional[str]) -> List[str]:
        fps = str(self.options.get("fps", 60))

        if sys.platform == "darwin":
            return ["ffmpeg", "-f", "avfoundation", "-framerate", fps,
                    "-i", f"{device or '1'}:none",
                    "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
                    "-y", target_path]

        if sys.platform.startswith("win"):
            return ["ffmpeg", "-f", "gdigrab", "-framerate", fps, "-i", device or "desktop",
                    "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
                    "-y", target_path]

        if _is_wayland():
            command = ["wl-screenrec"]
            if not self.options.get("hardware_accel", False):
                command.append("--no-hw")
            if device:
                command.append(f"--output={device}")
            command.append(f"--filename={target_path}")
            return command

        display = device or os.environ.get("DISPLAY", ":0")
        return ["ffmpeg", "-f", "x11grab", "-framerate", fps, "-i", display,
                "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
                "-y", target_path]


class AudioSource(CaptureSource):
    """Microphone recorder writing WAV (pw-record on Linux)."""

    kind = SourceKind.AUDIO

    def build_command(self, target_path: str, device: Optional[str]) -> List[str]:
        if sys.platform == "darwin":
            return ["ffmpeg", "-f", "avfoundation", "-i", f":{device or '0'}",
                    "-acodec", "pcm_s16le", "-y", target_path]

        if sys.platform.startswith("win"):
            return ["ffmpeg", "-f", "dshow", "-i", f"audio={device or 'default'}",
                    "-acodec", "pcm_s16le", "-y", target_path]

        return ["pw-record", "--target", device or "@DEFAULT_SOURCE@", target_path]


class CameraSource(CaptureSource):
    """Webcam recorder (ffmpeg v4l2 on Linux)."""

    kind = SourceKind.CAMERA

    def build_command(self, target_path: str, device: Optional[str]) -> List[str]:
        fps = str(self.options.get("fps", 60))
        resolution = str(self.options.get("resolution") or "1920x1080")

        if sys.platform == "darwin":
            return ["ffmpeg", "-f", "avfoundation", "-framerate", fps, "-video_size", resolution,
                    "-i", f"{device or '0'}:none",
                    "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
                    "-y", target_path]

        if sys.platform.startswith("win"):
            return ["ffmpeg", "-f", "dshow", "-framerate", fps, "-video_size", resolution,
                    "-i", f"video={device or 'default'}",
                    "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
                    "-y", target_path]

        return ["ffmpeg", "-f", "v4l2", "-input_format", "mjpeg",
                "-framerate", fps, "-video_size", resolution,
                "-i", device or "/dev/video0",
                "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
                "-y", target_path]


SOURCE_TYPES: Dict[SourceKind, Type[CaptureSource]] = {
    SourceKind.SCREEN: ScreenSource,
    SourceKind.AUDIO: AudioSource,
    SourceKind.CAMERA: CameraSource,
}


def build_source(kind: SourceKind, config: ScreencasterConfig) -> CaptureSource:
    """Create the capture source for a kind from configuration.

    Args:
        kind: Which source to build
        config: Loaded configuration (sources.<kind>.* and recording.launch_probe)

    Returns:
        Configured CaptureSource instance
    """
    section = config.get(f"sources.{kind.value}", {}) or {}
    options = {key: value for key, value in section.items()
               if key not in ("enabled", "command", "device")}

    source_class = SOURCE_TYPES[kind]
    return source_class(
        device=section.get("device"),
        command_template=config.get_source_command(kind.value),
        launch_probe=float(config.get("recording.launch_probe", 0.2)),
        options=options,
    )
