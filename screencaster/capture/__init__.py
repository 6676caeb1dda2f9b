"""Capture sources wrapping external recorder processes."""

from .base import CaptureSource
from .sources import ScreenSource, AudioSource, CameraSource, SOURCE_TYPES, build_source

__all__ = [
    'CaptureSource',
    'ScreenSource',
    'AudioSource',
    'CameraSource',
    'SOURCE_TYPES',
    'build_source',
]
