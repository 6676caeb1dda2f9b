"""Post-processing: merge pipeline and its progress relay."""

from .progress import MergeProgressRelay
from .merger import MergePipeline, FFmpegMergePipeline, MergeOptions, MergeResult

__all__ = [
    'MergeProgressRelay',
    'MergePipeline',
    'FFmpegMergePipeline',
    'MergeOptions',
    'MergeResult',
]
