"""Terminal output."""

from .console import (
    ProgressPrinter,
    format_progress_event,
    print_start_report,
    print_status,
    print_teardown_report,
    render_status,
)

__all__ = [
    'ProgressPrinter',
    'format_progress_event',
    'print_start_report',
    'print_status',
    'print_teardown_report',
    'render_status',
]
