"""Unit tests for rich console output."""

import io
from datetime import datetime, timedelta

import pytest
from rich.console import Console

from screencaster.errors import SourceLaunchError
from screencaster.models.capture import StartReport, SourceHandle
from screencaster.models.events import MergeStep, ProgressEvent, ProgressKind
from screencaster.models.recording_info import RecordingInfo, RecordingMetadata, RecordingStatus
from screencaster.models.session import SessionState, SessionStatus, SourceKind, SourceStatus
from screencaster.ui.console import (
    ProgressPrinter,
    format_duration,
    format_progress_event,
    print_recordings,
    print_start_report,
    print_status,
)


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=120, color_system=None)


def output(console):
    return console.file.getvalue()


@pytest.mark.unit
class TestConsoleOutput:
    """Test cases for status and report rendering."""

    @pytest.mark.parametrize("seconds,expected", [
        (0, "00:00"),
        (75.9, "01:15"),
        (3725, "1:02:05"),
    ])
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected

    def test_status_lists_sources(self, console):
        status = SessionStatus(
            state=SessionState.RECORDING,
            is_recording=True,
            current_part=2,
            start_time=datetime.now() - timedelta(seconds=65),
            sources={
                SourceKind.SCREEN: SourceStatus(SourceKind.SCREEN, pid=101, file="/v/screen_part002.mp4",
                                                alive=True),
                SourceKind.CAMERA: SourceStatus(SourceKind.CAMERA, pid=102, alive=False),
            },
            crashed_sources=[SourceKind.CAMERA],
        )

        print_status(console, status)

        text = output(console)
        assert "recording" in text
        assert "Part: 2" in text
        assert "screen_part002.mp4" in text
        assert "crashed" in text
        assert "exited unexpectedly: camera" in text

    def test_idle_status(self, console):
        print_status(console, SessionStatus())

        assert "idle" in output(console)

    def test_start_report_shows_errors_and_warnings(self, console):
        report = StartReport(
            started=[SourceHandle(kind=SourceKind.AUDIO, command=["rec"], output_path="a.wav")],
            errors=[SourceLaunchError(SourceKind.SCREEN, "wl-screenrec [exit 1]")],
            warnings=[SourceLaunchError(SourceKind.CAMERA, "device busy")],
        )

        print_start_report(console, report, resumed=True)

        text = output(console)
        assert "Resumed recording (audio)" in text
        assert "Error: screen: wl-screenrec [exit 1]" in text
        assert "Warning: camera: device busy" in text

    def test_recordings_table(self, console):
        finished = RecordingInfo(metadata=RecordingMetadata(number=1, title="Intro"),
                                 status=RecordingStatus.COMPLETED)
        finished.files.folder_path = "/v/001-intro"
        finished.append_part(SourceKind.SCREEN, "/v/001-intro/screen_part000.mp4")
        finished.append_part(SourceKind.SCREEN, "/v/001-intro/screen_part001.mp4")
        finished.files.total_size = 3 * 1024 * 1024
        empty = RecordingInfo(metadata=RecordingMetadata(number=2, title="Broken"),
                              status=RecordingStatus.FAILED)

        print_recordings(console, [finished, empty])

        lines = output(console).splitlines()
        intro = next(line for line in lines if "Intro" in line)
        broken = next(line for line in lines if "Broken" in line)
        assert "001" in intro
        assert "completed" in intro
        assert " 2 " in intro
        assert "3.0 MB" in intro
        assert "failed" in broken
        assert " - " in broken

    def test_no_recordings(self, console):
        print_recordings(console, [])

        assert "No recordings found" in output(console)


@pytest.mark.unit
class TestProgressOutput:
    """Test cases for merge progress lines."""

    def test_format_progress_event(self):
        started = ProgressEvent(step=MergeStep.MERGE, kind=ProgressKind.STARTED)
        failed = ProgressEvent(step=MergeStep.MERGE, kind=ProgressKind.FAILED, error="code 1")
        skipped = ProgressEvent(step=MergeStep.DENOISE, kind=ProgressKind.SKIPPED)

        assert "[....]" in format_progress_event(started)
        assert "Merging video and audio: code 1" in format_progress_event(failed)
        assert format_progress_event(skipped).endswith("Removing background noise")

    def test_printer_throttles_percent_lines(self, console):
        printer = ProgressPrinter(console)

        for percent in range(0, 101, 2):
            printer.on_event(ProgressEvent(step=MergeStep.MERGE, kind=ProgressKind.PROGRESS,
                                           percent=float(percent)))

        lines = [line for line in output(console).splitlines() if "%" in line]
        assert len(lines) == 11
        assert "100%" in lines[-1]

    def test_printer_prints_boundaries(self, console):
        printer = ProgressPrinter(console)

        printer.on_event(ProgressEvent(step=MergeStep.ANALYZE, kind=ProgressKind.STARTED))
        printer.on_event(ProgressEvent(step=MergeStep.ANALYZE, kind=ProgressKind.COMPLETED))

        text = output(console)
        assert "[....] Analyzing audio" in text
        assert "[DONE] Analyzing audio" in text

    def test_printer_header_printed_once_before_first_line(self, console):
        printer = ProgressPrinter(console, header="Processing recordings...")

        assert output(console) == ""

        printer.on_event(ProgressEvent(step=MergeStep.MERGE, kind=ProgressKind.STARTED))
        printer.on_event(ProgressEvent(step=MergeStep.MERGE, kind=ProgressKind.COMPLETED))

        lines = output(console).splitlines()
        assert lines[0] == "Processing recordings..."
        assert len([line for line in lines if "Processing recordings" in line]) == 1
        assert "[DONE] Merging video and audio" in lines[-1]
