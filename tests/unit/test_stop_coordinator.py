"""Unit tests for StopCoordinator."""

import time

import pytest

from screencaster.errors import SourceTerminateError
from screencaster.models.session import SourceKind
from screencaster.services.stop_coordinator import StopCoordinator
from screencaster.storage.state_store import cmd_key, pid_key


@pytest.fixture
def slow_source_class(fake_source):
    class SlowSource(fake_source):
        """Takes a while to stop and optionally reports a problem."""

        def __init__(self, kind, delay=0.5, error=None):
            super().__init__(kind)
            self.delay = delay
            self.error = error

        def terminate(self, target, grace_period=2.0, poll_interval=0.2, expected_command=None):
            time.sleep(self.delay)
            super().terminate(target, grace_period, poll_interval, expected_command)
            return self.error

    return SlowSource


@pytest.mark.unit
class TestStopCoordinator:
    """Test cases for concurrent teardown."""

    def test_terminates_every_recorded_source(self, store, fake_source):
        sources = {kind: fake_source(kind) for kind in SourceKind}
        store.write_pid(SourceKind.SCREEN, 2001)
        store.write_pid(SourceKind.AUDIO, 2002)

        report = StopCoordinator(store, sources, settle_delay=0).teardown()

        assert set(report.stopped) == {SourceKind.SCREEN, SourceKind.AUDIO}
        assert sources[SourceKind.SCREEN].terminated == [2001]
        assert sources[SourceKind.AUDIO].terminated == [2002]
        assert sources[SourceKind.CAMERA].terminated == []
        assert report.warnings == []

    def test_pid_records_cleared_path_records_kept(self, store, fake_source):
        sources = {kind: fake_source(kind) for kind in SourceKind}
        store.write_pid(SourceKind.CAMERA, 2003)
        store.write_path(SourceKind.CAMERA, "/tmp/camera_part000.mp4")

        StopCoordinator(store, sources, settle_delay=0).teardown()

        assert store.read_pid(SourceKind.CAMERA) is None
        assert store.read_path(SourceKind.CAMERA) == "/tmp/camera_part000.mp4"

    def test_sources_stop_concurrently(self, store, slow_source_class):
        sources = {kind: slow_source_class(kind, delay=0.5) for kind in SourceKind}
        for index, kind in enumerate(SourceKind):
            store.write_pid(kind, 3000 + index)

        report = StopCoordinator(store, sources, settle_delay=0).teardown()

        assert len(report.stopped) == 3
        # Sequential teardown would need at least 1.5s
        assert report.elapsed_seconds < 1.2

    def test_terminate_problems_become_warnings(self, store, slow_source_class, fake_source):
        problem = SourceTerminateError(SourceKind.AUDIO, "pid 2002 had to be killed")
        sources = {kind: fake_source(kind) for kind in SourceKind}
        sources[SourceKind.AUDIO] = slow_source_class(SourceKind.AUDIO, delay=0, error=problem)
        store.write_pid(SourceKind.SCREEN, 2001)
        store.write_pid(SourceKind.AUDIO, 2002)

        report = StopCoordinator(store, sources, settle_delay=0).teardown()

        assert report.warnings == [problem]
        assert store.read_pid(SourceKind.AUDIO) is None

    def test_malformed_pid_record_is_dropped(self, store, fake_source):
        sources = {kind: fake_source(kind) for kind in SourceKind}
        store.write_record(pid_key(SourceKind.SCREEN), "garbage")

        report = StopCoordinator(store, sources, settle_delay=0).teardown()

        assert report.stopped == []
        assert sources[SourceKind.SCREEN].terminated == []
        assert not store.has_record(pid_key(SourceKind.SCREEN))

    def test_nothing_recorded_skips_settle_delay(self, store, fake_source):
        sources = {kind: fake_source(kind) for kind in SourceKind}

        report = StopCoordinator(store, sources, settle_delay=5.0).teardown()

        assert report.stopped == []
        assert report.elapsed_seconds < 1.0

    def test_settle_delay_after_stopping(self, store, fake_source):
        sources = {kind: fake_source(kind) for kind in SourceKind}
        store.write_pid(SourceKind.SCREEN, 2001)

        report = StopCoordinator(store, sources, settle_delay=0.2).teardown()

        assert report.elapsed_seconds >= 0.2

    def test_unregistered_source_record_is_cleared(self, store, fake_source):
        store.write_pid(SourceKind.CAMERA, 2003)

        report = StopCoordinator(store, {SourceKind.SCREEN: fake_source(SourceKind.SCREEN)},
                                 settle_delay=0).teardown()

        assert report.stopped == [SourceKind.CAMERA]
        assert store.read_pid(SourceKind.CAMERA) is None

    def test_recorded_command_is_passed_to_terminate(self, store, fake_source):
        sources = {kind: fake_source(kind) for kind in SourceKind}
        store.write_pid(SourceKind.SCREEN, 2001)
        store.write_command(SourceKind.SCREEN, ["wl-screenrec", "-f", "/tmp/screen part000.mp4"])
        store.write_pid(SourceKind.AUDIO, 2002)

        StopCoordinator(store, sources, settle_delay=0).teardown()

        assert sources[SourceKind.SCREEN].expected_commands == [
            ["wl-screenrec", "-f", "/tmp/screen part000.mp4"]]
        assert sources[SourceKind.AUDIO].expected_commands == [None]
        assert not store.has_record(cmd_key(SourceKind.SCREEN))
