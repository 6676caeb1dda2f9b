"""Pytest configuration and fixtures for screencaster tests."""

import os
import sys
import time
import signal
import logging
import tempfile
from pathlib import Path
from typing import List, Optional

import pytest
import yaml
from pubsub import pub

from screencaster.capture.base import CaptureSource
from screencaster.config import ScreencasterConfig
from screencaster.errors import MergeError, SourceLaunchError
from screencaster.models.capture import LaunchResult
from screencaster.models.events import MergeStep
from screencaster.models.session import SourceKind
from screencaster.processing.merger import MergePipeline, MergeResult
from screencaster.storage.state_store import SessionStateStore


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Capture commands: a real short-lived process that creates its output file
SLEEPER_SCRIPT = "import sys, time; open(sys.argv[1], 'w').close(); time.sleep(30)"
STUBBORN_SCRIPT = (
    "import signal, sys, time; "
    "signal.signal(signal.SIGINT, signal.SIG_IGN); "
    "signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "open(sys.argv[1], 'w').close(); time.sleep(60)"
)
MISSING_BINARY = "/nonexistent/screencaster-test-recorder"


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external processes")
    config.addinivalue_line("markers", "integration: tests that spawn real processes")


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def state_dir(temp_data_dir):
    return str(Path(temp_data_dir) / "state")


@pytest.fixture
def output_root(temp_data_dir):
    return str(Path(temp_data_dir) / "videos")


@pytest.fixture
def store(state_dir):
    return SessionStateStore(state_dir)


@pytest.fixture
def sleeper_command():
    return [sys.executable, "-c", SLEEPER_SCRIPT, "{output}"]


@pytest.fixture
def stubborn_command():
    return [sys.executable, "-c", STUBBORN_SCRIPT, "{output}"]


@pytest.fixture
def missing_command():
    return [MISSING_BINARY, "{output}"]


@pytest.fixture
def config_factory(temp_data_dir, state_dir, output_root, sleeper_command):
    """Write a configuration file and load it.

    Every source records with the sleeper command unless overridden.
    """
    def make_config(commands: Optional[dict] = None, enabled: Optional[dict] = None,
                    **sections) -> ScreencasterConfig:
        commands = commands or {}
        enabled = enabled or {}
        data = {
            "state": {"directory": state_dir},
            "recording": {
                "output_directory": output_root,
                "ready_timeout": 5.0,
                "started_timeout": 5.0,
                "launch_probe": 0.1,
            },
            "stop": {"grace_period": 1.0, "poll_interval": 0.05, "settle_delay": 0.0},
            "sources": {
                kind.value: {
                    "enabled": enabled.get(kind.value, True),
                    "command": commands.get(kind.value, sleeper_command),
                }
                for kind in SourceKind
            },
            "logging": {"console_output": False},
        }
        for section, values in sections.items():
            data.setdefault(section, {}).update(values)

        config_path = Path(temp_data_dir) / "screencaster.yaml"
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f)
        return ScreencasterConfig(str(config_path))

    return make_config


@pytest.fixture
def config(config_factory):
    return config_factory()


class FakeSource(CaptureSource):
    """In-memory capture source that never spawns a process."""

    def __init__(self, kind: SourceKind, pid: int = 4242, fail: bool = False,
                 prepare_delay: float = 0.0):
        super().__init__()
        self.kind = kind
        self.pid = pid
        self.fail = fail
        self.prepare_delay = prepare_delay
        self.launched_at: Optional[float] = None
        self.terminated: List[object] = []
        self.expected_commands: List[object] = []

    def build_command(self, target_path, device):
        return ["fake-recorder", target_path]

    def prepare(self, target_path, device_selector=None):
        if self.prepare_delay:
            time.sleep(self.prepare_delay)
        return super().prepare(target_path, device_selector)

    def launch(self, handle):
        self.launched_at = time.monotonic()
        if self.fail:
            handle.error = SourceLaunchError(self.kind, "device busy")
            return LaunchResult(error=handle.error)
        handle.pid = self.pid
        handle.started = True
        return LaunchResult(pid=self.pid)

    def terminate(self, target, grace_period=2.0, poll_interval=0.2, expected_command=None):
        self.terminated.append(target)
        self.expected_commands.append(expected_command)
        return None


@pytest.fixture
def fake_source():
    """Factory for FakeSource instances."""
    return FakeSource


class FakePipeline(MergePipeline):
    """Merge pipeline that reports every step without running ffmpeg."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.calls = []

    def merge(self, options, on_step=None, on_percent=None):
        self.calls.append(options)
        for step in (MergeStep.DENOISE, MergeStep.ANALYZE, MergeStep.NORMALIZE):
            on_step(step, False, False, None)
            on_step(step, True, True, None)

        on_step(MergeStep.MERGE, False, False, None)
        if self.delay:
            time.sleep(self.delay)
        on_percent(MergeStep.MERGE, 50.0)
        if self.fail:
            error = MergeError("ffmpeg exited with code 1")
            on_step(MergeStep.MERGE, True, False, error)
            raise error
        on_percent(MergeStep.MERGE, 100.0)
        on_step(MergeStep.MERGE, True, False, None)
        on_step(MergeStep.DERIVED, True, True, None)

        merged = str(Path(options.output_dir) / "screen-merged.mp4")
        Path(merged).touch()
        return MergeResult(merged_file=merged)


@pytest.fixture
def fake_pipeline():
    """Factory for FakePipeline instances."""
    return FakePipeline


@pytest.fixture
def kill_leftovers(store):
    """Kill any capture process a test left behind."""
    yield
    for kind in SourceKind:
        pid = store.read_pid(kind)
        if pid is None:
            continue
        try:
            os.killpg(pid, signal.SIGKILL)
        except OSError:
            pass
        store.is_alive(pid)


@pytest.fixture(autouse=True)
def clean_pubsub():
    yield
    pub.unsubAll()
