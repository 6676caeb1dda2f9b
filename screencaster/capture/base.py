"""Abstract base class for capture sources."""

import os
import time
import signal
import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from ..errors import SourceLaunchError, SourceTerminateError
from ..models.capture import SourceHandle, LaunchResult
from ..models.session import SourceKind
from ..storage.state_store import is_process_alive, process_matches_command

logger = logging.getLogger(__name__)

KILL_CONFIRM_TIMEOUT = 1.0


class CaptureSource(ABC):
    """Lifecycle wrapper around one external capture process.

    Subclasses only decide which command to run; launching, probing and
    terminating are shared.
    """

    kind: SourceKind

    def __init__(self,
                 device: Optional[str] = None,
                 command_template: Optional[List[str]] = None,
                 launch_probe: float = 0.2,
                 options: Optional[Dict[str, object]] = None):
        """Initialize the source.

        Args:
            device: Default device selector used when prepare() gets none
            command_template: argv template overriding the built-in command;
                              may use {output}, {device}, {fps}, {display}
            launch_probe: Seconds to watch a new process for an early exit
            options: Extra per-kind settings (fps, resolution, hardware_accel)
        """
        self.default_device = device
        self.command_template = command_template
        self.launch_probe = launch_probe
        self.options = dict(options or {})

    @abstractmethod
    def build_command(self, target_path: str, device: Optional[str]) -> List[str]:
        """Build the built-in capture command for this source.

        Args:
            target_path: File the capture tool must write to
            device: Device selector (monitor, audio source, camera device)

        Returns:
            argv list
        """
        pass

    def template_values(self, target_path: str, device: Optional[str]) -> Dict[str, object]:
        return {
            "output": target_path,
            "device": device or "",
            "fps": self.options.get("fps", 60),
            "resolution": self.options.get("resolution", ""),
            "display": os.environ.get("DISPLAY", ":0"),
        }

    def prepare(self, target_path: str, device_selector: Optional[str] = None) -> SourceHandle:
        """Build the launch configuration without starting anything."""
        device = device_selector or self.default_device
        Path(target_path).parent.mkdir(parents=True, exist_ok=True)

        if self.command_template:
            values = self.template_values(target_path, device)
            try:
                command = [part.format(**values) for part in self.command_template]
            except (KeyError, IndexError) as e:
                raise ValueError(f"Invalid {self.kind.value} command template: {e}")
        else:
            command = self.build_command(target_path, device)

        logger.debug(f"Prepared {self.kind.value} capture: {' '.join(command)}")
        return SourceHandle(kind=self.kind, command=command, output_path=target_path, device=device)

    def launch(self, handle: SourceHandle) -> LaunchResult:
        """Start the capture process.

        Failures are returned, not raised: a session can go on without this
        source.
        """
        try:
            process = subprocess.Popen(
                handle.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            handle.error = SourceLaunchError(self.kind, f"failed to start {handle.command[0]}: {e}")
            return LaunchResult(error=handle.error)

        if self.launch_probe > 0:
            try:
                returncode = process.wait(timeout=self.launch_probe)
            except subprocess.TimeoutExpired:
                returncode = None
            if returncode is not None:
                handle.error = SourceLaunchError(
                    self.kind, f"{handle.command[0]} exited immediately with code {returncode}")
                return LaunchResult(error=handle.error)

        handle.process = process
        handle.pid = process.pid
        handle.started = True
        logger.info(f"Started {self.kind.value} capture (pid {process.pid}) -> {handle.output_path}")
        return LaunchResult(pid=process.pid)

    def terminate(self,
                  target: Union[SourceHandle, int],
                  grace_period: float = 2.0,
                  poll_interval: float = 0.2,
                  expected_command: Optional[Sequence[str]] = None) -> Optional[Exception]:
        """Stop a capture process, escalating SIGINT -> SIGTERM -> SIGKILL.

        Args:
            target: Handle from launch() or a bare PID read from the state store
            grace_period: Seconds allowed for a graceful exit before SIGKILL
            poll_interval: Liveness polling interval for bare PIDs
            expected_command: Command a bare PID was started with; a process
                              running anything else is left alone

        Returns:
            None on a clean exit (or if the process was already gone), the
            error otherwise. Never raises.
        """
        if isinstance(target, SourceHandle):
            process, pid = target.process, target.pid
        else:
            process, pid = None, target

        if not pid or not self._alive(process, pid):
            return None

        if process is None and not process_matches_command(pid, expected_command):
            logger.warning(f"pid {pid} no longer runs the {self.kind.value} capture command, not signalling it")
            return None

        deadline = time.monotonic() + grace_period
        escalation = [(signal.SIGINT, 0.75), (signal.SIGTERM, 1.0)]

        for sig, share in escalation:
            try:
                self._signal(pid, sig)
            except ProcessLookupError:
                return None
            except PermissionError as e:
                return SourceTerminateError(self.kind, f"not allowed to signal pid {pid}: {e}")

            step_deadline = time.monotonic() + grace_period * share
            if self._wait(process, pid, min(step_deadline, deadline), poll_interval):
                logger.info(f"{self.kind.value} capture (pid {pid}) stopped after {sig.name}")
                return None

        logger.warning(f"{self.kind.value} capture (pid {pid}) ignored graceful stop, killing")
        try:
            self._signal(pid, signal.SIGKILL)
        except ProcessLookupError:
            return None
        except PermissionError as e:
            return SourceTerminateError(self.kind, f"not allowed to kill pid {pid}: {e}")

        if not self._wait(process, pid, time.monotonic() + KILL_CONFIRM_TIMEOUT, poll_interval):
            return SourceTerminateError(self.kind, f"pid {pid} survived SIGKILL")
        return SourceTerminateError(self.kind, f"pid {pid} had to be killed")

    @staticmethod
    def _signal(pid: int, sig: signal.Signals) -> None:
        # Capture tools run in their own session; signal the whole group
        # so helper children stop too.
        try:
            if os.getpgid(pid) == pid:
                os.killpg(pid, sig)
                return
        except ProcessLookupError:
            raise
        except OSError:
            pass
        os.kill(pid, sig)

    @staticmethod
    def _alive(process: Optional[subprocess.Popen], pid: int) -> bool:
        if process is not None:
            return process.poll() is None
        return is_process_alive(pid)

    def _wait(self, process: Optional[subprocess.Popen], pid: int,
              deadline: float, poll_interval: float) -> bool:
        """Wait until the process is gone or the deadline passes."""
        while True:
            remaining = deadline - time.monotonic()
            if process is not None:
                try:
                    process.wait(timeout=max(remaining, 0))
                    return True
                except subprocess.TimeoutExpired:
                    return False
            if not is_process_alive(pid):
                return True
            if remaining <= 0:
                return False
            time.sleep(min(poll_interval, remaining))
