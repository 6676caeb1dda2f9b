"""Synchronized start of all enabled capture sources."""

import time
import queue
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Mapping, Optional, Set

from ..capture.base import CaptureSource
from ..errors import NoSourcesStartedError, SourceLaunchError
from ..models.capture import SourceHandle, StartReport
from ..models.session import SourceKind
from ..storage.file_manager import part_file_name
from ..storage.state_store import SessionStateStore, START_TIME_KEY

logger = logging.getLogger(__name__)

READY = "ready"
STARTED = "started"
FAILED = "failed"


class StartCoordinator:
    """Brings up capture sources together behind a single barrier.

    Every source gets a worker thread that prepares its command, reports
    ready and then waits on the barrier. The coordinator releases the barrier
    once, so all launches happen at (almost) the same instant.
    """

    def __init__(self,
                 store: SessionStateStore,
                 capture_sources: Mapping[SourceKind, CaptureSource],
                 ready_timeout: float = 5.0,
                 started_timeout: float = 5.0,
                 grace_period: float = 2.0):
        """Initialize the coordinator.

        Args:
            store: Session state store the started sources are recorded in
            capture_sources: Capture source per kind
            ready_timeout: Seconds to wait for all workers to become ready
            started_timeout: Seconds to wait for launch confirmations
            grace_period: Grace period used when tearing down a failed start
        """
        self.store = store
        self.capture_sources = dict(capture_sources)
        self.ready_timeout = ready_timeout
        self.started_timeout = started_timeout
        self.grace_period = grace_period

    def start(self,
              sources: Mapping[SourceKind, Optional[str]],
              part_number: int,
              output_dir: str) -> StartReport:
        """Start the given sources writing part ``part_number`` into ``output_dir``.

        Args:
            sources: Enabled source kinds mapped to their device selector
            part_number: Part the new files belong to
            output_dir: Recording folder

        Returns:
            StartReport with the started handles, warnings and errors

        Raises:
            NoSourcesStartedError: If not a single source started
        """
        report = StartReport()
        if not sources:
            raise NoSourcesStartedError()

        events: "queue.Queue" = queue.Queue()
        barrier = threading.Event()
        admitted: Set[SourceKind] = set()
        late_lock = threading.Lock()
        closed = threading.Event()
        workers = []

        for kind, device in sources.items():
            source = self.capture_sources.get(kind)
            if source is None:
                self._record_failure(report, SourceLaunchError(kind, "no capture source registered"))
                continue

            target = str(Path(output_dir) / part_file_name(kind, part_number))
            worker = threading.Thread(
                target=self._run_worker,
                args=(source, target, device, events, barrier, admitted, late_lock, closed),
                daemon=True,
            )
            worker.name = f"StartWorker-{kind.value}"
            worker.start()
            workers.append(kind)

        # Phase 1: collect ready signals
        pending = set(workers)
        handles: Dict[SourceKind, SourceHandle] = {}
        deadline = time.monotonic() + self.ready_timeout
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                status, kind, handle, error = events.get(timeout=remaining)
            except queue.Empty:
                break
            pending.discard(kind)
            if status == READY:
                handles[kind] = handle
            else:
                self._record_failure(report, error)

        for kind in pending:
            self._record_failure(
                report, SourceLaunchError(kind, f"not ready within {self.ready_timeout:.1f}s"))

        # Phase 2: release the barrier once for every ready worker
        admitted.update(handles)
        logger.debug(f"Releasing start barrier for: {', '.join(k.value for k in admitted) or 'nothing'}")
        barrier.set()

        expected = set(admitted)
        deadline = time.monotonic() + self.started_timeout
        while expected:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                status, kind, handle, error = events.get(timeout=remaining)
            except queue.Empty:
                break
            if kind not in expected:
                continue
            expected.discard(kind)
            if status == STARTED:
                report.started.append(handle)
            else:
                self._record_failure(report, error)

        # Workers still launching now own their process and stop it themselves
        with late_lock:
            closed.set()
        for kind in expected:
            self._record_failure(
                report, SourceLaunchError(kind, f"did not start within {self.started_timeout:.1f}s"))

        if not report.started:
            # Path records of earlier parts belong to the paused session
            for kind in sources:
                self.store.clear_process(kind)
            logger.error("Start failed: no capture source could be started")
            raise NoSourcesStartedError(errors=report.errors + report.warnings)

        order = list(SourceKind)
        report.started.sort(key=lambda handle: order.index(handle.kind))
        for handle in report.started:
            self.store.write_pid(handle.kind, handle.pid)
            self.store.write_command(handle.kind, handle.command)
            self.store.write_path(handle.kind, handle.output_path)

        start_time = self.store.read_timestamp(START_TIME_KEY)
        if start_time is None:
            start_time = datetime.now()
            self.store.write_timestamp(START_TIME_KEY, start_time)
        report.start_time = start_time

        logger.info(f"Started part {part_number} with sources: "
                    f"{', '.join(k.value for k in report.started_kinds)}")
        return report

    def _run_worker(self, source: CaptureSource, target: str, device: Optional[str],
                    events: "queue.Queue", barrier: threading.Event, admitted: Set[SourceKind],
                    late_lock: threading.Lock, closed: threading.Event) -> None:
        """Worker thread: prepare, report ready, wait for the barrier, launch."""
        kind = source.kind
        try:
            handle = source.prepare(target, device)
        except (OSError, ValueError) as e:
            events.put((FAILED, kind, None, SourceLaunchError(kind, f"prepare failed: {e}")))
            return

        events.put((READY, kind, handle, None))

        if not barrier.wait(timeout=self.ready_timeout + self.started_timeout):
            return
        if kind not in admitted:
            logger.debug(f"{kind.value} missed the start barrier, not launching")
            return

        result = source.launch(handle)

        with late_lock:
            if not closed.is_set():
                if result.ok:
                    events.put((STARTED, kind, handle, None))
                else:
                    events.put((FAILED, kind, handle, result.error))
                return

        if result.ok:
            logger.warning(f"{kind.value} started after the start window closed, stopping it")
            source.terminate(handle, self.grace_period)

    @staticmethod
    def _record_failure(report: StartReport, error: Exception) -> None:
        kind = getattr(error, "kind", None)
        if kind is not None and kind.is_primary:
            logger.error(f"Screen capture failed: {error}")
            report.errors.append(error)
        else:
            logger.warning(f"Capture source unavailable: {error}")
            report.warnings.append(error)
