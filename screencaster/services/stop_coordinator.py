"""Concurrent teardown of the active capture sources."""

import time
import logging
import threading
from typing import Dict, List, Mapping, Optional

from ..capture.base import CaptureSource, KILL_CONFIRM_TIMEOUT
from ..models.capture import TeardownReport
from ..models.session import SourceKind
from ..storage.state_store import SessionStateStore

logger = logging.getLogger(__name__)


class StopCoordinator:
    """Terminates every source that has a PID record, all at once."""

    def __init__(self,
                 store: SessionStateStore,
                 capture_sources: Mapping[SourceKind, CaptureSource],
                 grace_period: float = 2.0,
                 poll_interval: float = 0.2,
                 settle_delay: float = 0.3):
        """Initialize the coordinator.

        Args:
            store: Session state store holding the PID records
            capture_sources: Capture source per kind
            grace_period: Seconds each source gets to exit before it is killed
            poll_interval: Liveness polling interval while waiting
            settle_delay: Pause after teardown so the capture tools finish writing
        """
        self.store = store
        self.capture_sources = dict(capture_sources)
        self.grace_period = grace_period
        self.poll_interval = poll_interval
        self.settle_delay = settle_delay

    def teardown(self) -> TeardownReport:
        """Stop all recorded sources concurrently and clear their process records.

        Termination problems end up as warnings in the report; they never
        abort the teardown.
        """
        report = TeardownReport()
        started_at = time.monotonic()
        errors: Dict[SourceKind, Optional[Exception]] = {}
        threads: List[threading.Thread] = []

        for kind in SourceKind:
            pid = self.store.read_pid(kind)
            if pid is None:
                # Malformed or empty record, drop it
                self.store.clear_process(kind)
                continue

            thread = threading.Thread(target=self._stop_source, args=(kind, pid, errors), daemon=True)
            thread.name = f"StopWorker-{kind.value}"
            thread.start()
            threads.append(thread)
            report.stopped.append(kind)

        join_timeout = self.grace_period + KILL_CONFIRM_TIMEOUT + 1.0
        for thread in threads:
            thread.join(timeout=join_timeout)
            if thread.is_alive():
                logger.warning(f"{thread.name} did not finish in time")

        for kind in report.stopped:
            error = errors.get(kind)
            if error is not None:
                logger.warning(f"Teardown warning: {error}")
                report.warnings.append(error)

        if report.stopped and self.settle_delay > 0:
            time.sleep(self.settle_delay)

        report.elapsed_seconds = time.monotonic() - started_at
        logger.info(f"Teardown of {len(report.stopped)} source(s) took {report.elapsed_seconds:.2f}s")
        return report

    def _stop_source(self, kind: SourceKind, pid: int,
                     errors: Dict[SourceKind, Optional[Exception]]) -> None:
        source = self.capture_sources.get(kind)
        if source is None:
            errors[kind] = None
            logger.warning(f"No capture source registered for {kind.value}, only clearing its record")
        else:
            errors[kind] = source.terminate(pid, self.grace_period, self.poll_interval,
                                            expected_command=self.store.read_command(kind))
        self.store.clear_process(kind)
