"""Relay from merge-pipeline callbacks to progress listeners."""

import logging
import threading
from collections import deque
from typing import Deque, Iterator, Optional

from pubsub import pub

from ..models.events import MergeStep, ProgressKind, ProgressEvent

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "merge_progress"


class MergeProgressRelay:
    """Turns pipeline step/percent callbacks into an ordered event stream.

    publish() never blocks. When the buffer is full, percent events are
    dropped; step boundaries (started and terminal events) are always kept.
    """

    def __init__(self, buffer_size: int = 10, topic: str = DEFAULT_TOPIC):
        """Initialize the relay.

        Args:
            buffer_size: Number of events buffered for a slow listener
            topic: Pub/sub topic used by dispatch()
        """
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")

        self.buffer_size = buffer_size
        self.topic = topic
        self.dropped = 0

        self._events: Deque[ProgressEvent] = deque()
        self._condition = threading.Condition()
        self._closed = False
        self._started_steps = set()
        self._dispatch_thread: Optional[threading.Thread] = None

    # Pipeline side

    def on_step(self, step: MergeStep, completed: bool, skipped: bool,
                error: Optional[Exception] = None) -> None:
        """Step callback: (step, completed, skipped, error).

        Neither completed, skipped nor error means the step is starting. A
        skipped step may carry the error that made it skip.
        """
        if skipped:
            kind = ProgressKind.SKIPPED
        elif error is not None:
            kind = ProgressKind.FAILED
        elif completed:
            kind = ProgressKind.COMPLETED
        else:
            kind = ProgressKind.STARTED

        if kind.is_terminal and step not in self._started_steps:
            self.publish(ProgressEvent(step=step, kind=ProgressKind.STARTED))

        if kind is ProgressKind.STARTED:
            self._started_steps.add(step)

        self.publish(ProgressEvent(step=step, kind=kind,
                                   error=str(error) if error is not None else None))

    def on_percent(self, step: MergeStep, percent: float) -> None:
        """Percent callback for long-running steps."""
        percent = max(0.0, min(100.0, float(percent)))
        self.publish(ProgressEvent(step=step, kind=ProgressKind.PROGRESS, percent=percent))

    def publish(self, event: ProgressEvent) -> bool:
        """Buffer an event without blocking.

        Returns:
            False if the event was dropped
        """
        with self._condition:
            if self._closed:
                logger.debug(f"Relay closed, ignoring {event.kind.value} for {event.step.name}")
                return False

            if len(self._events) >= self.buffer_size:
                if event.kind is ProgressKind.PROGRESS:
                    self.dropped += 1
                    return False
                self._evict_progress_event()

            self._events.append(event)
            self._condition.notify_all()
            return True

    def _evict_progress_event(self) -> None:
        for queued in self._events:
            if queued.kind is ProgressKind.PROGRESS:
                self._events.remove(queued)
                self.dropped += 1
                return
        # Only boundary events are queued; the buffer grows past its bound.

    def close(self) -> None:
        """Mark the stream finished; buffered events can still be read."""
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    # Listener side

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next event, or None on timeout or once closed and drained."""
        with self._condition:
            if not self._events and not self._closed:
                self._condition.wait_for(lambda: self._events or self._closed, timeout=timeout)
            if self._events:
                return self._events.popleft()
            return None

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def dispatch(self) -> threading.Thread:
        """Forward every event to pub/sub listeners of ``topic`` from a thread."""
        if self._dispatch_thread is not None:
            return self._dispatch_thread

        self._dispatch_thread = threading.Thread(target=self._dispatch_loop, daemon=True)
        self._dispatch_thread.name = "MergeProgressDispatch"
        self._dispatch_thread.start()
        return self._dispatch_thread

    def _dispatch_loop(self) -> None:
        for event in self:
            try:
                pub.sendMessage(self.topic, event=event)
            except Exception as e:
                logger.error(f"Progress listener failed: {e}")
        logger.debug(f"Progress dispatch finished ({self.dropped} percent events dropped)")
