"""Session manager: the recording state machine on top of the state store."""

import os
import time
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Mapping, Optional

from pubsub import pub

from ..capture.base import CaptureSource
from ..capture.sources import build_source
from ..config import ScreencasterConfig
from ..errors import (
    AlreadyPausedError,
    AlreadyRecordingError,
    InvalidTransitionError,
    MergeError,
    NoSourcesStartedError,
    NotPausedError,
    NotRecordingError,
    SessionNotFoundError,
)
from ..models.capture import StartReport, TeardownReport
from ..models.events import SessionEvent
from ..models.recording_info import RecordingInfo, RecordingSettings, RecordingStatus
from ..models.session import SessionState, SessionStatus, SourceKind, SourceStatus
from ..processing.merger import FFmpegMergePipeline, MergeOptions, MergePipeline, MergeResult
from ..processing.progress import MergeProgressRelay
from ..storage.file_manager import RecordingFolders
from ..storage.state_store import (
    SessionStateStore,
    START_TIME_KEY,
    PART_NUMBER_KEY,
    OUTPUT_DIR_KEY,
    PAUSED_KEY,
    PROCESSING_KEY,
)
from .start_coordinator import StartCoordinator
from .stop_coordinator import StopCoordinator

logger = logging.getLogger(__name__)

SESSION_TOPIC = "session_events"

TRANSITIONS = {
    SessionState.IDLE: {SessionState.RECORDING},
    SessionState.RECORDING: {SessionState.PAUSED, SessionState.PROCESSING},
    SessionState.PAUSED: {SessionState.RECORDING, SessionState.PROCESSING},
    SessionState.PROCESSING: {SessionState.COMPLETED, SessionState.FAILED},
    SessionState.COMPLETED: {SessionState.IDLE},
    SessionState.FAILED: {SessionState.IDLE},
}


class SessionStateMachine:
    """Allowed moves between session states."""

    def __init__(self, state: SessionState = SessionState.IDLE):
        self.state = state

    def can_transition(self, target: SessionState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: SessionState) -> SessionState:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current state
        """
        if not self.can_transition(target):
            raise InvalidTransitionError(self.state, target)
        logger.debug(f"Session state: {self.state.value} -> {target.value}")
        self.state = target
        return self.state


@dataclass
class StopResult:
    """Outcome of SessionManager.stop()."""
    teardown: TeardownReport
    output_dir: Optional[str] = None
    status: Optional[RecordingStatus] = None
    merge_result: Optional[MergeResult] = None
    relay: Optional[MergeProgressRelay] = None
    processing_thread: Optional[threading.Thread] = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for background processing; True once it has finished."""
        if self.processing_thread is None:
            return True
        self.processing_thread.join(timeout=timeout)
        return not self.processing_thread.is_alive()


class SessionManager:
    """Starts, pauses, resumes and stops the one recording session.

    Nothing is cached between calls: every query and precondition is
    derived from the state store, so a manager in any process sees the
    session the same way.
    """

    def __init__(self,
                 config: ScreencasterConfig,
                 store: Optional[SessionStateStore] = None,
                 capture_sources: Optional[Mapping[SourceKind, CaptureSource]] = None,
                 pipeline: Optional[MergePipeline] = None):
        """Initialize session manager.

        Args:
            config: Application configuration
            store: State store, defaults to one in the configured state directory
            capture_sources: Capture source per kind, defaults to the configured ones
            pipeline: Merge pipeline, defaults to FFmpegMergePipeline
        """
        self.config = config
        self.store = store or SessionStateStore(config.get_state_directory())
        self.capture_sources: Dict[SourceKind, CaptureSource] = dict(
            capture_sources or {kind: build_source(kind, config) for kind in SourceKind})
        self.pipeline = pipeline or FFmpegMergePipeline.from_config(config)

        grace_period = float(config.get('stop.grace_period', 2.0))
        self.start_coordinator = StartCoordinator(
            self.store,
            self.capture_sources,
            ready_timeout=float(config.get('recording.ready_timeout', 5.0)),
            started_timeout=float(config.get('recording.started_timeout', 5.0)),
            grace_period=grace_period,
        )
        self.stop_coordinator = StopCoordinator(
            self.store,
            self.capture_sources,
            grace_period=grace_period,
            poll_interval=float(config.get('stop.poll_interval', 0.2)),
            settle_delay=float(config.get('stop.settle_delay', 0.3)),
        )
        logger.info(f"SessionManager initialized with state dir: {self.store.state_dir}")

    # Queries

    def is_recording(self) -> bool:
        """True while any recorded capture process is alive."""
        return any(self.store.is_alive(self.store.read_pid(kind)) for kind in SourceKind)

    def is_paused(self) -> bool:
        return self.store.has_record(PAUSED_KEY)

    def is_processing(self) -> bool:
        if not self.store.has_record(PROCESSING_KEY):
            return False
        return self.store.is_alive(self.store.read_int(PROCESSING_KEY))

    def get_state(self) -> SessionState:
        if self.is_processing():
            return SessionState.PROCESSING
        if self.is_paused():
            return SessionState.PAUSED
        if self.is_recording():
            return SessionState.RECORDING
        return SessionState.IDLE

    def get_status(self) -> SessionStatus:
        """Full session status derived from the persisted records."""
        status = SessionStatus()

        for kind in SourceKind:
            pid = self.store.read_pid(kind)
            path = self.store.read_path(kind)
            if pid is None and path is None:
                continue
            alive = self.store.is_alive(pid)
            status.sources[kind] = SourceStatus(kind=kind, pid=pid, file=path, alive=alive)
            if pid is not None and not alive:
                status.crashed_sources.append(kind)

        status.is_recording = any(source.alive for source in status.sources.values())
        status.is_paused = self.is_paused()
        status.is_processing = self.is_processing()
        if status.is_processing:
            status.state = SessionState.PROCESSING
        elif status.is_paused:
            status.state = SessionState.PAUSED
        elif status.is_recording:
            status.state = SessionState.RECORDING

        status.current_part = self.store.read_int(PART_NUMBER_KEY) or 0
        status.start_time = self.store.read_timestamp(START_TIME_KEY)
        status.output_dir = self.store.read_record(OUTPUT_DIR_KEY)
        return status

    def has_session_records(self) -> bool:
        """Whether anything of a session is left in the store."""
        if self.store.has_record(OUTPUT_DIR_KEY):
            return True
        return any(self.store.read_pid(kind) is not None for kind in SourceKind)

    # Transitions

    def default_settings(self) -> RecordingSettings:
        """Recording settings from configuration."""
        return RecordingSettings(
            screen_enabled=self.config.is_source_enabled('screen'),
            audio_enabled=self.config.is_source_enabled('audio'),
            camera_enabled=self.config.is_source_enabled('camera'),
            camera_fps=int(self.config.get('sources.camera.fps', 60)),
            hardware_accel=bool(self.config.get('sources.screen.hardware_accel', False)),
            denoise_enabled=bool(self.config.get('processing.denoise', False)),
            normalize_enabled=bool(self.config.get('processing.normalize', True)),
            vertical_enabled=bool(self.config.get('processing.vertical', True)),
        )

    def start(self,
              settings: Optional[RecordingSettings] = None,
              title: Optional[str] = None,
              description: str = "",
              presenter: str = "",
              output_root: Optional[str] = None) -> StartReport:
        """Create a recording folder and start capturing part 0.

        Raises:
            AlreadyRecordingError: If a session is recording, paused or processing
            NoSourcesStartedError: If no source is enabled or none could start
        """
        settings = settings or self.default_settings()
        self._ensure_can_start()
        machine = SessionStateMachine(self.get_state())
        machine.transition(SessionState.RECORDING)

        sources = self._sources_for(settings)
        if not sources:
            raise NoSourcesStartedError()

        folders = RecordingFolders(output_root or self.config.get_output_directory())
        info = folders.create_recording_folder(title, description, presenter)
        info.settings = settings
        output_dir = info.files.folder_path

        self.store.write_record(OUTPUT_DIR_KEY, output_dir)
        self.store.write_int(PART_NUMBER_KEY, 0)

        try:
            report = self.start_coordinator.start(sources, 0, output_dir)
        except NoSourcesStartedError as e:
            self.store.clear_session()
            info.processing.errors.append(str(e))
            info.set_status(RecordingStatus.FAILED)
            info.save()
            self._publish("failed", 0, str(e))
            raise

        self._record_parts(info, report, 0)
        info.start_time = report.start_time
        info.set_status(RecordingStatus.from_state(machine.state))
        info.save()

        self._publish("started", 0)
        return report

    def pause(self) -> TeardownReport:
        """Stop the capture processes and move on to the next part number.

        Raises:
            AlreadyPausedError: If the session is already paused
            NotRecordingError: If nothing is recording
            InvalidTransitionError: If the session is being processed
        """
        if self.is_paused():
            raise AlreadyPausedError()
        if not self.is_recording():
            raise NotRecordingError()
        machine = SessionStateMachine(self.get_state())
        machine.transition(SessionState.PAUSED)

        report = self.stop_coordinator.teardown()

        self.store.write_record(PAUSED_KEY, "paused")
        part = (self.store.read_int(PART_NUMBER_KEY) or 0) + 1
        self.store.write_int(PART_NUMBER_KEY, part)

        info = self._load_info(self.store.read_record(OUTPUT_DIR_KEY))
        if info is not None:
            info.update_file_sizes()
            info.set_status(RecordingStatus.from_state(machine.state))
            info.save()

        logger.info(f"Recording paused, next part is {part}")
        self._publish("paused", part)
        return report

    def resume(self) -> StartReport:
        """Start a new part with the settings the session was started with.

        Raises:
            NotPausedError: If the session is not paused
            SessionNotFoundError: If the recording folder or its info is gone
            InvalidTransitionError: If the session is being processed
            NoSourcesStartedError: If no source could start (the session stays paused)
        """
        if not self.is_paused():
            raise NotPausedError()

        output_dir = self.store.read_record(OUTPUT_DIR_KEY)
        if not output_dir:
            raise SessionNotFoundError()
        try:
            info = RecordingInfo.load(output_dir)
        except (OSError, ValueError) as e:
            raise SessionNotFoundError(f"failed to load recording info: {e}")

        machine = SessionStateMachine(self.get_state())
        machine.transition(SessionState.RECORDING)

        part = self.store.read_int(PART_NUMBER_KEY) or 0
        sources = self._sources_for(info.settings)

        self.store.clear_record(PAUSED_KEY)
        try:
            report = self.start_coordinator.start(sources, part, output_dir)
        except NoSourcesStartedError:
            self.store.write_record(PAUSED_KEY, "paused")
            raise

        self._record_parts(info, report, part)
        info.set_status(RecordingStatus.from_state(machine.state))
        info.save()

        logger.info(f"Recording resumed with part {part}")
        self._publish("resumed", part)
        return report

    def stop(self,
             process: bool = True,
             wait: bool = True,
             relay: Optional[MergeProgressRelay] = None) -> StopResult:
        """Stop the session and hand its parts to the merge pipeline.

        Args:
            process: Run the merge pipeline; False marks the recording completed as is
            wait: Merge in this thread; False merges in a background thread
            relay: Progress relay the pipeline reports to

        Raises:
            NotRecordingError: If there is no session, or it is already processing
        """
        state = self.get_state()
        if state is SessionState.PROCESSING:
            raise NotRecordingError("recording is already being processed")
        if state is SessionState.IDLE and not self.has_session_records():
            raise NotRecordingError()
        if state is SessionState.IDLE:
            logger.warning("Stopping a session whose capture processes are no longer running")

        # A session whose capture processes all died is stopped like a recording one
        machine = SessionStateMachine(SessionState.RECORDING if state is SessionState.IDLE else state)
        machine.transition(SessionState.PROCESSING)

        teardown = self.stop_coordinator.teardown()
        self.store.clear_record(PAUSED_KEY)

        output_dir = self.store.read_record(OUTPUT_DIR_KEY)
        info = self._load_info(output_dir) or self._info_from_records(output_dir)
        info.set_end_time(datetime.now())
        info.update_file_sizes()

        result = StopResult(teardown=teardown, output_dir=output_dir)

        if not process:
            info.processing.skipped = True
            machine.transition(SessionState.COMPLETED)
            result.status = RecordingStatus.from_state(machine.state)
            info.set_status(result.status)
            info.save()
            self.store.clear_session()
            self._publish("completed", info.files.current_part, "processing skipped")
            return result

        self.store.write_int(PROCESSING_KEY, os.getpid())
        info.set_status(RecordingStatus.from_state(machine.state))
        info.save()
        self._publish("stopped", info.files.current_part)

        if relay is None:
            relay = MergeProgressRelay(buffer_size=int(self.config.get('processing.progress_buffer', 10)))
        result.relay = relay

        if wait:
            self._process(info, relay, machine, result)
        else:
            thread = threading.Thread(target=self._process, args=(info, relay, machine, result))
            thread.name = "MergeWorker"
            thread.start()
            result.processing_thread = thread
        return result

    # Internals

    def _process(self, info: RecordingInfo, relay: MergeProgressRelay,
                 machine: SessionStateMachine, result: StopResult) -> None:
        """Run the merge pipeline and record the outcome."""
        started_at = time.monotonic()
        outcome = SessionState.FAILED
        status = RecordingStatus.FAILED
        try:
            try:
                options = MergeOptions.from_recording(info, self.config)
                merge = self.pipeline.merge(options, relay.on_step, relay.on_percent)
                result.merge_result = merge
                info.files.merged_file = merge.merged_file
                info.files.vertical_file = merge.vertical_file
                info.processing.normalize_applied = merge.normalize_applied
                info.processing.vertical_created = merge.vertical_file is not None
                info.processing.errors.extend(merge.errors)
                outcome = SessionState.COMPLETED
            except MergeError as e:
                logger.error(f"Processing failed: {e}")
                info.processing.errors.append(str(e))
            except Exception as e:
                logger.exception(f"Unexpected error while processing recording: {e}")
                info.processing.errors.append(str(e))
            finally:
                relay.close()

            machine.transition(outcome)
            status = RecordingStatus.from_state(machine.state)
            info.processing.processed_at = datetime.now()
            info.processing.processing_seconds = round(time.monotonic() - started_at, 2)
            info.update_file_sizes()
            info.set_status(status)
            info.save()
        finally:
            self.store.clear_session()
            result.status = status

        logger.info(f"Recording {status.value}: {info.files.folder_path}")
        self._publish(status.value, info.files.current_part,
                      "; ".join(info.processing.errors) or None)

    def _ensure_can_start(self) -> None:
        state = self.get_state()
        if state is SessionState.PROCESSING:
            raise AlreadyRecordingError("previous recording is still being processed")
        if state in (SessionState.RECORDING, SessionState.PAUSED):
            raise AlreadyRecordingError()
        if self.has_session_records() or self.store.has_record(PROCESSING_KEY):
            self._discard_stale_session()

    def _discard_stale_session(self) -> None:
        """Clear records left behind by capture processes or processing that died."""
        output_dir = self.store.read_record(OUTPUT_DIR_KEY)
        logger.warning(f"Discarding stale session records (output dir: {output_dir})")

        info = self._load_info(output_dir)
        if info is not None and info.status not in (RecordingStatus.COMPLETED, RecordingStatus.FAILED):
            info.processing.errors.append("session ended unexpectedly")
            info.set_status(RecordingStatus.FAILED)
            info.save()
        self.store.clear_session()

    def _sources_for(self, settings: RecordingSettings) -> Dict[SourceKind, Optional[str]]:
        """Enabled kinds mapped to their device, with per-session options applied."""
        camera = self.capture_sources.get(SourceKind.CAMERA)
        if camera is not None:
            camera.options["fps"] = settings.camera_fps
        screen = self.capture_sources.get(SourceKind.SCREEN)
        if screen is not None:
            screen.options["hardware_accel"] = settings.hardware_accel

        return {kind: settings.device_for(kind) for kind in settings.enabled_sources()}

    @staticmethod
    def _record_parts(info: RecordingInfo, report: StartReport, part: int) -> None:
        info.files.current_part = part
        for handle in report.started:
            info.append_part(handle.kind, handle.output_path)

    def _load_info(self, output_dir: Optional[str]) -> Optional[RecordingInfo]:
        if not output_dir:
            return None
        try:
            return RecordingInfo.load(output_dir)
        except FileNotFoundError:
            logger.warning(f"No recording info in {output_dir}")
        except ValueError as e:
            logger.error(f"Unreadable recording info in {output_dir}: {e}")
        return None

    def _info_from_records(self, output_dir: Optional[str]) -> RecordingInfo:
        """Minimal RecordingInfo rebuilt from the path records."""
        info = RecordingInfo()
        info.files.folder_path = output_dir or ""
        info.files.current_part = self.store.read_int(PART_NUMBER_KEY) or 0
        start_time = self.store.read_timestamp(START_TIME_KEY)
        if start_time is not None:
            info.start_time = start_time
        for kind in SourceKind:
            path = self.store.read_path(kind)
            if path:
                info.append_part(kind, path)
        return info

    @staticmethod
    def _publish(event_type: str, part: int, message: Optional[str] = None) -> None:
        pub.sendMessage(SESSION_TOPIC, event=SessionEvent(event_type=event_type, part=part, message=message))
