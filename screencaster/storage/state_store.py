"""On-disk key/value records that let separate invocations share one session."""

import os
import errno
import shlex
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from ..models.session import SourceKind

logger = logging.getLogger(__name__)

# Session-level record keys
START_TIME_KEY = "session.start"
PART_NUMBER_KEY = "session.part"
OUTPUT_DIR_KEY = "session.output_dir"
PAUSED_KEY = "session.paused"
PROCESSING_KEY = "session.processing"

SESSION_KEYS = (START_TIME_KEY, PART_NUMBER_KEY, OUTPUT_DIR_KEY, PAUSED_KEY, PROCESSING_KEY)


def pid_key(kind: SourceKind) -> str:
    return f"{kind.value}.pid"


def path_key(kind: SourceKind) -> str:
    return f"{kind.value}.path"


def cmd_key(kind: SourceKind) -> str:
    return f"{kind.value}.cmd"


class SessionStateStore:
    """Durable session facts, one small human-readable file per key.

    Every query re-reads the files; nothing is cached between calls, so any
    process sees the same session as the one that started it.
    """

    def __init__(self, state_dir: str):
        """Initialize the store.

        Args:
            state_dir: Directory the record files live in (created if missing)
        """
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"SessionStateStore using {self.state_dir}")

    def _record_path(self, key: str) -> Path:
        return self.state_dir / key

    def write_record(self, key: str, value) -> None:
        """Overwrite a record; the last writer wins."""
        path = self._record_path(key)
        with open(path, "w", encoding="utf-8") as f:
            f.write(str(value))
        logger.debug(f"Record written: {key}={value}")

    def read_record(self, key: str) -> Optional[str]:
        """Read a record, returning None when it does not exist."""
        try:
            with open(self._record_path(key), "r", encoding="utf-8") as f:
                return f.read().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read record {key}: {e}")
            return None

    def clear_record(self, key: str) -> None:
        """Delete a record; deleting a missing record is a no-op."""
        try:
            self._record_path(key).unlink()
            logger.debug(f"Record cleared: {key}")
        except FileNotFoundError:
            pass

    def has_record(self, key: str) -> bool:
        return self._record_path(key).exists()

    def read_int(self, key: str) -> Optional[int]:
        """Read an integer record; malformed values read as absent."""
        value = self.read_record(key)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring malformed integer record {key}={value!r}")
            return None

    def write_int(self, key: str, value: int) -> None:
        self.write_record(key, int(value))

    def read_pid(self, kind: SourceKind) -> Optional[int]:
        pid = self.read_int(pid_key(kind))
        if pid is None or pid <= 0:
            return None
        return pid

    def write_pid(self, kind: SourceKind, pid: int) -> None:
        self.write_int(pid_key(kind), pid)

    def read_path(self, kind: SourceKind) -> Optional[str]:
        return self.read_record(path_key(kind)) or None

    def write_path(self, kind: SourceKind, path: str) -> None:
        self.write_record(path_key(kind), path)

    def read_command(self, kind: SourceKind) -> Optional[List[str]]:
        """Command line the recorded capture process was started with."""
        value = self.read_record(cmd_key(kind))
        if not value:
            return None
        try:
            return shlex.split(value)
        except ValueError:
            logger.warning(f"Ignoring malformed command record {cmd_key(kind)}={value!r}")
            return None

    def write_command(self, kind: SourceKind, command: Sequence[str]) -> None:
        self.write_record(cmd_key(kind), shlex.join(command))

    def clear_process(self, kind: SourceKind) -> None:
        """Remove the records describing a capture process, keeping its file path."""
        self.clear_record(pid_key(kind))
        self.clear_record(cmd_key(kind))

    def clear_source(self, kind: SourceKind) -> None:
        """Remove every record of a capture source."""
        self.clear_process(kind)
        self.clear_record(path_key(kind))

    def read_timestamp(self, key: str) -> Optional[datetime]:
        value = self.read_record(key)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning(f"Ignoring malformed timestamp record {key}={value!r}")
            return None

    def write_timestamp(self, key: str, value: datetime) -> None:
        self.write_record(key, value.isoformat())

    def clear_session(self) -> None:
        """Remove every record belonging to the session."""
        for kind in SourceKind:
            self.clear_source(kind)
        for key in SESSION_KEYS:
            self.clear_record(key)
        logger.info("Session records cleared")

    def is_alive(self, pid: Optional[int]) -> bool:
        """Check whether a process exists and can be signalled."""
        return is_process_alive(pid)


def is_process_alive(pid: Optional[int]) -> bool:
    """Authoritative liveness check for a PID.

    A child of this process that already exited is reaped first, otherwise it
    would linger as a zombie and still answer signal 0.
    """
    if pid is None or pid <= 0:
        return False

    try:
        reaped_pid, _ = os.waitpid(pid, os.WNOHANG)
        if reaped_pid == pid:
            return False
    except ChildProcessError:
        pass
    except OSError as e:
        if e.errno != errno.ECHILD:
            logger.debug(f"waitpid({pid}) failed: {e}")

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def process_matches_command(pid: int, command: Optional[Sequence[str]]) -> bool:
    """Check that ``pid`` still runs ``command`` and was not reused by another program.

    Only Linux exposes the command line in /proc; elsewhere, and whenever it
    cannot be read, the PID is trusted.
    """
    if not command:
        return True
    try:
        with open(f"/proc/{pid}/cmdline", "rb") as f:
            raw = f.read()
    except OSError:
        return True
    if not raw:
        # Kernel threads and zombies have an empty command line
        return True

    actual = [arg.decode("utf-8", "surrogateescape") for arg in raw.rstrip(b"\0").split(b"\0")]
    expected = list(command)
    # argv[0] may be rewritten to an absolute path by the program
    if os.path.basename(actual[0]) != os.path.basename(expected[0]):
        return False
    return actual[1:] == expected[1:]
