"""Exception types raised by the session coordination layer."""


class ScreencasterError(Exception):
    """Base class for all screencaster errors."""


class PreconditionError(ScreencasterError):
    """A command was issued in a session state that does not allow it."""


class AlreadyRecordingError(PreconditionError):
    def __init__(self, message: str = "recording already in progress"):
        super().__init__(message)


class NotRecordingError(PreconditionError):
    def __init__(self, message: str = "no recording in progress"):
        super().__init__(message)


class AlreadyPausedError(PreconditionError):
    def __init__(self, message: str = "recording is already paused"):
        super().__init__(message)


class NotPausedError(PreconditionError):
    def __init__(self, message: str = "recording is not paused"):
        super().__init__(message)


class SessionNotFoundError(PreconditionError):
    def __init__(self, message: str = "no recording session found"):
        super().__init__(message)


class InvalidTransitionError(PreconditionError):
    """Requested state change is not an edge of the session state machine."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"cannot go from {current.value} to {target.value}")


class NoSourcesStartedError(ScreencasterError):
    """Start failed because not a single capture source came up."""

    def __init__(self, message: str = "no recording sources enabled", errors=None):
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: " + "; ".join(str(e) for e in self.errors)
        super().__init__(message)


class SourceLaunchError(ScreencasterError):
    """A single capture source could not be launched."""

    def __init__(self, kind, message: str):
        self.kind = kind
        super().__init__(f"{kind.value}: {message}")


class SourceTerminateError(ScreencasterError):
    """A single capture source did not shut down cleanly."""

    def __init__(self, kind, message: str):
        self.kind = kind
        super().__init__(f"{kind.value}: {message}")


class MergeError(ScreencasterError):
    """Post-processing failed in an unrecoverable step."""
