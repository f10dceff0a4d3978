"""Error taxonomy for the recovery workflow."""

from __future__ import annotations


class ZfsRescueError(RuntimeError):
    """Base class for zfsrescue failures."""


class PrerequisiteError(ZfsRescueError):
    """Not root, missing tool, missing key file or no pools: exit immediately."""


class NoPoolsFound(PrerequisiteError):
    """Neither ``zpool list`` nor ``zpool import`` reported a pool."""


class AcquisitionFailure(ZfsRescueError):
    """An import, unlock or mount action failed; acquired resources are rolled back."""

    def __init__(self, message: str, *, resource=None, rc: int | None = None) -> None:
        super().__init__(message)
        self.resource = resource
        self.rc = rc


class StepFailed(ZfsRescueError):
    """A sequencer step failed; carries the step name and the original cause."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"step {step!r} failed: {cause}")
        self.step = step
        self.cause = cause


class CompensationFailure(ZfsRescueError):
    """A rollback action failed.  Logged and collected, never raised by rollback."""

    def __init__(self, message: str, *, resource=None) -> None:
        super().__init__(message)
        self.resource = resource


class ParseError(ZfsRescueError):
    """Tool output did not match the expected field layout."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw
