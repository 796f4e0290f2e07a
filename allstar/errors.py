"""
Exception hierarchy shared by the pipeline, its collaborators and the admin surface.
"""
from typing import Optional


class AllstarError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(AllstarError):
    """A required setting (API key, credential) is missing."""


class SourceError(AllstarError):
    """A marketplace request failed or returned something unusable."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class UnsupportedSourceError(AllstarError):
    """An ad-hoc URL does not belong to a known marketplace."""


class StorageError(AllstarError):
    """A persistence call failed."""


class GraderError(AllstarError):
    """The scoring model could not be reached or returned nothing."""


class InvalidGradeResponse(AllstarError):
    """The scoring model answered, but not with a usable verdict."""

    def __init__(self, reason: str, raw: str = ""):
        super().__init__(f"Invalid grade response ({reason}): {raw}")
        self.reason = reason
        self.raw = raw


class RunInProgressError(AllstarError):
    """A run already occupies the single run slot."""

    def __init__(self, current_run_id: Optional[str] = None):
        super().__init__("A run is already in progress")
        self.current_run_id = current_run_id


class NoActiveRunError(AllstarError):
    """Cancel was requested while no run is active."""

    def __init__(self):
        super().__init__("No run is currently in progress")


class RunAlreadyFinalizedError(AllstarError):
    """A terminal status was written to a run that already has one."""

    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} is already finalized")
        self.run_id = run_id


class RunFailureNotRecorded(AllstarError):
    """
    A run failed and the attempt to mark it failed also failed.

    Both errors are kept: ``error`` is what broke the run, ``recording_error``
    is what prevented the failure from being written.
    """

    def __init__(self, run_id: str, error: BaseException, recording_error: BaseException):
        super().__init__(
            f"Run {run_id} failed ({error}) and could not be marked failed ({recording_error})"
        )
        self.run_id = run_id
        self.error = error
        self.recording_error = recording_error
