from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by pdsync."""


class ConfigurationError(SyncError):
    """Invalid or unresolvable configuration. Aborts the whole run."""


class NotFoundError(SyncError, LookupError):
    """A schedule, user, group or channel could not be found."""


class MissingPermissionError(SyncError, PermissionError):
    """The chat platform token lacks a scope needed for an operation."""


class ApiError(SyncError):
    """An external API call failed."""


class MutationError(SyncError):
    """Updating group membership or a channel topic failed."""


class TemplateError(SyncError):
    """Parsing or rendering a topic template failed."""


class JobError(SyncError):
    """A job-fatal error, tagged with the name of the failing job."""

    def __init__(self, job_name: str, cause: Exception) -> None:
        self.job_name = job_name
        self.cause = cause
        super().__init__(f"failed to run Slack sync {job_name}: {cause}")
