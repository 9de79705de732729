"""Error taxonomy for the scheduling core.

Per-task errors (InvalidTimeFormat, MissingRequiredField) drop a single task
from a batch. Turn-level errors (CompletionUnavailable, CalendarUnavailable)
end the turn with a fallback proposal. Commit errors (RepositoryFailure,
ExternalMirrorFailure) are isolated to the single operation that failed.
"""


class SchedulingError(Exception):
    """Base class for scheduling errors."""


class InvalidTimeFormat(SchedulingError, ValueError):
    """A date or time string could not be parsed, or the interval is empty."""


class MissingRequiredField(SchedulingError):
    """A proposed task lacks a field that cannot be defaulted."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class CompletionUnavailable(SchedulingError):
    """The text-completion service failed or returned unusable output."""


class CalendarUnavailable(SchedulingError):
    """The external calendar source could not be read."""


class RepositoryFailure(SchedulingError):
    """A single create/update/delete against the task store failed."""


class ExternalMirrorFailure(SchedulingError):
    """Mirroring a committed task to the external calendar failed."""
