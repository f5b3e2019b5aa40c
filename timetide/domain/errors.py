"""Domain layer: error taxonomy for availability and booking."""
from dataclasses import dataclass
from typing import Optional


class TimeTideError(Exception):
    """Base class for errors raised by the scheduling engine."""


class ConfigurationError(TimeTideError):
    """Invalid host or event-type configuration (bad timezone, duration below
    the floor, overlapping recurring slots). Raised when configuration is
    saved; not retryable."""


class NotFoundError(TimeTideError):
    """A referenced event type, schedule, host or booking does not exist."""


class ConflictError(TimeTideError):
    """The chosen slot is no longer available.

    Expected and user-facing: the caller should offer a fresh slot list.
    """

    def __init__(self, message: str = "This time slot is no longer available. Please select another time."):
        super().__init__(message)


class PolicyError(TimeTideError):
    """The requested slot is not one the event type offers at all (outside
    working hours, inside the notice period, outside the booking window) or
    the requested state change is not allowed."""


class CollaboratorError(TimeTideError):
    """An external collaborator (calendar provider) failed or timed out."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


@dataclass(frozen=True)
class TruncationWarning:
    """Reported alongside slot results when a safety cap limited the output."""
    reason: str
    detail: str

    def __str__(self) -> str:
        return f"{self.reason}: {self.detail}"
