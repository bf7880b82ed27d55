"""Exceptions raised by the facility booking service.

Rejected bookings are *not* exceptions inside the engine: the validator
returns a ``ConflictResult``. ``BookingRejectedError`` is only raised by the
reservation service when it refuses to commit a write.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from facility_booking.domain.models import ConflictResult


class InvalidScheduleError(ValueError):
    """Raised for malformed or inconsistent availability data."""

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class InvalidFacilityError(ValueError):
    """Raised when facility settings are inconsistent."""

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class NotFoundError(LookupError):
    """Raised when a facility or reservation does not exist."""


class ExceptionNotFoundError(NotFoundError):
    """Raised when no schedule exception exists for a date."""


class DuplicateExceptionError(ValueError):
    """Raised when a schedule exception already exists for a date."""


class ScheduleLimitError(ValueError):
    """Raised when a schedule would exceed the allowed number of exceptions."""


class InvalidTransitionError(ValueError):
    """Raised when a reservation status change is not allowed."""


class FacilityUnavailableError(RuntimeError):
    """Raised when a facility is not accepting reservations."""


class BookingRejectedError(RuntimeError):
    """Raised when a reservation write fails validation at commit time."""

    def __init__(self, result: ConflictResult) -> None:
        super().__init__(result.message)
        self.result = result
