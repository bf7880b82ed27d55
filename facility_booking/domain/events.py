"""Domain events emitted during the reservation and schedule lifecycle."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel

from facility_booking.domain.models import ReservationStatus


class DomainEvent(BaseModel):
    actor_id: str | None = None


class ReservationEvent(DomainEvent):
    """Base for every event about a single reservation."""

    reservation_id: str


class ReservationCreated(ReservationEvent):
    """Fired when a new reservation has been committed."""


class ReservationMoved(ReservationEvent):
    """Fired when a reservation's time or facility changed."""

    previous_facility_id: str
    previous_start: datetime
    previous_end: datetime


class ReservationUpdated(ReservationEvent):
    """Fired when horses, purpose or notes changed without a move."""

    fields: list[str]


class ReservationStatusChanged(ReservationEvent):
    """Fired on confirm, cancel, no-show and completion."""

    previous_status: ReservationStatus
    new_status: ReservationStatus


class ScheduleExceptionAdded(DomainEvent):
    """Fired after a dated exception was added to a facility schedule."""

    facility_id: str
    on_date: date


class ScheduleExceptionRemoved(DomainEvent):
    facility_id: str
    on_date: date
