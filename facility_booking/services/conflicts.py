"""Service for detecting overlapping facility reservations."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from facility_booking.domain.models import Reservation
from facility_booking.domain.time_blocks import intervals_overlap


def find_conflicts(
    new_start: datetime,
    new_end: datetime,
    existing: Iterable[Reservation],
    exclude_id: str | None = None,
) -> list[Reservation]:
    """Return every reservation in *existing* that overlaps ``[new_start, new_end)``.

    Intervals are half-open: two bookings collide only when each one starts
    before the other ends, so back-to-back bookings sharing an instant are
    fine. The reservation with id *exclude_id* is skipped, so a move never collides
    with itself. Status is not inspected; callers pass only the reservations
    that should block.
    """
    return [
        reservation
        for reservation in existing
        if reservation.id != exclude_id
        and intervals_overlap(new_start, new_end, reservation.start, reservation.end)
    ]


def active_reservations(facility_id: str, reservations: Iterable[Reservation]) -> list[Reservation]:
    """Pending and confirmed reservations of one facility."""
    return [r for r in reservations if r.facility_id == facility_id and r.is_active]
