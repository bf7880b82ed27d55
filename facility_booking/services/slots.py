"""Bookable start times for pickers and "find next free slot"."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Iterator

from dateutil.rrule import DAILY, rrule

from facility_booking.domain.models import Facility, Reservation
from facility_booking.services.conflicts import active_reservations, find_conflicts
from facility_booking.services.schedule import resolve_open_intervals


class SlotSequence:
    """Candidate start times for *facility* on *on_date*.

    Candidates are ``block.start + k * granularity`` for each open interval,
    kept while a booking of *duration_minutes* (the facility minimum by
    default) still fits before the block ends, and dropped when that booking
    would overlap an active reservation.

    Offsets are wall-clock minutes. A wall time the zone skips (the hour
    lost when clocks spring forward) is not a slot, so every yielded start
    is a distinct instant.

    Iteration is lazy and every ``iter()`` starts over from the first slot.
    """

    def __init__(
        self,
        facility: Facility,
        on_date: date,
        existing_reservations: Iterable[Reservation],
        granularity_minutes: int,
        duration_minutes: int | None = None,
    ) -> None:
        if granularity_minutes <= 0:
            raise ValueError("granularity_minutes must be > 0")
        self.facility = facility
        self.on_date = on_date
        self.granularity_minutes = granularity_minutes
        self.duration_minutes = duration_minutes or facility.min_slot_duration_minutes
        self._active = active_reservations(facility.id, existing_reservations)

    def __iter__(self) -> Iterator[datetime]:
        zone = self.facility.zone
        midnight = datetime.combine(self.on_date, time(), tzinfo=zone)
        length = timedelta(minutes=self.duration_minutes)

        for block in resolve_open_intervals(self.facility.availability_schedule, self.on_date):
            offset = block.start
            while offset + self.duration_minutes <= block.end:
                wall = midnight + timedelta(minutes=offset)
                offset += self.granularity_minutes

                start = wall.astimezone(timezone.utc)
                if start.astimezone(zone).replace(tzinfo=None) != wall.replace(tzinfo=None):
                    continue
                if not find_conflicts(start, start + length, self._active):
                    yield start.astimezone(zone)


def find_next_free_slot(
    facility: Facility,
    after: datetime,
    existing_reservations: Iterable[Reservation],
    granularity_minutes: int,
    horizon_days: int,
    duration_minutes: int | None = None,
) -> datetime | None:
    """Return the first free start time at or after *after*, or ``None``.

    Searches at most *horizon_days* local calendar dates, starting with the
    date *after* falls on in the facility's timezone.
    """
    reservations = list(existing_reservations)
    first_day = after.astimezone(facility.zone).date()
    days = rrule(DAILY, dtstart=datetime.combine(first_day, time()), count=horizon_days)

    for day in days:
        slots = SlotSequence(
            facility,
            day.date(),
            reservations,
            granularity_minutes,
            duration_minutes=duration_minutes,
        )
        for start in slots:
            if start >= after:
                return start
    return None
