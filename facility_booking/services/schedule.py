"""Resolve a facility's availability schedule into open intervals for a date."""

from __future__ import annotations

from datetime import date

from facility_booking.domain.models import (
    AvailabilitySchedule,
    ScheduleExceptionType,
    Weekday,
)
from facility_booking.domain.time_blocks import TimeBlock, find_overlapping_blocks, normalize_blocks


def resolve_open_intervals(schedule: AvailabilitySchedule, on_date: date) -> list[TimeBlock]:
    """Return the sorted, merged open intervals of *schedule* on *on_date*.

    Precedence: a ``closed`` exception wins over everything; a ``modified``
    exception replaces the weekly schedule for that date; otherwise the
    weekday's own hours apply, falling back to the default hours.

    *on_date* must already be a calendar date in the facility's timezone.
    """
    exception = schedule.exception_for(on_date)
    if exception is not None:
        if exception.type == ScheduleExceptionType.CLOSED:
            return []
        return normalize_blocks(exception.time_blocks)

    weekly = schedule.weekly_schedule
    day = weekly.days[Weekday.for_date(on_date)]
    if not day.available:
        return []
    if day.time_blocks:
        return normalize_blocks(day.time_blocks)
    return normalize_blocks(weekly.default_time_blocks)


def validate_schedule(schedule: AvailabilitySchedule, max_exceptions: int) -> list[str]:
    """Return one human-readable message per problem an editor should fix."""
    errors: list[str] = []

    weekly = schedule.weekly_schedule
    errors.extend(_overlap_errors("default hours", weekly.default_time_blocks))
    for weekday, day in weekly.days.items():
        errors.extend(_overlap_errors(weekday.value, day.time_blocks))

    for exception in schedule.exceptions:
        errors.extend(_overlap_errors(f"exception on {exception.on_date}", exception.time_blocks))

    if len(schedule.exceptions) > max_exceptions:
        errors.append(f"Maximum of {max_exceptions} exceptions allowed")

    return errors


def _overlap_errors(label: str, blocks: list[TimeBlock]) -> list[str]:
    return [
        f"{label}: time blocks {first} and {second} overlap"
        for first, second in find_overlapping_blocks(blocks)
    ]
