"""Booking validation: the rule chain every new or moved reservation must pass.

Rules run in a fixed order and the first failure wins:

1. duration          - positive, at least the facility minimum, at most its maximum
2. booking window    - not too close to the start, not too far ahead
3. horse limit       - no more horses than the facility allows
4. business hours    - inside the open intervals of every local date it touches
5. conflict          - no overlap with another active reservation

Validation never raises for a rejected booking; it returns a ``ConflictResult``.
Moving a reservation is the same call with ``exclude_reservation_id`` set.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Iterable

from facility_booking.domain.models import (
    BookingRequest,
    ConflictResult,
    Facility,
    Reservation,
    RuleKind,
)
from facility_booking.domain.time_blocks import MINUTES_PER_DAY, format_time_of_day, is_range_available
from facility_booking.services.conflicts import active_reservations, find_conflicts
from facility_booking.services.schedule import resolve_open_intervals

logger = logging.getLogger(__name__)


def validate_booking(
    request: BookingRequest,
    facility: Facility,
    existing_reservations: Iterable[Reservation],
    now: datetime,
) -> ConflictResult:
    """Decide whether *request* may be booked on *facility* at time *now*."""
    for check in (_check_duration, _check_booking_window, _check_horse_limit, _check_business_hours):
        result = check(request, facility, now)
        if result is not None:
            logger.debug("Booking on %s rejected: %s", facility.id, result.violated_rule)
            return result

    conflicts = find_conflicts(
        request.start,
        request.end,
        active_reservations(facility.id, existing_reservations),
        exclude_id=request.exclude_reservation_id,
    )
    if conflicts:
        plural = "s" if len(conflicts) > 1 else ""
        return ConflictResult.reject(
            RuleKind.CONFLICT,
            f"Time slot conflicts with {len(conflicts)} existing booking{plural}",
            conflicts,
        )

    return ConflictResult.ok()


def _check_duration(request: BookingRequest, facility: Facility, now: datetime) -> ConflictResult | None:
    if request.end <= request.start:
        return ConflictResult.reject(RuleKind.DURATION, "End time must be after start time")

    minutes = (request.end - request.start).total_seconds() / 60
    if minutes < facility.min_slot_duration_minutes:
        return ConflictResult.reject(
            RuleKind.DURATION,
            f"Minimum booking duration is {facility.min_slot_duration_minutes} minutes",
        )
    if facility.max_duration_minutes is not None and minutes > facility.max_duration_minutes:
        return ConflictResult.reject(
            RuleKind.DURATION,
            f"Maximum booking duration is {facility.max_duration_minutes} minutes",
        )
    return None


def _check_booking_window(request: BookingRequest, facility: Facility, now: datetime) -> ConflictResult | None:
    earliest = now + timedelta(days=facility.planning_window_closes_days)
    latest = now + timedelta(days=facility.planning_window_opens_days)
    if request.start < earliest:
        return ConflictResult.reject(
            RuleKind.BOOKING_WINDOW,
            f"Reservations must be made at least {facility.planning_window_closes_days} "
            "day(s) before they start",
        )
    if request.start > latest:
        return ConflictResult.reject(
            RuleKind.BOOKING_WINDOW,
            f"Reservations can be made at most {facility.planning_window_opens_days} "
            "days in advance",
        )
    return None


def _check_horse_limit(request: BookingRequest, facility: Facility, now: datetime) -> ConflictResult | None:
    if request.horse_count > facility.max_horses_per_reservation:
        return ConflictResult.reject(
            RuleKind.HORSE_LIMIT,
            f"Too many horses selected. Maximum {facility.max_horses_per_reservation} "
            "horses allowed per reservation.",
        )
    return None


def _check_business_hours(request: BookingRequest, facility: Facility, now: datetime) -> ConflictResult | None:
    return business_hours_violation(facility, request.start, request.end)


def business_hours_violation(facility: Facility, start: datetime, end: datetime) -> ConflictResult | None:
    """Return a ``business_hours`` rejection when ``[start, end)`` is not fully open."""
    zone = facility.zone
    local_start = start.astimezone(zone)
    local_end = end.astimezone(zone)

    for on_date, start_minute, end_minute in local_day_segments(local_start, local_end):
        blocks = resolve_open_intervals(facility.availability_schedule, on_date)
        if not blocks:
            return ConflictResult.reject(
                RuleKind.BUSINESS_HOURS, f"Facility is closed on {on_date.isoformat()}"
            )
        if not is_range_available(blocks, start_minute, end_minute):
            return ConflictResult.reject(
                RuleKind.BUSINESS_HOURS,
                f"Selected time ({format_time_of_day(start_minute)}-"
                f"{format_time_of_day(end_minute)}) is outside facility business hours",
            )
    return None


def local_day_segments(local_start: datetime, local_end: datetime) -> list[tuple[date, int, int]]:
    """Split a local interval into ``(date, start_minute, end_minute)`` pieces, one per date.

    An interval ending exactly at midnight belongs to the previous date only
    and its piece ends at 24:00.
    """
    first = local_start.date()
    last = local_end.date()
    end_minute = _minute_of_day(local_end, round_up=True)
    if end_minute == 0 and last > first:
        last -= timedelta(days=1)
        end_minute = MINUTES_PER_DAY

    segments: list[tuple[date, int, int]] = []
    current = first
    while current <= last:
        piece_start = _minute_of_day(local_start) if current == first else 0
        piece_end = end_minute if current == last else MINUTES_PER_DAY
        segments.append((current, piece_start, piece_end))
        current += timedelta(days=1)
    return segments


def _minute_of_day(moment: datetime, round_up: bool = False) -> int:
    minutes = moment.hour * 60 + moment.minute
    if round_up and (moment.second or moment.microsecond):
        minutes += 1
    return minutes
