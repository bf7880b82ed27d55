"""Aggregated booking metrics for a stable."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable, Mapping

from facility_booking.domain.models import (
    FacilityUtilization,
    Reservation,
    ReservationAnalytics,
    ReservationMetrics,
    ReservationStatus,
    TopUser,
)

TOP_USERS_LIMIT = 10


def check_date_range(start: datetime, end: datetime, max_days: int) -> None:
    """Raise ``ValueError`` for a reversed range or one longer than *max_days*."""
    if start > end:
        raise ValueError("startDate must be before endDate")
    if end - start > timedelta(days=max_days):
        raise ValueError(f"Date range cannot exceed {max_days} days")


def summarize_reservations(
    reservations: Iterable[Reservation],
    start: datetime,
    end: datetime,
    zones: Mapping[str, tzinfo] | None = None,
) -> ReservationAnalytics:
    """Summarize reservations whose start falls within ``[start, end]``.

    The peak hour is the hour of day on the facility's local clock, taken
    from *zones* (facility id to timezone). Facilities missing from *zones*
    count in UTC, never in whatever offset the client sent.
    """
    zones = zones or {}
    in_range = [r for r in reservations if start <= r.start <= end]
    statuses = Counter(r.status for r in in_range)

    completed = statuses[ReservationStatus.COMPLETED]
    no_shows = statuses[ReservationStatus.NO_SHOW]
    completable = completed + no_shows
    no_show_rate = round(no_shows / completable * 100, 1) if completable else 0.0

    total_minutes = sum(r.duration_minutes for r in in_range)
    average_duration = round(total_minutes / len(in_range)) if in_range else 0

    hours = Counter(
        r.start.astimezone(zones.get(r.facility_id, timezone.utc)).hour for r in in_range
    )
    peak_hour = hours.most_common(1)[0][0] if hours else None

    utilization: dict[str, FacilityUtilization] = {}
    for reservation in in_range:
        entry = utilization.setdefault(
            reservation.facility_id, FacilityUtilization(facility_id=reservation.facility_id)
        )
        entry.bookings += 1
        entry.booked_hours += reservation.duration_minutes / 60

    users = Counter(r.user_id for r in in_range)
    top_users = [
        TopUser(user_id=user_id, booking_count=count)
        for user_id, count in users.most_common(TOP_USERS_LIMIT)
    ]

    return ReservationAnalytics(
        metrics=ReservationMetrics(
            total_bookings=len(in_range),
            pending_bookings=statuses[ReservationStatus.PENDING],
            confirmed_bookings=statuses[ReservationStatus.CONFIRMED],
            completed_bookings=completed,
            cancelled_bookings=statuses[ReservationStatus.CANCELLED],
            no_shows=no_shows,
            average_duration=average_duration,
            no_show_rate=no_show_rate,
            peak_hour=peak_hour,
        ),
        facility_utilization=list(utilization.values()),
        top_users=top_users,
        start_date=start,
        end_date=end,
    )
