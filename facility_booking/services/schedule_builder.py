"""Editor-side construction of availability schedules.

Schedule editors work with toggles ("closed on Sundays", "custom hours on
Saturday") and a list of dated exceptions. ``ScheduleBuilder`` holds that
editing state and only produces a canonical ``AvailabilitySchedule`` when
``build()`` is called, so the resolver never sees half-edited data.
"""

from __future__ import annotations

from datetime import date

from facility_booking.config import settings
from facility_booking.domain.models import (
    AvailabilitySchedule,
    DaySchedule,
    ScheduleException,
    ScheduleExceptionType,
    WeeklySchedule,
    Weekday,
)
from facility_booking.domain.time_blocks import TimeBlock
from facility_booking.exceptions import (
    DuplicateExceptionError,
    ExceptionNotFoundError,
    InvalidScheduleError,
    ScheduleLimitError,
)
from facility_booking.services.schedule import validate_schedule


class ScheduleBuilder:
    def __init__(self, max_exceptions: int | None = None) -> None:
        self.max_exceptions = max_exceptions or settings.MAX_SCHEDULE_EXCEPTIONS
        self._default_blocks: list[TimeBlock] = []
        self._closed_days: set[Weekday] = set()
        self._custom_hours: dict[Weekday, list[TimeBlock]] = {}
        self._exceptions: dict[date, ScheduleException] = {}

    @classmethod
    def from_schedule(
        cls, schedule: AvailabilitySchedule, max_exceptions: int | None = None
    ) -> ScheduleBuilder:
        builder = cls(max_exceptions=max_exceptions)
        weekly = schedule.weekly_schedule
        builder._default_blocks = list(weekly.default_time_blocks)
        for weekday, day in weekly.days.items():
            if not day.available:
                builder._closed_days.add(weekday)
            if day.time_blocks:
                builder._custom_hours[weekday] = list(day.time_blocks)
        builder._exceptions = {e.on_date: e for e in schedule.exceptions}
        return builder

    # ------------------------------------------------------------------
    # Weekly hours
    # ------------------------------------------------------------------

    def set_default_hours(self, blocks: list[TimeBlock]) -> ScheduleBuilder:
        self._default_blocks = list(blocks)
        return self

    def close_day(self, weekday: Weekday) -> ScheduleBuilder:
        self._closed_days.add(weekday)
        return self

    def open_day(self, weekday: Weekday) -> ScheduleBuilder:
        self._closed_days.discard(weekday)
        return self

    def set_custom_hours(self, weekday: Weekday, blocks: list[TimeBlock]) -> ScheduleBuilder:
        """Replace the default hours on *weekday*. An empty list reverts to defaults."""
        if blocks:
            self._custom_hours[weekday] = list(blocks)
        else:
            self._custom_hours.pop(weekday, None)
        return self

    def use_default_hours(self, weekday: Weekday) -> ScheduleBuilder:
        self._custom_hours.pop(weekday, None)
        return self

    # ------------------------------------------------------------------
    # Exceptions
    # ------------------------------------------------------------------

    def add_exception(
        self,
        on_date: date,
        type: ScheduleExceptionType,
        time_blocks: list[TimeBlock] | None = None,
        reason: str | None = None,
        created_by: str | None = None,
    ) -> ScheduleException:
        if on_date in self._exceptions:
            raise DuplicateExceptionError(f"An exception already exists for {on_date.isoformat()}")
        if len(self._exceptions) >= self.max_exceptions:
            raise ScheduleLimitError(f"Maximum of {self.max_exceptions} exceptions allowed")

        exception = ScheduleException(
            on_date=on_date,
            type=type,
            time_blocks=time_blocks or [],
            reason=reason,
            created_by=created_by,
        )
        self._exceptions[on_date] = exception
        return exception

    def remove_exception(self, on_date: date) -> ScheduleException:
        try:
            return self._exceptions.pop(on_date)
        except KeyError:
            raise ExceptionNotFoundError(
                f"No exception found for {on_date.isoformat()}"
            ) from None

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def build(self) -> AvailabilitySchedule:
        days = {
            weekday: DaySchedule(
                available=weekday not in self._closed_days,
                time_blocks=list(self._custom_hours.get(weekday, [])),
            )
            for weekday in Weekday
        }
        schedule = AvailabilitySchedule(
            weekly_schedule=WeeklySchedule(
                default_time_blocks=list(self._default_blocks),
                days=days,
            ),
            exceptions=sorted(self._exceptions.values(), key=lambda e: e.on_date),
        )
        errors = validate_schedule(schedule, self.max_exceptions)
        if errors:
            raise InvalidScheduleError("Invalid availability schedule", details=errors)
        return schedule
