"""Domain models for facility availability and reservations."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import StrEnum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from facility_booking.config import settings
from facility_booking.domain.time_blocks import TimeBlock


class Weekday(StrEnum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def for_date(cls, on_date: date) -> Weekday:
        return list(cls)[on_date.weekday()]


class ScheduleExceptionType(StrEnum):
    CLOSED = "closed"
    MODIFIED = "modified"


class FacilityStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class ReservationStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


ACTIVE_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED})


class RuleKind(StrEnum):
    DURATION = "duration"
    BOOKING_WINDOW = "booking_window"
    HORSE_LIMIT = "horse_limit"
    BUSINESS_HOURS = "business_hours"
    CONFLICT = "conflict"


class AuditEntryType(StrEnum):
    CREATED = "created"
    MOVED = "moved"
    UPDATED = "updated"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    OUTSIDE_HOURS = "outside_hours"
    EXCEPTION_ADDED = "exception_added"
    EXCEPTION_REMOVED = "exception_removed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    """Base model whose wire names are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Availability schedule
# ---------------------------------------------------------------------------


class DaySchedule(CamelModel):
    available: bool = True
    time_blocks: list[TimeBlock] = Field(default_factory=list)

    @property
    def is_default(self) -> bool:
        """Available with no custom hours, i.e. follows the facility default."""
        return self.available and not self.time_blocks


class WeeklySchedule(CamelModel):
    default_time_blocks: list[TimeBlock] = Field(default_factory=list)
    days: dict[Weekday, DaySchedule] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _fill_missing_days(self) -> WeeklySchedule:
        for weekday in Weekday:
            self.days.setdefault(weekday, DaySchedule())
        return self

    @field_serializer("days", mode="wrap")
    def _only_custom_days(self, days, handler):
        # Days that just follow the defaults are left off the wire.
        return handler({k: v for k, v in days.items() if not v.is_default})


class ScheduleException(CamelModel):
    on_date: date = Field(alias="date")
    type: ScheduleExceptionType
    time_blocks: list[TimeBlock] = Field(default_factory=list)
    reason: str | None = Field(default=None, max_length=500)
    created_by: str | None = None

    @model_validator(mode="after")
    def _blocks_match_type(self) -> ScheduleException:
        if self.type == ScheduleExceptionType.CLOSED:
            self.time_blocks = []
        elif not self.time_blocks:
            raise ValueError("modified exceptions require at least one time block")
        return self


class AvailabilitySchedule(CamelModel):
    """Weekly template plus dated exceptions describing when a facility is bookable."""

    weekly_schedule: WeeklySchedule = Field(default_factory=WeeklySchedule)
    exceptions: list[ScheduleException] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_exception_dates(self) -> AvailabilitySchedule:
        seen: set[date] = set()
        for exception in self.exceptions:
            if exception.on_date in seen:
                raise ValueError(f"more than one exception for {exception.on_date}")
            seen.add(exception.on_date)
        return self

    def exception_for(self, on_date: date) -> ScheduleException | None:
        for exception in self.exceptions:
            if exception.on_date == on_date:
                return exception
        return None


def create_default_schedule() -> AvailabilitySchedule:
    """08:00-20:00 every day, no exceptions."""
    return AvailabilitySchedule(
        weekly_schedule=WeeklySchedule(default_time_blocks=[TimeBlock.of("08:00", "20:00")])
    )


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Facility(CamelModel):
    id: str = Field(default_factory=_new_id)
    stable_id: str
    name: str = Field(min_length=1)
    type: str
    description: str | None = None
    status: FacilityStatus = FacilityStatus.ACTIVE
    timezone: str = Field(default_factory=lambda: settings.DEFAULT_TIMEZONE)
    availability_schedule: AvailabilitySchedule = Field(default_factory=create_default_schedule)
    planning_window_opens_days: int = Field(
        default_factory=lambda: settings.DEFAULT_PLANNING_WINDOW_OPENS_DAYS, ge=0
    )
    planning_window_closes_days: int = Field(
        default_factory=lambda: settings.DEFAULT_PLANNING_WINDOW_CLOSES_DAYS, ge=0
    )
    max_horses_per_reservation: int = Field(
        default_factory=lambda: settings.DEFAULT_MAX_HORSES_PER_RESERVATION, gt=0
    )
    min_slot_duration_minutes: int = Field(
        default_factory=lambda: settings.DEFAULT_MIN_SLOT_DURATION_MINUTES, gt=0
    )
    max_duration_minutes: int | None = Field(default=None, gt=0)
    auto_confirm: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {value!r}") from None
        return value

    @model_validator(mode="after")
    def _consistent_booking_rules(self) -> Facility:
        if self.planning_window_closes_days > self.planning_window_opens_days:
            raise ValueError("planning window closes after it opens")
        if (
            self.max_duration_minutes is not None
            and self.max_duration_minutes < self.min_slot_duration_minutes
        ):
            raise ValueError("max duration is shorter than the minimum slot duration")
        return self

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def is_reservable(self) -> bool:
        return self.status == FacilityStatus.ACTIVE


class Reservation(CamelModel):
    id: str = Field(default_factory=_new_id)
    facility_id: str
    stable_id: str | None = None
    user_id: str
    horse_ids: list[str] = Field(default_factory=list)
    start: AwareDatetime
    end: AwareDatetime
    status: ReservationStatus = ReservationStatus.PENDING
    purpose: str | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _end_after_start(self) -> Reservation:
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def horse_count(self) -> int:
        return len(self.horse_ids)

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60


class AuditEntry(CamelModel):
    id: str = Field(default_factory=_new_id)
    facility_id: str
    reservation_id: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    type: AuditEntryType
    actor_id: str | None = None
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Validation input / output
# ---------------------------------------------------------------------------


class BookingRequest(CamelModel):
    start: AwareDatetime
    end: AwareDatetime
    horse_count: int = Field(default=1, ge=0)
    exclude_reservation_id: str | None = None


class ConflictResult(CamelModel):
    valid: bool
    conflicts: list[Reservation] = Field(default_factory=list)
    violated_rule: RuleKind | None = None
    message: str

    @classmethod
    def ok(cls, message: str = "Time slot is available") -> ConflictResult:
        return cls(valid=True, message=message)

    @classmethod
    def reject(
        cls,
        rule: RuleKind,
        message: str,
        conflicts: list[Reservation] | None = None,
    ) -> ConflictResult:
        return cls(valid=False, violated_rule=rule, message=message, conflicts=conflicts or [])


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class FacilityCreate(CamelModel):
    stable_id: str
    name: str = Field(min_length=1)
    type: str
    description: str | None = None
    status: FacilityStatus | None = None
    timezone: str | None = None
    availability_schedule: AvailabilitySchedule | None = None
    planning_window_opens_days: int | None = Field(default=None, ge=0)
    planning_window_closes_days: int | None = Field(default=None, ge=0)
    max_horses_per_reservation: int | None = Field(default=None, gt=0)
    min_slot_duration_minutes: int | None = Field(default=None, gt=0)
    max_duration_minutes: int | None = Field(default=None, gt=0)
    auto_confirm: bool | None = None


class FacilityUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1)
    type: str | None = None
    description: str | None = None
    status: FacilityStatus | None = None
    timezone: str | None = None
    availability_schedule: AvailabilitySchedule | None = None
    planning_window_opens_days: int | None = Field(default=None, ge=0)
    planning_window_closes_days: int | None = Field(default=None, ge=0)
    max_horses_per_reservation: int | None = Field(default=None, gt=0)
    min_slot_duration_minutes: int | None = Field(default=None, gt=0)
    max_duration_minutes: int | None = Field(default=None, gt=0)
    auto_confirm: bool | None = None


class ReservationCreate(CamelModel):
    facility_id: str
    horse_ids: list[str] = Field(min_length=1)
    start: AwareDatetime
    end: AwareDatetime
    purpose: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=500)


class ReservationUpdate(CamelModel):
    facility_id: str | None = None
    horse_ids: list[str] | None = Field(default=None, min_length=1)
    start: AwareDatetime | None = None
    end: AwareDatetime | None = None
    purpose: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=500)


class CheckConflictsRequest(BookingRequest):
    facility_id: str


class AvailableSlotsResponse(CamelModel):
    date: str
    time_blocks: list[TimeBlock]
    slot_starts: list[datetime]


class NextFreeSlotResponse(CamelModel):
    start: datetime | None = None


class BookingErrorResponse(CamelModel):
    error: str
    message: str
    violated_rule: RuleKind | None = None
    conflicts: list[Reservation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class ReservationMetrics(CamelModel):
    total_bookings: int = 0
    pending_bookings: int = 0
    confirmed_bookings: int = 0
    completed_bookings: int = 0
    cancelled_bookings: int = 0
    no_shows: int = 0
    average_duration: int = 0
    no_show_rate: float = 0.0
    peak_hour: int | None = None


class FacilityUtilization(CamelModel):
    facility_id: str
    bookings: int = 0
    booked_hours: float = 0.0


class TopUser(CamelModel):
    user_id: str
    booking_count: int = 0


class ReservationAnalytics(CamelModel):
    metrics: ReservationMetrics
    facility_utilization: list[FacilityUtilization] = Field(default_factory=list)
    top_users: list[TopUser] = Field(default_factory=list)
    start_date: datetime
    end_date: datetime
