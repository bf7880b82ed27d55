"""Facility management: CRUD and schedule exceptions."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from facility_booking.config import settings
from facility_booking.domain.bus import EventBus
from facility_booking.domain.events import ScheduleExceptionAdded, ScheduleExceptionRemoved
from facility_booking.domain.models import (
    AvailabilitySchedule,
    Facility,
    FacilityCreate,
    FacilityStatus,
    FacilityUpdate,
    ScheduleException,
)
from facility_booking.domain.time_blocks import TimeBlock
from facility_booking.exceptions import InvalidFacilityError, InvalidScheduleError, NotFoundError
from facility_booking.repos.memory import FacilityRepository
from facility_booking.services.schedule import resolve_open_intervals, validate_schedule
from facility_booking.services.schedule_builder import ScheduleBuilder

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_facility(fields: dict[str, Any]) -> Facility:
    try:
        return Facility(**fields)
    except ValidationError as exc:
        raise InvalidFacilityError(
            "Invalid facility", details=[error["msg"] for error in exc.errors()]
        ) from exc


def _check_schedule(schedule: AvailabilitySchedule) -> None:
    errors = validate_schedule(schedule, settings.MAX_SCHEDULE_EXCEPTIONS)
    if errors:
        raise InvalidScheduleError("Invalid availability schedule", details=errors)


class FacilityService:
    def __init__(
        self,
        facility_repo: FacilityRepository,
        bus: EventBus,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.facility_repo = facility_repo
        self.bus = bus
        self.clock = clock

    def create(self, payload: FacilityCreate) -> Facility:
        fields = {name: value for name, value in payload if value is not None}
        if payload.availability_schedule is not None:
            _check_schedule(payload.availability_schedule)

        facility = _build_facility(fields)
        self.facility_repo.add(facility)
        logger.info("Facility %s created for stable %s", facility.id, facility.stable_id)
        return facility

    def get(self, facility_id: str) -> Facility:
        facility = self.facility_repo.get(facility_id)
        if facility is None:
            raise NotFoundError("Facility not found")
        return facility

    def list_for_stable(
        self,
        stable_id: str,
        status: FacilityStatus | None = None,
        reservable_only: bool = False,
    ) -> list[Facility]:
        facilities = self.facility_repo.list_for_stable(stable_id)
        if status is not None:
            facilities = [f for f in facilities if f.status == status]
        elif reservable_only:
            facilities = [f for f in facilities if f.is_reservable]
        return facilities

    def update(self, facility_id: str, payload: FacilityUpdate) -> Facility:
        changes = {
            name: getattr(payload, name)
            for name in payload.model_fields_set
            if getattr(payload, name) is not None or name == "description"
        }
        if payload.availability_schedule is not None:
            _check_schedule(payload.availability_schedule)

        with self.facility_repo.write_lock(facility_id):
            facility = self.get(facility_id)
            updated = _build_facility({**dict(facility), **changes, "updated_at": self.clock()})
            self.facility_repo.add(updated)
        logger.info("Facility %s updated (%s)", facility_id, ", ".join(sorted(changes)))
        return updated

    def delete(self, facility_id: str) -> None:
        self.get(facility_id)
        self.facility_repo.delete(facility_id)
        logger.info("Facility %s deleted", facility_id)

    # ------------------------------------------------------------------
    # Schedule exceptions
    # ------------------------------------------------------------------

    def add_exception(
        self, facility_id: str, exception: ScheduleException, actor_id: str | None = None
    ) -> ScheduleException:
        # The outside-hours scan runs under the same lock as reservation
        # commits, so no booking lands between the swap and the scan.
        with self.facility_repo.write_lock(facility_id):
            facility = self.get(facility_id)
            builder = ScheduleBuilder.from_schedule(facility.availability_schedule)
            added = builder.add_exception(
                exception.on_date,
                exception.type,
                time_blocks=exception.time_blocks,
                reason=exception.reason,
                created_by=actor_id,
            )
            facility.availability_schedule = builder.build()
            facility.updated_at = self.clock()

            logger.info(
                "Schedule exception (%s) added to facility %s on %s",
                added.type.value,
                facility_id,
                added.on_date.isoformat(),
            )
            self.bus.publish(
                ScheduleExceptionAdded(facility_id=facility_id, on_date=added.on_date, actor_id=actor_id)
            )
        return added

    def remove_exception(self, facility_id: str, on_date: date, actor_id: str | None = None) -> None:
        with self.facility_repo.write_lock(facility_id):
            facility = self.get(facility_id)
            builder = ScheduleBuilder.from_schedule(facility.availability_schedule)
            builder.remove_exception(on_date)
            facility.availability_schedule = builder.build()
            facility.updated_at = self.clock()

            logger.info("Schedule exception removed from facility %s on %s", facility_id, on_date.isoformat())
            self.bus.publish(
                ScheduleExceptionRemoved(facility_id=facility_id, on_date=on_date, actor_id=actor_id)
            )

    def open_intervals(self, facility_id: str, on_date: date) -> list[TimeBlock]:
        return resolve_open_intervals(self.get(facility_id).availability_schedule, on_date)
