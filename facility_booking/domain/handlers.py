"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

import logging
from typing import Any

from facility_booking.domain.bus import EventBus
from facility_booking.domain.events import (
    ReservationCreated,
    ReservationEvent,
    ReservationMoved,
    ReservationStatusChanged,
    ReservationUpdated,
    ScheduleExceptionAdded,
    ScheduleExceptionRemoved,
)
from facility_booking.domain.models import (
    AuditEntry,
    AuditEntryType,
    Reservation,
    ReservationStatus,
)
from facility_booking.repos.memory import (
    AuditLogRepository,
    FacilityRepository,
    ReservationRepository,
)
from facility_booking.services.validator import business_hours_violation, local_day_segments

logger = logging.getLogger(__name__)

_STATUS_ENTRY_TYPES = {
    ReservationStatus.CONFIRMED: AuditEntryType.CONFIRMED,
    ReservationStatus.CANCELLED: AuditEntryType.CANCELLED,
    ReservationStatus.COMPLETED: AuditEntryType.COMPLETED,
    ReservationStatus.NO_SHOW: AuditEntryType.NO_SHOW,
}

AuditRecord = tuple[AuditEntryType, dict[str, Any]]


def _created_record(event: ReservationCreated, stored: Reservation) -> AuditRecord:
    return AuditEntryType.CREATED, {
        "start": stored.start.isoformat(),
        "end": stored.end.isoformat(),
        "status": stored.status.value,
    }


def _moved_record(event: ReservationMoved, stored: Reservation) -> AuditRecord:
    return AuditEntryType.MOVED, {
        "previous": {
            "facilityId": event.previous_facility_id,
            "start": event.previous_start.isoformat(),
            "end": event.previous_end.isoformat(),
        },
        "current": {
            "facilityId": stored.facility_id,
            "start": stored.start.isoformat(),
            "end": stored.end.isoformat(),
        },
    }


def _updated_record(event: ReservationUpdated, stored: Reservation) -> AuditRecord:
    return AuditEntryType.UPDATED, {"fields": event.fields}


def _status_record(event: ReservationStatusChanged, stored: Reservation) -> AuditRecord:
    return _STATUS_ENTRY_TYPES[event.new_status], {
        "previousStatus": event.previous_status.value,
        "newStatus": event.new_status.value,
    }


_AUDIT_RECORDS = {
    ReservationCreated: _created_record,
    ReservationMoved: _moved_record,
    ReservationUpdated: _updated_record,
    ReservationStatusChanged: _status_record,
}


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to the repositories."""

    def __init__(
        self,
        bus: EventBus,
        facility_repo: FacilityRepository,
        reservation_repo: ReservationRepository,
        audit_repo: AuditLogRepository,
    ) -> None:
        self.bus = bus
        self.facility_repo = facility_repo
        self.reservation_repo = reservation_repo
        self.audit_repo = audit_repo
        self._register()

    def _register(self) -> None:
        # One subscription covers every reservation event subclass.
        self.bus.subscribe(ReservationEvent, self.on_reservation_event)
        self.bus.subscribe(ScheduleExceptionAdded, self.on_exception_added)
        self.bus.subscribe(ScheduleExceptionRemoved, self.on_exception_removed)

    # ------------------------------------------------------------------
    # Reservation audit trail
    # ------------------------------------------------------------------

    def on_reservation_event(self, event: ReservationEvent) -> None:
        """Append the audit entry for any reservation event."""
        stored = self.reservation_repo.get(event.reservation_id)
        if stored is None:
            return

        build = _AUDIT_RECORDS.get(type(event))
        if build is None:
            logger.debug("No audit entry for %s", type(event).__name__)
            return

        entry_type, payload = build(event, stored)
        self.audit_repo.add(
            AuditEntry(
                facility_id=stored.facility_id,
                reservation_id=stored.id,
                type=entry_type,
                actor_id=event.actor_id,
                payload=payload,
            )
        )
        logger.debug("Audit: reservation %s %s", stored.id, entry_type.value)

    # ------------------------------------------------------------------
    # Schedule handlers
    # ------------------------------------------------------------------

    def on_exception_added(self, event: ScheduleExceptionAdded) -> None:
        facility = self.facility_repo.get(event.facility_id)
        if facility is None:
            return

        self.audit_repo.add(
            AuditEntry(
                facility_id=facility.id,
                type=AuditEntryType.EXCEPTION_ADDED,
                actor_id=event.actor_id,
                payload={"date": event.on_date.isoformat()},
            )
        )

        # Existing bookings are flagged for follow-up, never cancelled here.
        for reservation in self.reservation_repo.list_for_facility(facility.id, active_only=True):
            local_start = reservation.start.astimezone(facility.zone)
            local_end = reservation.end.astimezone(facility.zone)
            touched = {d for d, _, _ in local_day_segments(local_start, local_end)}
            if event.on_date not in touched:
                continue

            violation = business_hours_violation(facility, reservation.start, reservation.end)
            if violation is None:
                continue

            logger.warning(
                "Reservation %s on facility %s is now outside business hours (%s)",
                reservation.id,
                facility.id,
                event.on_date.isoformat(),
            )
            self.audit_repo.add(
                AuditEntry(
                    facility_id=facility.id,
                    reservation_id=reservation.id,
                    type=AuditEntryType.OUTSIDE_HOURS,
                    actor_id=event.actor_id,
                    payload={"date": event.on_date.isoformat(), "message": violation.message},
                )
            )

    def on_exception_removed(self, event: ScheduleExceptionRemoved) -> None:
        self.audit_repo.add(
            AuditEntry(
                facility_id=event.facility_id,
                type=AuditEntryType.EXCEPTION_REMOVED,
                actor_id=event.actor_id,
                payload={"date": event.on_date.isoformat()},
            )
        )
