"""Reservation lifecycle with commit-time validation.

Client-side checks are advisory. Every write re-runs ``validate_booking``
while holding the facility's write lock and only commits when it passes,
so two concurrent bookings for the same window cannot both succeed.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable

from facility_booking.config import settings
from facility_booking.domain.bus import EventBus
from facility_booking.domain.events import (
    ReservationCreated,
    ReservationMoved,
    ReservationStatusChanged,
    ReservationUpdated,
)
from facility_booking.domain.models import (
    BookingRequest,
    ConflictResult,
    Facility,
    Reservation,
    ReservationCreate,
    ReservationStatus,
    ReservationUpdate,
)
from facility_booking.exceptions import (
    BookingRejectedError,
    FacilityUnavailableError,
    InvalidTransitionError,
    NotFoundError,
)
from facility_booking.repos.memory import FacilityRepository, ReservationRepository
from facility_booking.services.slots import SlotSequence, find_next_free_slot
from facility_booking.services.validator import validate_booking

logger = logging.getLogger(__name__)

_MOVE_FIELDS = ("facility_id", "start", "end", "horse_ids")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReservationService:
    def __init__(
        self,
        facility_repo: FacilityRepository,
        reservation_repo: ReservationRepository,
        bus: EventBus,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.facility_repo = facility_repo
        self.reservation_repo = reservation_repo
        self.bus = bus
        self.clock = clock

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check(self, facility_id: str, request: BookingRequest) -> ConflictResult:
        """Advisory pre-check; nothing is locked or written."""
        facility = self._get_facility(facility_id)
        return validate_booking(
            request,
            facility,
            self.reservation_repo.list_for_facility(facility.id, active_only=True),
            self.clock(),
        )

    def slot_starts(
        self, facility_id: str, on_date: date, granularity_minutes: int | None = None
    ) -> SlotSequence:
        facility = self._get_facility(facility_id)
        return SlotSequence(
            facility,
            on_date,
            self.reservation_repo.list_for_facility(facility.id, active_only=True),
            granularity_minutes or settings.SLOT_GRANULARITY_MINUTES,
        )

    def next_free_slot(self, facility_id: str, after: datetime) -> datetime | None:
        facility = self._get_facility(facility_id)
        return find_next_free_slot(
            facility,
            after,
            self.reservation_repo.list_for_facility(facility.id, active_only=True),
            settings.SLOT_GRANULARITY_MINUTES,
            settings.NEXT_SLOT_HORIZON_DAYS,
        )

    def _validate_for_commit(self, facility: Facility, request: BookingRequest) -> None:
        # Caller holds the facility write lock.
        result = validate_booking(
            request,
            facility,
            self.reservation_repo.list_for_facility(facility.id, active_only=True),
            self.clock(),
        )
        if not result.valid:
            logger.info(
                "Rejected booking on facility %s: %s (%s)",
                facility.id,
                result.violated_rule,
                result.message,
            )
            raise BookingRejectedError(result)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, payload: ReservationCreate, user_id: str) -> Reservation:
        request = BookingRequest(
            start=payload.start,
            end=payload.end,
            horse_count=len(payload.horse_ids),
        )
        with self.facility_repo.write_lock(payload.facility_id):
            facility = self._get_reservable_facility(payload.facility_id)
            self._validate_for_commit(facility, request)
            reservation = Reservation(
                facility_id=facility.id,
                stable_id=facility.stable_id,
                user_id=user_id,
                horse_ids=list(payload.horse_ids),
                start=payload.start,
                end=payload.end,
                status=(
                    ReservationStatus.CONFIRMED
                    if facility.auto_confirm
                    else ReservationStatus.PENDING
                ),
                purpose=payload.purpose,
                notes=payload.notes,
            )
            self.reservation_repo.add(reservation)

        logger.info(
            "Reservation %s committed on facility %s (%s)",
            reservation.id,
            facility.id,
            reservation.status.value,
        )
        self.bus.publish(ReservationCreated(reservation_id=reservation.id, actor_id=user_id))
        return reservation

    def update(
        self, reservation_id: str, payload: ReservationUpdate, actor_id: str | None = None
    ) -> Reservation:
        """Move and/or edit a reservation. Moves go through full validation."""
        current = self._get_reservation(reservation_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        facility_id = changes.get("facility_id", current.facility_id)

        needs_validation = any(
            field in changes and changes[field] != getattr(current, field) for field in _MOVE_FIELDS
        )

        with self.facility_repo.write_lock(facility_id):
            reservation = self._get_reservation(reservation_id)
            if not reservation.is_active:
                raise InvalidTransitionError(
                    f"Cannot modify a {reservation.status.value} reservation"
                )

            previous = (reservation.facility_id, reservation.start, reservation.end)
            if needs_validation:
                # A move is a new booking: the target must be accepting reservations.
                facility = self._get_reservable_facility(facility_id)
                start = changes.get("start", reservation.start)
                end = changes.get("end", reservation.end)
                horse_ids = changes.get("horse_ids", reservation.horse_ids)
                self._validate_for_commit(
                    facility,
                    BookingRequest(
                        start=start,
                        end=end,
                        horse_count=len(horse_ids),
                        exclude_reservation_id=reservation.id,
                    ),
                )

            for field, value in changes.items():
                setattr(reservation, field, value)
            reservation.updated_at = self.clock()

        moved = previous != (reservation.facility_id, reservation.start, reservation.end)
        if moved:
            logger.info("Reservation %s moved", reservation.id)
            self.bus.publish(
                ReservationMoved(
                    reservation_id=reservation.id,
                    previous_facility_id=previous[0],
                    previous_start=previous[1],
                    previous_end=previous[2],
                    actor_id=actor_id,
                )
            )
        elif changes:
            self.bus.publish(
                ReservationUpdated(
                    reservation_id=reservation.id,
                    fields=sorted(changes),
                    actor_id=actor_id,
                )
            )
        return reservation

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def approve(self, reservation_id: str, actor_id: str | None = None) -> Reservation:
        reservation = self._get_reservation(reservation_id)
        if reservation.status != ReservationStatus.PENDING:
            raise InvalidTransitionError(
                f"Only pending reservations can be approved (is {reservation.status.value})"
            )
        return self._set_status(reservation, ReservationStatus.CONFIRMED, actor_id)

    def cancel(self, reservation_id: str, actor_id: str | None = None) -> Reservation:
        reservation = self._get_reservation(reservation_id)
        if not reservation.is_active:
            raise InvalidTransitionError(
                f"Cannot cancel a {reservation.status.value} reservation"
            )
        return self._set_status(reservation, ReservationStatus.CANCELLED, actor_id)

    def mark_no_show(self, reservation_id: str, actor_id: str | None = None) -> Reservation:
        reservation = self._get_reservation(reservation_id)
        if reservation.status != ReservationStatus.CONFIRMED:
            raise InvalidTransitionError("Only confirmed reservations can be marked as no-show")
        if reservation.start > self.clock():
            raise InvalidTransitionError("Reservation has not started yet")
        return self._set_status(reservation, ReservationStatus.NO_SHOW, actor_id)

    def complete_elapsed(self, now: datetime | None = None) -> list[str]:
        """Mark confirmed reservations whose end has passed as completed."""
        current_time = now or self.clock()
        completed: list[str] = []
        for reservation in self.reservation_repo.list_active_ended_before(current_time):
            if reservation.status != ReservationStatus.CONFIRMED:
                continue
            self._set_status(reservation, ReservationStatus.COMPLETED, actor_id=None)
            completed.append(reservation.id)
        return completed

    def _set_status(
        self, reservation: Reservation, status: ReservationStatus, actor_id: str | None
    ) -> Reservation:
        previous = reservation.status
        reservation.status = status
        reservation.updated_at = self.clock()
        self.bus.publish(
            ReservationStatusChanged(
                reservation_id=reservation.id,
                previous_status=previous,
                new_status=status,
                actor_id=actor_id,
            )
        )
        return reservation

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_facility(self, facility_id: str) -> Facility:
        facility = self.facility_repo.get(facility_id)
        if facility is None:
            raise NotFoundError("Facility not found")
        return facility

    def _get_reservable_facility(self, facility_id: str) -> Facility:
        facility = self._get_facility(facility_id)
        if not facility.is_reservable:
            raise FacilityUnavailableError(
                f"Facility is {facility.status.value} and not accepting reservations"
            )
        return facility

    def _get_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.reservation_repo.get(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation not found")
        return reservation
