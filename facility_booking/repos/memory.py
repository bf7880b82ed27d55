"""In-memory repositories for facilities, reservations and the audit log."""

from __future__ import annotations

import threading
from datetime import datetime

from facility_booking.domain.models import AuditEntry, Facility, Reservation


class FacilityRepository:
    """Dict-backed store for Facility instances, keyed by id.

    ``write_lock`` is the per-facility lock that every write touching a
    facility's bookability holds: reservation validate-then-commit and
    schedule read-modify-write. Writers to different facilities do not
    wait on each other.
    """

    def __init__(self) -> None:
        self._store: dict[str, Facility] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def write_lock(self, facility_id: str) -> threading.Lock:
        with self._locks_guard:
            if facility_id not in self._locks:
                self._locks[facility_id] = threading.Lock()
            return self._locks[facility_id]

    def add(self, facility: Facility) -> None:
        self._store[facility.id] = facility

    def get(self, facility_id: str) -> Facility | None:
        return self._store.get(facility_id)

    def list_for_stable(self, stable_id: str) -> list[Facility]:
        return [f for f in self._store.values() if f.stable_id == stable_id]

    def delete(self, facility_id: str) -> None:
        self._store.pop(facility_id, None)


class ReservationRepository:
    """Dict-backed store for Reservation instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Reservation] = {}

    def add(self, reservation: Reservation) -> None:
        self._store[reservation.id] = reservation

    def get(self, reservation_id: str) -> Reservation | None:
        return self._store.get(reservation_id)

    def list_all(self) -> list[Reservation]:
        return list(self._store.values())

    def list_for_facility(self, facility_id: str, active_only: bool = False) -> list[Reservation]:
        return [
            r
            for r in self._store.values()
            if r.facility_id == facility_id and (r.is_active or not active_only)
        ]

    def list_for_user(self, user_id: str) -> list[Reservation]:
        return [r for r in self._store.values() if r.user_id == user_id]

    def list_for_stable(self, stable_id: str) -> list[Reservation]:
        return [r for r in self._store.values() if r.stable_id == stable_id]

    def list_active_ended_before(self, now: datetime) -> list[Reservation]:
        return [r for r in self._store.values() if r.is_active and r.end <= now]


class AuditLogRepository:
    """List-backed store for AuditEntry instances."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    def add(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    def list_for_reservation(self, reservation_id: str) -> list[AuditEntry]:
        return sorted(
            [e for e in self._entries if e.reservation_id == reservation_id],
            key=lambda e: e.timestamp,
        )

    def list_for_facility(self, facility_id: str) -> list[AuditEntry]:
        return sorted(
            [e for e in self._entries if e.facility_id == facility_id],
            key=lambda e: e.timestamp,
        )
