"""Tests for the reservation lifecycle: services, event handlers and the audit log."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

import pytest

from facility_booking.domain.bus import EventBus
from facility_booking.domain.events import (
    DomainEvent,
    ReservationCreated,
    ReservationEvent,
    ReservationMoved,
    ReservationStatusChanged,
    ScheduleExceptionAdded,
)
from facility_booking.domain.handlers import HandlerRegistry
from facility_booking.domain.models import (
    AuditEntryType,
    BookingRequest,
    FacilityCreate,
    FacilityStatus,
    FacilityUpdate,
    ReservationCreate,
    ReservationStatus,
    ReservationUpdate,
    RuleKind,
    ScheduleException,
    ScheduleExceptionType,
)
from facility_booking.domain.time_blocks import TimeBlock
from facility_booking.exceptions import (
    BookingRejectedError,
    FacilityUnavailableError,
    InvalidFacilityError,
    InvalidScheduleError,
    InvalidTransitionError,
    NotFoundError,
)
from facility_booking.repos.memory import (
    AuditLogRepository,
    FacilityRepository,
    ReservationRepository,
)
from facility_booking.services.facilities import FacilityService
from facility_booking.services.reservations import ReservationService
from facility_booking.services.schedule_builder import ScheduleBuilder

_NOW = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)
TUESDAY = date(2026, 6, 2)


def _at(hour: int, minute: int = 0, on_date: date = TUESDAY) -> datetime:
    return datetime(on_date.year, on_date.month, on_date.day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture()
def env():
    """Fresh bus + repos + registry + services for each test."""
    bus = EventBus()
    facility_repo = FacilityRepository()
    reservation_repo = ReservationRepository()
    audit_repo = AuditLogRepository()
    registry = HandlerRegistry(
        bus=bus,
        facility_repo=facility_repo,
        reservation_repo=reservation_repo,
        audit_repo=audit_repo,
    )

    class Env:
        pass

    e = Env()
    e.bus = bus
    e.facility_repo = facility_repo
    e.reservation_repo = reservation_repo
    e.audit_repo = audit_repo
    e.registry = registry
    e.facilities = FacilityService(facility_repo, bus, clock=lambda: _NOW)
    e.reservations = ReservationService(facility_repo, reservation_repo, bus, clock=lambda: _NOW)
    return e


def _create_facility(env, **overrides):
    defaults = dict(stable_id="stable-1", name="Indoor arena", type="arena", max_horses_per_reservation=2)
    defaults.update(overrides)
    return env.facilities.create(FacilityCreate(**defaults))


def _book(env, facility_id: str, start: datetime, end: datetime, user_id: str = "rider-1", **overrides):
    defaults = dict(facility_id=facility_id, horse_ids=["horse-1"], start=start, end=end)
    defaults.update(overrides)
    return env.reservations.create(ReservationCreate(**defaults), user_id=user_id)


def _audit_types(env, reservation_id: str) -> list[AuditEntryType]:
    return [e.type for e in env.audit_repo.list_for_reservation(reservation_id)]


# ---------------------------------------------------------------------------
# Facilities
# ---------------------------------------------------------------------------


def test_create_facility_applies_defaults(env):
    facility = _create_facility(env)
    assert facility.status == FacilityStatus.ACTIVE
    assert facility.timezone == "UTC"
    assert facility.planning_window_opens_days == 7
    assert facility.planning_window_closes_days == 1
    assert facility.min_slot_duration_minutes == 30
    assert env.facilities.open_intervals(facility.id, TUESDAY) == [TimeBlock.of("08:00", "20:00")]


def test_create_facility_rejects_bad_timezone(env):
    with pytest.raises(InvalidFacilityError):
        _create_facility(env, timezone="Mars/Olympus_Mons")


def test_create_facility_rejects_inconsistent_window(env):
    with pytest.raises(InvalidFacilityError):
        _create_facility(env, planning_window_opens_days=1, planning_window_closes_days=3)


def test_create_facility_rejects_overlapping_hours(env):
    schedule = {
        "weeklySchedule": {
            "defaultTimeBlocks": [{"from": "08:00", "to": "12:00"}, {"from": "11:00", "to": "14:00"}]
        }
    }
    with pytest.raises(InvalidScheduleError):
        _create_facility(env, availability_schedule=schedule)


def test_update_facility_keeps_unset_fields(env):
    facility = _create_facility(env, description="Sand footing")
    updated = env.facilities.update(facility.id, FacilityUpdate(name="Big arena"))
    assert updated.name == "Big arena"
    assert updated.description == "Sand footing"
    assert updated.id == facility.id
    assert env.facilities.get(facility.id).name == "Big arena"


def test_list_facilities_filters(env):
    _create_facility(env, name="Arena")
    _create_facility(env, name="Walker", status=FacilityStatus.MAINTENANCE)
    _create_facility(env, name="Other stable", stable_id="stable-2")

    assert len(env.facilities.list_for_stable("stable-1")) == 2
    assert [f.name for f in env.facilities.list_for_stable("stable-1", reservable_only=True)] == ["Arena"]
    assert [f.name for f in env.facilities.list_for_stable("stable-1", status=FacilityStatus.MAINTENANCE)] == ["Walker"]


def test_delete_facility(env):
    facility = _create_facility(env)
    env.facilities.delete(facility.id)
    with pytest.raises(NotFoundError):
        env.facilities.get(facility.id)


# ---------------------------------------------------------------------------
# Reservation creation
# ---------------------------------------------------------------------------


def test_create_reservation_is_pending_and_audited(env):
    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(9), _at(10))

    assert reservation.status == ReservationStatus.PENDING
    assert reservation.stable_id == "stable-1"
    assert env.reservation_repo.get(reservation.id) is reservation
    assert _audit_types(env, reservation.id) == [AuditEntryType.CREATED]


def test_auto_confirm_facility_confirms_immediately(env):
    facility = _create_facility(env, auto_confirm=True)
    assert _book(env, facility.id, _at(9), _at(10)).status == ReservationStatus.CONFIRMED


def test_rejected_booking_is_not_stored(env):
    facility = _create_facility(env)
    existing = _book(env, facility.id, _at(10), _at(11))

    with pytest.raises(BookingRejectedError) as excinfo:
        _book(env, facility.id, _at(10, 30), _at(11, 30), user_id="rider-2")

    assert excinfo.value.result.violated_rule == RuleKind.CONFLICT
    assert [c.id for c in excinfo.value.result.conflicts] == [existing.id]
    assert len(env.reservation_repo.list_for_facility(facility.id)) == 1


def test_horse_count_comes_from_horse_ids(env):
    facility = _create_facility(env)
    with pytest.raises(BookingRejectedError) as excinfo:
        _book(env, facility.id, _at(9), _at(10), horse_ids=["a", "b", "c"])
    assert excinfo.value.result.violated_rule == RuleKind.HORSE_LIMIT


def test_inactive_facility_rejects_bookings(env):
    facility = _create_facility(env, status=FacilityStatus.MAINTENANCE)
    with pytest.raises(FacilityUnavailableError):
        _book(env, facility.id, _at(9), _at(10))


def test_unknown_facility(env):
    with pytest.raises(NotFoundError):
        _book(env, "missing", _at(9), _at(10))


def test_concurrent_bookings_for_same_slot_commit_once(env):
    facility = _create_facility(env)

    def attempt(n: int) -> bool:
        try:
            _book(env, facility.id, _at(9), _at(10), user_id=f"rider-{n}")
        except BookingRejectedError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(16)))

    assert outcomes.count(True) == 1
    assert len(env.reservation_repo.list_for_facility(facility.id, active_only=True)) == 1


def test_check_is_advisory(env):
    facility = _create_facility(env)
    _book(env, facility.id, _at(10), _at(11))

    result = env.reservations.check(facility.id, BookingRequest(start=_at(10), end=_at(11)))
    assert result.violated_rule == RuleKind.CONFLICT
    assert len(env.reservation_repo.list_for_facility(facility.id)) == 1


# ---------------------------------------------------------------------------
# Moves and edits
# ---------------------------------------------------------------------------


def test_move_into_own_old_slot_is_allowed(env):
    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))

    moved = env.reservations.update(
        reservation.id, ReservationUpdate(start=_at(10, 30), end=_at(11, 30)), actor_id="manager-1"
    )

    assert moved.start == _at(10, 30)
    assert _audit_types(env, reservation.id) == [AuditEntryType.CREATED, AuditEntryType.MOVED]
    moved_entry = env.audit_repo.list_for_reservation(reservation.id)[-1]
    assert moved_entry.actor_id == "manager-1"
    assert moved_entry.payload["previous"]["start"] == _at(10).isoformat()


def test_move_onto_other_booking_is_rejected_and_unchanged(env):
    facility = _create_facility(env)
    first = _book(env, facility.id, _at(10), _at(11))
    second = _book(env, facility.id, _at(11), _at(12))

    with pytest.raises(BookingRejectedError) as excinfo:
        env.reservations.update(first.id, ReservationUpdate(start=_at(11), end=_at(12)))

    assert [c.id for c in excinfo.value.result.conflicts] == [second.id]
    assert env.reservation_repo.get(first.id).start == _at(10)


def test_move_to_another_facility(env):
    arena = _create_facility(env)
    paddock = _create_facility(env, name="Paddock", type="paddock")
    reservation = _book(env, arena.id, _at(10), _at(11))

    moved = env.reservations.update(reservation.id, ReservationUpdate(facility_id=paddock.id))
    assert moved.facility_id == paddock.id
    assert env.reservation_repo.list_for_facility(arena.id) == []


def test_notes_update_skips_validation(env):
    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))
    env.facilities.add_exception(
        facility.id, ScheduleException(on_date=TUESDAY, type=ScheduleExceptionType.CLOSED)
    )

    updated = env.reservations.update(reservation.id, ReservationUpdate(notes="Bring cones"))
    assert updated.notes == "Bring cones"
    assert AuditEntryType.UPDATED in _audit_types(env, reservation.id)


def test_move_within_facility_under_maintenance_is_rejected(env):
    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))
    env.facilities.update(facility.id, FacilityUpdate(status=FacilityStatus.MAINTENANCE))

    with pytest.raises(FacilityUnavailableError):
        env.reservations.update(reservation.id, ReservationUpdate(start=_at(14), end=_at(15)))

    assert env.reservation_repo.get(reservation.id).start == _at(10)
    assert _audit_types(env, reservation.id) == [AuditEntryType.CREATED]


def test_notes_update_allowed_while_facility_under_maintenance(env):
    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))
    env.facilities.update(facility.id, FacilityUpdate(status=FacilityStatus.MAINTENANCE))

    assert env.reservations.update(reservation.id, ReservationUpdate(notes="Footing soft")).notes == "Footing soft"


def test_cancelled_reservation_cannot_be_modified(env):
    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))
    env.reservations.cancel(reservation.id)

    with pytest.raises(InvalidTransitionError):
        env.reservations.update(reservation.id, ReservationUpdate(start=_at(12), end=_at(13)))


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


def test_approve_pending(env):
    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))

    env.reservations.approve(reservation.id, actor_id="manager-1")
    assert reservation.status == ReservationStatus.CONFIRMED
    assert _audit_types(env, reservation.id)[-1] == AuditEntryType.CONFIRMED

    with pytest.raises(InvalidTransitionError):
        env.reservations.approve(reservation.id)


def test_cancel_frees_the_slot(env):
    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))
    env.reservations.cancel(reservation.id, actor_id="rider-1")

    assert reservation.status == ReservationStatus.CANCELLED
    assert _book(env, facility.id, _at(10), _at(11), user_id="rider-2").is_active

    with pytest.raises(InvalidTransitionError):
        env.reservations.cancel(reservation.id)


def test_no_show_only_after_start(env):
    facility = _create_facility(env, auto_confirm=True)
    reservation = _book(env, facility.id, _at(10), _at(11))

    with pytest.raises(InvalidTransitionError):
        env.reservations.mark_no_show(reservation.id)

    env.reservations.clock = lambda: _at(10, 15)
    env.reservations.mark_no_show(reservation.id)
    assert reservation.status == ReservationStatus.NO_SHOW
    assert _audit_types(env, reservation.id)[-1] == AuditEntryType.NO_SHOW


def test_complete_elapsed_only_completes_confirmed(env):
    facility = _create_facility(env)
    confirmed = _book(env, facility.id, _at(9), _at(10))
    env.reservations.approve(confirmed.id)
    pending = _book(env, facility.id, _at(10), _at(11))
    later = _book(env, facility.id, _at(15), _at(16))
    env.reservations.approve(later.id)

    completed = env.reservations.complete_elapsed(_at(12))

    assert completed == [confirmed.id]
    assert confirmed.status == ReservationStatus.COMPLETED
    assert pending.status == ReservationStatus.PENDING
    assert later.status == ReservationStatus.CONFIRMED


# ---------------------------------------------------------------------------
# Schedule exceptions
# ---------------------------------------------------------------------------


def test_exception_over_existing_booking_flags_it(env):
    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))
    wednesday = TUESDAY + timedelta(days=1)
    untouched = _book(env, facility.id, _at(10, on_date=wednesday), _at(11, on_date=wednesday))

    env.facilities.add_exception(
        facility.id,
        ScheduleException(
            on_date=TUESDAY,
            type=ScheduleExceptionType.MODIFIED,
            time_blocks=[TimeBlock.of("14:00", "18:00")],
        ),
        actor_id="manager-1",
    )

    assert reservation.status == ReservationStatus.PENDING
    assert _audit_types(env, reservation.id) == [AuditEntryType.CREATED, AuditEntryType.OUTSIDE_HOURS]
    assert AuditEntryType.OUTSIDE_HOURS not in _audit_types(env, untouched.id)


def test_exception_audit_entries(env):
    facility = _create_facility(env)
    env.facilities.add_exception(
        facility.id, ScheduleException(on_date=TUESDAY, type=ScheduleExceptionType.CLOSED), actor_id="manager-1"
    )
    env.facilities.remove_exception(facility.id, TUESDAY, actor_id="manager-1")

    types = [e.type for e in env.audit_repo.list_for_facility(facility.id)]
    assert types == [AuditEntryType.EXCEPTION_ADDED, AuditEntryType.EXCEPTION_REMOVED]
    assert env.facilities.open_intervals(facility.id, TUESDAY) == [TimeBlock.of("08:00", "20:00")]


def test_concurrent_exception_adds_are_both_kept(env, monkeypatch):
    facility = _create_facility(env)
    # Both writers would meet here after reading the schedule if nothing
    # serialized them; with the facility lock the first times out alone.
    barrier = threading.Barrier(2, timeout=0.5)
    original_build = ScheduleBuilder.build

    def build_after_barrier(self):
        try:
            barrier.wait()
        except threading.BrokenBarrierError:
            pass
        return original_build(self)

    monkeypatch.setattr(ScheduleBuilder, "build", build_after_barrier)
    dates = [TUESDAY + timedelta(days=7), TUESDAY + timedelta(days=8)]

    def add(on_date: date) -> None:
        env.facilities.add_exception(
            facility.id, ScheduleException(on_date=on_date, type=ScheduleExceptionType.CLOSED)
        )

    with ThreadPoolExecutor(max_workers=2) as pool:
        list(pool.map(add, dates))

    stored = env.facilities.get(facility.id).availability_schedule.exceptions
    assert sorted(e.on_date for e in stored) == dates
    assert len(env.audit_repo.list_for_facility(facility.id)) == 2


def test_exception_scan_runs_under_facility_lock(env):
    facility = _create_facility(env)
    held = []
    env.bus.subscribe(
        ScheduleExceptionAdded,
        lambda event: held.append(env.facility_repo.write_lock(event.facility_id).locked()),
    )

    env.facilities.add_exception(
        facility.id, ScheduleException(on_date=TUESDAY, type=ScheduleExceptionType.CLOSED)
    )

    assert held == [True]
    assert not env.facility_repo.write_lock(facility.id).locked()


def test_handler_ignores_unknown_reservation(env):
    env.bus.publish(ReservationCreated(reservation_id="missing"))
    assert env.audit_repo.list_for_reservation("missing") == []


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


def test_base_class_subscribers_see_every_event(env):
    seen = []
    env.bus.subscribe(DomainEvent, lambda event: seen.append(type(event).__name__))

    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))
    env.reservations.cancel(reservation.id)

    assert seen == ["ReservationCreated", "ReservationStatusChanged"]


def test_audit_handler_is_subscribed_once_on_the_base_event(env):
    assert env.bus.handlers_for(ReservationEvent) == [env.registry.on_reservation_event]
    for event_type in (ReservationCreated, ReservationMoved, ReservationStatusChanged):
        assert env.bus.handlers_for(event_type) == [env.registry.on_reservation_event]


def test_audit_handler_skips_reservation_events_without_an_entry_type(env):
    class ReservationViewed(ReservationEvent):
        pass

    facility = _create_facility(env)
    reservation = _book(env, facility.id, _at(10), _at(11))
    env.bus.publish(ReservationViewed(reservation_id=reservation.id))

    assert _audit_types(env, reservation.id) == [AuditEntryType.CREATED]


def test_concrete_handlers_run_before_base_handlers():
    bus = EventBus()
    order = []
    bus.subscribe(DomainEvent, lambda event: order.append("base"))
    bus.subscribe(ReservationCreated, lambda event: order.append("concrete"))

    bus.publish(ReservationCreated(reservation_id="r-1"))
    assert order == ["concrete", "base"]
