"""FastAPI application and entry point for the facility booking service."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from facility_booking.config import settings
from facility_booking.domain.bus import EventBus
from facility_booking.domain.handlers import HandlerRegistry
from facility_booking.domain.models import (
    AvailableSlotsResponse,
    BookingErrorResponse,
    BookingRequest,
    CheckConflictsRequest,
    ConflictResult,
    Facility,
    FacilityCreate,
    FacilityStatus,
    FacilityUpdate,
    NextFreeSlotResponse,
    Reservation,
    ReservationAnalytics,
    ReservationCreate,
    ReservationUpdate,
    ScheduleException,
)
from facility_booking.exceptions import (
    BookingRejectedError,
    DuplicateExceptionError,
    FacilityUnavailableError,
    InvalidFacilityError,
    InvalidScheduleError,
    InvalidTransitionError,
    NotFoundError,
    ScheduleLimitError,
)
from facility_booking.logging_config import configure_logging
from facility_booking.repos.memory import (
    AuditLogRepository,
    FacilityRepository,
    ReservationRepository,
)
from facility_booking.services.analytics import check_date_range, summarize_reservations
from facility_booking.services.facilities import FacilityService
from facility_booking.services.reservations import ReservationService

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Facility Booking Service")

# ── Shared repositories, bus and services ─────────────────────────────
event_bus = EventBus()
facility_repo = FacilityRepository()
reservation_repo = ReservationRepository()
audit_repo = AuditLogRepository()

handler_registry = HandlerRegistry(
    bus=event_bus,
    facility_repo=facility_repo,
    reservation_repo=reservation_repo,
    audit_repo=audit_repo,
)
facility_service = FacilityService(facility_repo, event_bus)
reservation_service = ReservationService(facility_repo, reservation_repo, event_bus)


# ── Error translation ─────────────────────────────────────────────────


def _error(status_code: int, error: str, message: str, details: list[str] | None = None) -> JSONResponse:
    body: dict = {"error": error, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(NotFoundError)
def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(404, "Not Found", str(exc))


@app.exception_handler(BookingRejectedError)
def _booking_rejected(request: Request, exc: BookingRejectedError) -> JSONResponse:
    body = BookingErrorResponse(
        error="Conflict",
        message=exc.result.message,
        violated_rule=exc.result.violated_rule,
        conflicts=exc.result.conflicts,
    )
    return JSONResponse(status_code=409, content=body.model_dump(mode="json", by_alias=True))


@app.exception_handler(FacilityUnavailableError)
def _facility_unavailable(request: Request, exc: FacilityUnavailableError) -> JSONResponse:
    return _error(409, "Conflict", str(exc))


@app.exception_handler(DuplicateExceptionError)
def _duplicate_exception(request: Request, exc: DuplicateExceptionError) -> JSONResponse:
    return _error(409, "Conflict", str(exc))


@app.exception_handler(InvalidTransitionError)
def _invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return _error(400, "Bad Request", str(exc))


@app.exception_handler(ScheduleLimitError)
def _schedule_limit(request: Request, exc: ScheduleLimitError) -> JSONResponse:
    return _error(400, "Bad Request", str(exc))


@app.exception_handler(InvalidScheduleError)
def _invalid_schedule(request: Request, exc: InvalidScheduleError) -> JSONResponse:
    return _error(400, "Bad Request", str(exc), exc.details)


@app.exception_handler(InvalidFacilityError)
def _invalid_facility(request: Request, exc: InvalidFacilityError) -> JSONResponse:
    return _error(400, "Bad Request", str(exc), exc.details)


# ── Facilities ────────────────────────────────────────────────────────


@app.post("/facilities", response_model=Facility, status_code=201)
def create_facility(payload: FacilityCreate) -> Facility:
    """Create a facility; a missing schedule defaults to 08:00-20:00 daily."""
    return facility_service.create(payload)


@app.get("/facilities", response_model=list[Facility])
def list_facilities(
    stable_id: str = Query(alias="stableId"),
    status: FacilityStatus | None = None,
    reservable_only: bool = Query(default=False, alias="reservableOnly"),
) -> list[Facility]:
    return facility_service.list_for_stable(stable_id, status=status, reservable_only=reservable_only)


@app.get("/facilities/{facility_id}", response_model=Facility)
def get_facility(facility_id: str) -> Facility:
    return facility_service.get(facility_id)


@app.patch("/facilities/{facility_id}", response_model=Facility)
def update_facility(facility_id: str, payload: FacilityUpdate) -> Facility:
    return facility_service.update(facility_id, payload)


@app.delete("/facilities/{facility_id}")
def delete_facility(facility_id: str) -> dict:
    facility_service.delete(facility_id)
    return {"success": True}


@app.post(
    "/facilities/{facility_id}/exceptions",
    response_model=ScheduleException,
    status_code=201,
)
def add_schedule_exception(
    facility_id: str,
    exception: ScheduleException,
    x_user_id: str = Header(default="anonymous"),
) -> ScheduleException:
    """Close the facility, or replace its hours, on one date."""
    return facility_service.add_exception(facility_id, exception, actor_id=x_user_id)


@app.delete("/facilities/{facility_id}/exceptions/{on_date}")
def remove_schedule_exception(
    facility_id: str,
    on_date: date,
    x_user_id: str = Header(default="anonymous"),
) -> dict:
    facility_service.remove_exception(facility_id, on_date, actor_id=x_user_id)
    return {"success": True}


@app.get("/facilities/{facility_id}/available-slots", response_model=AvailableSlotsResponse)
def available_slots(
    facility_id: str,
    on_date: date = Query(alias="date"),
    granularity: int | None = Query(default=None, gt=0),
) -> AvailableSlotsResponse:
    """Effective open hours for a date plus the free start times inside them."""
    return AvailableSlotsResponse(
        date=on_date.isoformat(),
        time_blocks=facility_service.open_intervals(facility_id, on_date),
        slot_starts=list(reservation_service.slot_starts(facility_id, on_date, granularity)),
    )


@app.get("/facilities/{facility_id}/next-free-slot", response_model=NextFreeSlotResponse)
def next_free_slot(facility_id: str, after: datetime | None = None) -> NextFreeSlotResponse:
    search_from = after or datetime.now(timezone.utc)
    if search_from.tzinfo is None:
        search_from = search_from.replace(tzinfo=timezone.utc)
    return NextFreeSlotResponse(start=reservation_service.next_free_slot(facility_id, search_from))


# ── Reservations ──────────────────────────────────────────────────────


@app.post("/facility-reservations", response_model=Reservation, status_code=201)
def create_reservation(
    payload: ReservationCreate,
    x_user_id: str = Header(default="anonymous"),
) -> Reservation:
    """Validate and commit a new reservation (409 with the reason on rejection)."""
    return reservation_service.create(payload, user_id=x_user_id)


@app.get("/facility-reservations", response_model=list[Reservation])
def list_reservations(
    facility_id: str | None = Query(default=None, alias="facilityId"),
    user_id: str | None = Query(default=None, alias="userId"),
    stable_id: str | None = Query(default=None, alias="stableId"),
) -> list[Reservation]:
    if facility_id:
        return reservation_repo.list_for_facility(facility_id)
    if user_id:
        return reservation_repo.list_for_user(user_id)
    if stable_id:
        return reservation_repo.list_for_stable(stable_id)
    raise HTTPException(
        status_code=400,
        detail="Missing required query parameter: facilityId, userId, or stableId",
    )


@app.post("/facility-reservations/check-conflicts", response_model=ConflictResult)
def check_conflicts(payload: CheckConflictsRequest) -> ConflictResult:
    """Advisory validation used by drag-and-drop UIs before committing a move."""
    request = BookingRequest(
        start=payload.start,
        end=payload.end,
        horse_count=payload.horse_count,
        exclude_reservation_id=payload.exclude_reservation_id,
    )
    return reservation_service.check(payload.facility_id, request)


@app.get("/facility-reservations/analytics", response_model=ReservationAnalytics)
def reservation_analytics(
    stable_id: str = Query(alias="stableId"),
    start_date: date | None = Query(default=None, alias="startDate"),
    end_date: date | None = Query(default=None, alias="endDate"),
) -> ReservationAnalytics:
    now = datetime.now(timezone.utc)
    start = (
        datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        if start_date
        else now - timedelta(days=30)
    )
    end = datetime.combine(end_date, time.max, tzinfo=timezone.utc) if end_date else now
    try:
        check_date_range(start, end, settings.ANALYTICS_MAX_RANGE_DAYS)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    zones = {f.id: f.zone for f in facility_repo.list_for_stable(stable_id)}
    return summarize_reservations(reservation_repo.list_for_stable(stable_id), start, end, zones=zones)


@app.get("/facility-reservations/{reservation_id}", response_model=Reservation)
def get_reservation(reservation_id: str) -> Reservation:
    reservation = reservation_repo.get(reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation not found")
    return reservation


@app.patch("/facility-reservations/{reservation_id}", response_model=Reservation)
def update_reservation(
    reservation_id: str,
    payload: ReservationUpdate,
    x_user_id: str = Header(default="anonymous"),
) -> Reservation:
    """Move or edit a reservation; moves are re-validated excluding itself."""
    return reservation_service.update(reservation_id, payload, actor_id=x_user_id)


@app.post("/facility-reservations/{reservation_id}/cancel", response_model=Reservation)
def cancel_reservation(
    reservation_id: str, x_user_id: str = Header(default="anonymous")
) -> Reservation:
    return reservation_service.cancel(reservation_id, actor_id=x_user_id)


@app.post("/facility-reservations/{reservation_id}/approve", response_model=Reservation)
def approve_reservation(
    reservation_id: str, x_user_id: str = Header(default="anonymous")
) -> Reservation:
    return reservation_service.approve(reservation_id, actor_id=x_user_id)


@app.post("/facility-reservations/{reservation_id}/no-show", response_model=Reservation)
def mark_no_show(
    reservation_id: str, x_user_id: str = Header(default="anonymous")
) -> Reservation:
    return reservation_service.mark_no_show(reservation_id, actor_id=x_user_id)


@app.post("/tick")
def tick(now: datetime | None = None) -> dict:
    """Complete every confirmed reservation that ended before *now*.

    *now* is optional and lets tests or an external scheduler drive the
    sweep; without it the current UTC time is used.
    """
    current_time = now or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)
    completed = reservation_service.complete_elapsed(current_time)
    if completed:
        logger.info("Tick at %s completed %d reservation(s)", current_time.isoformat(), len(completed))
    return {"time": current_time.isoformat(), "completed": completed}
