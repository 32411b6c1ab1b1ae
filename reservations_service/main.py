import logging
import os
from datetime import date, timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from common.auth import actor_from_claims, get_current_user_claims, require_roles
from common.logging_setup import configure_logging
from scheduling import archival, lifecycle
from scheduling.availability import build_availability
from scheduling.booking import BookingRequest, plan_booking, submit_booking
from scheduling.clock import civil_day_window
from scheduling.conflicts import advisory_check
from scheduling.errors import ConflictError, PersistenceError, ValidationError
from scheduling.models import ReservationStatus, Role
from scheduling.timeslots import format_slot, parse_slot

from . import schemas
from .database import Base, engine, get_db
from .rate_limiter import reservation_rate_limiter
from .rooms_client import ensure_room_open, fetch_booking_context, restriction_periods
from .store import SqlReservationStore, to_snapshot

configure_logging()
logger = logging.getLogger(__name__)

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Reservations Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")

SERVICE_NAME = "reservations"

ARCHIVE_RETENTION_DAYS = int(os.getenv("ARCHIVE_RETENTION_DAYS", "14"))


def error_body(request: Request, status_code: int, detail, **extra) -> dict:
    body = {
        "service": SERVICE_NAME,
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
        "detail": detail,
    }
    body.update(extra)
    return body


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.status_code, exc.detail),
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    logger.debug("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content=error_body(request, 400, str(exc)))


@app.exception_handler(ConflictError)
async def conflict_exception_handler(request: Request, exc: ConflictError):
    return JSONResponse(
        status_code=409,
        content=error_body(
            request,
            409,
            str(exc),
            conflict_status=exc.status.value,
            conflicting_reservation_id=exc.conflicting.id,
            stage=exc.stage,
        ),
    )


@app.exception_handler(PersistenceError)
async def persistence_exception_handler(request: Request, exc: PersistenceError):
    return JSONResponse(status_code=503, content=error_body(request, 503, str(exc)))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(request, 500, "Internal server error"),
    )


@app.get("/")
def root():
    """
    Health-check endpoint for the Reservations service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": "reservations", "status": "running"}


staff_only = require_roles(Role.TEACHER, Role.ADMIN)

archive_runners = require_roles(
    Role.TEACHER,
    Role.ADMIN,
    Role.SERVICE_ACCOUNT,  # scheduled sweep
)

count_readers = require_roles(
    Role.TEACHER,
    Role.ADMIN,
    Role.SERVICE_ACCOUNT,  # used by the Rooms service before deleting a room
)


def booking_request(reservation_in: schemas.ReservationCreate) -> BookingRequest:
    return BookingRequest(
        room_id=reservation_in.room_id,
        start=reservation_in.start_time,
        end=reservation_in.end_time,
        purpose=reservation_in.purpose,
        attendees=tuple(reservation_in.attendees or ()),
        recurring=reservation_in.recurring,
        repeat_weeks=reservation_in.repeat_weeks,
    )


def load_reservation(store: SqlReservationStore, reservation_id: int):
    reservation = store.get(reservation_id)
    if reservation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
    return reservation


# ---------- Availability ----------


@router_v1.get("/reservations/availability", response_model=schemas.AvailabilityRead)
def room_availability(
    room_id: int = Query(..., ge=1),
    day: date = Query(..., alias="date"),
    start: Optional[str] = None,
    db: Session = Depends(get_db),
    _: Dict = Depends(get_current_user_claims),
):
    """
    Slot occupancy of a room on one date.

    Parameters
    ----------
    room_id : int
        Room to inspect.
    day : date
        Civil date (``?date=YYYY-MM-DD``).
    start : Optional[str]
        ``HH:MM`` start slot; when given, the response also lists the
        end boundaries a booking starting there may use.

    Returns
    -------
    AvailabilityRead
        Disjoint booked / restricted / past slots and the offerable starts.
    """
    context = fetch_booking_context(room_id)
    store = SqlReservationStore(db)
    availability = build_availability(
        room_id,
        day,
        store.reservations_on_day(room_id, day),
        restriction_periods(context),
    )

    available_ends = None
    if start is not None:
        available_ends = [format_slot(s) for s in availability.offerable_ends(parse_slot(start))]

    return schemas.AvailabilityRead(
        room_id=room_id,
        day=day,
        booked=[format_slot(s) for s in sorted(availability.booked)],
        restricted=[format_slot(s) for s in sorted(availability.restricted)],
        past=[format_slot(s) for s in sorted(availability.past)],
        available_starts=[format_slot(s) for s in availability.offerable_starts()],
        available_ends=available_ends,
    )


# ---------- Advisory pre-check ----------


@router_v1.post("/reservations/check")
def check_reservation(
    reservation_in: schemas.ReservationCreate,
    db: Session = Depends(get_db),
    claims: Dict = Depends(get_current_user_claims),
):
    """
    Validate a request and look for overlaps without writing anything.

    A successful check does not hold the slots; the submission repeats the
    overlap check atomically with the insert.

    Returns
    -------
    dict
        ``room_id``, ``available`` (always True on success) and the planned
        occurrences.

    Raises
    ------
    HTTPException
        400 on validation errors, 409 with ``stage = "advisory"`` when an
        occurrence overlaps an existing reservation.
    """
    context = fetch_booking_context(reservation_in.room_id)
    ensure_room_open(context)
    planned = plan_booking(
        booking_request(reservation_in),
        actor_from_claims(claims),
        restrictions=restriction_periods(context),
    )
    advisory_check(SqlReservationStore(db), reservation_in.room_id, [p.interval for p in planned])
    return {
        "room_id": reservation_in.room_id,
        "available": True,
        "occurrences": [{"start_time": p.start, "end_time": p.end} for p in planned],
    }


# ---------- Create reservation(s) ----------


@router_v1.post(
    "/reservations",
    response_model=List[schemas.ReservationRead],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(reservation_rate_limiter)],
)
def create_reservation(
    reservation_in: schemas.ReservationCreate,
    db: Session = Depends(get_db),
    claims: Dict = Depends(get_current_user_claims),
):
    """
    Book a room for the authenticated user.

    Behavior
    --------
    - Validates slot alignment, the operating window and the booking window.
    - Expands a recurring request into its weekly occurrences.
    - Refuses rooms that staff closed, and occurrences touching an active
      room restriction.
    - Inserts all occurrences or none; an overlap with a pending or
      confirmed reservation yields 409.
    - Students get ``pending`` reservations, teachers and admins
      ``confirmed`` ones approved by themselves.
    - Service accounts cannot book (400).

    Returns
    -------
    List[ReservationRead]
        The created reservations in chronological order.
    """
    context = fetch_booking_context(reservation_in.room_id)
    ensure_room_open(context)
    return submit_booking(
        SqlReservationStore(db),
        booking_request(reservation_in),
        actor_from_claims(claims),
        restrictions=restriction_periods(context),
    )


# ---------- Listings ----------


@router_v1.get("/reservations/me", response_model=List[schemas.ReservationRead])
def list_my_reservations(
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    claims: Dict = Depends(get_current_user_claims),
):
    """
    Reservations of the authenticated user, newest first.

    Rejected reservations are included with their rejection reason.
    """
    return SqlReservationStore(db).list_reservations(status=status_filter, user_id=claims["user_id"])


@router_v1.get("/reservations", response_model=List[schemas.ReservationRead])
def list_all_reservations(
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    room_id: Optional[int] = Query(default=None, ge=1),
    user_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    _: Dict = Depends(staff_only),
):
    """
    Teacher/Admin: every reservation with optional filters.

    Parameters
    ----------
    status_filter : Optional[ReservationStatus]
        ``?status=pending`` lists the approval queue.
    room_id : Optional[int]
        Only reservations of this room.
    user_id : Optional[int]
        Only reservations of this user.
    """
    return SqlReservationStore(db).list_reservations(status=status_filter, room_id=room_id, user_id=user_id)


@router_v1.get("/reservations/calendar", response_model=List[schemas.ReservationRead])
def confirmed_calendar(
    start_date: date,
    end_date: date,
    room_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    _: Dict = Depends(staff_only),
):
    """
    Teacher/Admin: confirmed reservations starting between two civil dates (inclusive).
    """
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date must not be before start_date",
        )
    window_start, _start_end = civil_day_window(start_date)
    _end_start, window_end = civil_day_window(end_date)
    return SqlReservationStore(db).confirmed_between(window_start, window_end, room_id=room_id)


@router_v1.get("/reservations/count", response_model=schemas.ReservationCount)
def count_reservations(
    room_id: int = Query(..., ge=1),
    db: Session = Depends(get_db),
    _: Dict = Depends(count_readers),
):
    """Number of live reservations (any status) of a room."""
    return schemas.ReservationCount(room_id=room_id, count=SqlReservationStore(db).count_for_room(room_id))


@router_v1.get("/reservations/{reservation_id}", response_model=schemas.ReservationRead)
def get_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    claims: Dict = Depends(get_current_user_claims),
):
    reservation = load_reservation(SqlReservationStore(db), reservation_id)
    actor = actor_from_claims(claims)
    if not (actor.is_staff or reservation.user_id == actor.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to view this reservation",
        )
    return reservation


# ---------- Approve / reject ----------


@router_v1.post("/reservations/{reservation_id}/approve", response_model=schemas.ReservationRead)
def approve_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    claims: Dict = Depends(staff_only),
):
    """
    Teacher/Admin: pending -> confirmed.

    Raises
    ------
    HTTPException
        404 if the reservation does not exist, 400 if it is not pending
        (including when another reviewer decided it first).
    """
    store = SqlReservationStore(db)
    snapshot = to_snapshot(load_reservation(store, reservation_id))
    change = lifecycle.approve(snapshot, actor_from_claims(claims))
    reservation = store.apply_status_change(change)
    logger.info("Reservation %s approved by %s", reservation_id, claims["user_id"])
    return reservation


@router_v1.post("/reservations/{reservation_id}/reject", response_model=schemas.ReservationRead)
def reject_reservation(
    reservation_id: int,
    reject_in: schemas.RejectRequest,
    db: Session = Depends(get_db),
    claims: Dict = Depends(staff_only),
):
    """
    Teacher/Admin: pending -> rejected, with a mandatory reason.
    """
    store = SqlReservationStore(db)
    snapshot = to_snapshot(load_reservation(store, reservation_id))
    change = lifecycle.reject(snapshot, actor_from_claims(claims), reject_in.reason)
    reservation = store.apply_status_change(change)
    logger.info("Reservation %s rejected by %s", reservation_id, claims["user_id"])
    return reservation


# ---------- Delete ----------


@router_v1.delete(
    "/reservations/{reservation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(reservation_rate_limiter)],
)
def delete_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    claims: Dict = Depends(get_current_user_claims),
):
    """
    Remove a reservation permanently.

    Access
    ------
    - Owner of the reservation.
    - Teachers and admins for any reservation.
    """
    store = SqlReservationStore(db)
    snapshot = to_snapshot(load_reservation(store, reservation_id))
    if not lifecycle.can_remove(snapshot, actor_from_claims(claims)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to delete this reservation",
        )
    store.delete_reservation(reservation_id)
    logger.info("Reservation %s deleted by %s", reservation_id, claims["user_id"])
    return


@router_v1.delete("/users/{user_id}/reservations")
def delete_user_reservations(
    user_id: int,
    db: Session = Depends(get_db),
    claims: Dict = Depends(get_current_user_claims),
):
    """
    Remove every reservation of an account that is being deleted.

    Access
    ------
    - The account owner.
    - Admins and service accounts.
    """
    allowed = claims["user_id"] == user_id or claims["role"] in (Role.ADMIN.value, Role.SERVICE_ACCOUNT.value)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to delete these reservations",
        )
    deleted = SqlReservationStore(db).delete_for_user(user_id)
    logger.info("Deleted %d reservation(s) of user %s", deleted, user_id)
    return {"user_id": user_id, "deleted": deleted}


# ---------- Archive ----------


@router_v1.post("/archive/sweep", response_model=schemas.ArchiveSweepRead)
def run_archive_sweep(
    db: Session = Depends(get_db),
    _: Dict = Depends(archive_runners),
):
    """
    Teacher/Admin/Service Account: archive confirmed reservations approved more
    than ARCHIVE_RETENTION_DAYS ago.

    A failure after the copies were written is reported through
    ``warning``; running the sweep again finishes the job.
    """
    result = archival.run_sweep(SqlReservationStore(db), retention=timedelta(days=ARCHIVE_RETENTION_DAYS))
    return schemas.ArchiveSweepRead(
        archived_count=result.archived_count,
        deleted_count=result.deleted_count,
        archived_ids=result.archived_ids,
        warning=str(result.warning) if result.warning else None,
    )


@router_v1.get("/archive", response_model=List[schemas.ArchivedReservationRead])
def list_archive(
    room_id: Optional[int] = Query(default=None, ge=1),
    user_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    _: Dict = Depends(staff_only),
):
    """Teacher/Admin: archived reservations, most recently archived first."""
    return SqlReservationStore(db).list_archive(room_id=room_id, user_id=user_id)


app.include_router(router_v1)
