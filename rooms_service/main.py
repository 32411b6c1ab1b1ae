import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from common.auth import get_current_user_claims, require_roles
from common.cache import delete_prefix, get_cached_json, set_cached_json
from common.logging_setup import configure_logging
from scheduling.errors import ValidationError
from scheduling.models import STAFF_ROLES, Role
from scheduling.restrictions import RestrictionPeriod
from scheduling.timeslots import parse_slot

from . import models, schemas
from .database import Base, engine, get_db
from .reservations_client import count_room_reservations

configure_logging()
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Rooms Service", version="1.0.0")

router_v1 = APIRouter(prefix="/api/v1")

SERVICE_NAME = "rooms"


def error_body(request: Request, status_code: int, detail) -> dict:
    return {
        "service": SERVICE_NAME,
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
        "detail": detail,
    }


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
    Health-check endpoint for the Rooms service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": "rooms", "status": "running"}


staff_only = require_roles(Role.TEACHER, Role.ADMIN)

ROOMS_CACHE_PREFIX = "rooms:"
ROOM_LIST_CACHE_KEY = "rooms:all"


def room_cache_key(room_id: int) -> str:
    return f"rooms:{room_id}"


def get_room_or_404(db: Session, room_id: int) -> models.Room:
    room = db.query(models.Room).filter(models.Room.id == room_id).first()
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def active_restrictions(db: Session, room_id: Optional[int] = None) -> List[models.RoomRestriction]:
    q = db.query(models.RoomRestriction).filter(models.RoomRestriction.is_active.is_(True))
    if room_id is not None:
        q = q.filter(models.RoomRestriction.room_id == room_id)
    return q.order_by(models.RoomRestriction.created_at.desc()).all()


def period_from_request(restriction_in: schemas.RestrictionCreate) -> RestrictionPeriod:
    """
    Build the restriction period from structured fields, or parse the description.
    """
    if restriction_in.kind is None:
        return RestrictionPeriod.parse(restriction_in.restricted_hours)
    return RestrictionPeriod(
        restriction_in.kind,
        start_date=restriction_in.start_date,
        end_date=restriction_in.end_date,
        start_time=parse_slot(restriction_in.start_time) if restriction_in.start_time else None,
        end_time=parse_slot(restriction_in.end_time) if restriction_in.end_time else None,
    )


# ---------- Create room ----------


@router_v1.post("/rooms", response_model=schemas.RoomRead, status_code=status.HTTP_201_CREATED)
def create_room(
    room_in: schemas.RoomCreate,
    db: Session = Depends(get_db),
    _: dict = Depends(staff_only),
):
    """
    Create a new special room.

    Access
    ------
    - Allowed roles: teacher, admin.

    Raises
    ------
    HTTPException
        If a room with the same name already exists.
    """
    existing = db.query(models.Room).filter(models.Room.name == room_in.name).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Room with this name already exists",
        )

    room = models.Room(
        name=room_in.name,
        capacity=room_in.capacity,
        location=room_in.location,
        facilities=room_in.facilities,
        restricted_hours=room_in.restricted_hours,
        notes=room_in.notes,
        is_available=True,
    )
    db.add(room)
    db.commit()
    db.refresh(room)
    delete_prefix(ROOMS_CACHE_PREFIX)
    logger.info("Room %s (%s) created", room.id, room.name)
    return room


# ---------- List / get rooms ----------


@router_v1.get("/rooms", response_model=List[schemas.RoomRead])
def list_rooms(
    include_unavailable: bool = False,
    min_capacity: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    claims: dict = Depends(get_current_user_claims),
):
    """
    Retrieve rooms ordered by name.

    Behavior
    --------
    - Rooms flagged unavailable are hidden unless a teacher or admin asks
      for them with ``include_unavailable=true``.
    - The default listing is cached.
    """
    show_all = include_unavailable and Role(claims["role"]) in STAFF_ROLES
    cacheable = not show_all and min_capacity is None

    if cacheable:
        cached = get_cached_json(ROOM_LIST_CACHE_KEY)
        if cached is not None:
            return cached

    query = db.query(models.Room)
    if not show_all:
        query = query.filter(models.Room.is_available.is_(True))
    if min_capacity is not None:
        query = query.filter(models.Room.capacity >= min_capacity)
    rooms = query.order_by(models.Room.name).all()

    if cacheable:
        data = [schemas.RoomRead.model_validate(r).model_dump() for r in rooms]
        set_cached_json(ROOM_LIST_CACHE_KEY, data, ttl_seconds=60)
        return data

    return rooms


@router_v1.get("/rooms/{room_id}", response_model=schemas.RoomRead)
def get_room(
    room_id: int,
    db: Session = Depends(get_db),
    _: dict = Depends(get_current_user_claims),
):
    cached = get_cached_json(room_cache_key(room_id))
    if cached is not None:
        return cached
    room = get_room_or_404(db, room_id)
    data = schemas.RoomRead.model_validate(room).model_dump()
    set_cached_json(room_cache_key(room_id), data, ttl_seconds=300)
    return room


@router_v1.get("/rooms/{room_id}/booking-context")
def booking_context(
    room_id: int,
    db: Session = Depends(get_db),
    _: dict = Depends(get_current_user_claims),
):
    """
    What the Reservations service needs to check a booking for this room.

    Returns
    -------
    dict
        ``room_id``, ``name``, ``is_available`` and the active restriction
        periods in serialized form. Never cached.
    """
    room = get_room_or_404(db, room_id)
    return {
        "room_id": room.id,
        "name": room.name,
        "is_available": room.is_available,
        "restrictions": [r.period().to_dict() for r in active_restrictions(db, room.id)],
    }


# ---------- Update / delete rooms (teacher or admin) ----------


@router_v1.put("/rooms/{room_id}", response_model=schemas.RoomRead)
def update_room(
    room_id: int,
    update_data: schemas.RoomUpdate,
    db: Session = Depends(get_db),
    _: dict = Depends(staff_only),
):
    """
    Update an existing room.

    Raises
    ------
    HTTPException
        If the room is not found or the new name conflicts with another room.
    """
    room = get_room_or_404(db, room_id)

    if update_data.name is not None and update_data.name != room.name:
        existing = db.query(models.Room).filter(models.Room.name == update_data.name).first()
        if existing and existing.id != room.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Room with this name already exists",
            )
        room.name = update_data.name

    for field in ("capacity", "location", "facilities", "is_available", "restricted_hours", "notes"):
        value = getattr(update_data, field)
        if value is not None:
            setattr(room, field, value)

    db.add(room)
    db.commit()
    db.refresh(room)
    delete_prefix(ROOMS_CACHE_PREFIX)
    return room


@router_v1.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_room(
    room_id: int,
    db: Session = Depends(get_db),
    _: dict = Depends(staff_only),
):
    """
    Delete a room that has never been booked.

    Behavior
    --------
    - Asks the Reservations service how many reservations the room has.
    - Refuses the deletion when there is at least one.
    - Removes the room together with its restrictions.
    """
    room = get_room_or_404(db, room_id)

    if count_room_reservations(room.id) > 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Room has reservations and cannot be deleted",
        )

    db.query(models.RoomRestriction).filter(models.RoomRestriction.room_id == room.id).delete(
        synchronize_session=False
    )
    db.delete(room)
    db.commit()
    delete_prefix(ROOMS_CACHE_PREFIX)
    logger.info("Room %s deleted", room_id)
    return


# ---------- Restrictions ----------


@router_v1.post("/restrictions", response_model=schemas.RestrictionRead, status_code=status.HTTP_201_CREATED)
def create_restriction(
    restriction_in: schemas.RestrictionCreate,
    db: Session = Depends(get_db),
    claims: dict = Depends(staff_only),
):
    """
    Declare a room restriction.

    Behavior
    --------
    - A room has at most one active restriction: the previous one is
      deactivated.
    - The room is flagged unavailable while the restriction is active.
    - The period is stored in structured form; its description is
      rendered from it.
    """
    room = get_room_or_404(db, restriction_in.room_id)
    period = period_from_request(restriction_in)

    for previous in active_restrictions(db, room.id):
        previous.is_active = False
        db.add(previous)

    restriction = models.RoomRestriction(
        room_id=room.id,
        kind=period.kind,
        start_date=period.start_date,
        end_date=period.end_date,
        start_time=period.start_time,
        end_time=period.end_time,
        restricted_hours=period.describe(),
        reason=restriction_in.reason.strip(),
        is_active=True,
        created_by=claims["user_id"],
    )
    room.is_available = False
    db.add(restriction)
    db.add(room)
    db.commit()
    db.refresh(restriction)
    delete_prefix(ROOMS_CACHE_PREFIX)
    logger.info("Room %s restricted: %s", room.id, restriction.restricted_hours)
    return restriction


@router_v1.get("/restrictions", response_model=List[schemas.RestrictionRead])
def list_restrictions(
    room_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    _: dict = Depends(get_current_user_claims),
):
    """Active restrictions, newest first."""
    return active_restrictions(db, room_id)


@router_v1.post("/restrictions/{restriction_id}/deactivate", response_model=schemas.RestrictionRead)
def deactivate_restriction(
    restriction_id: int,
    db: Session = Depends(get_db),
    _: dict = Depends(staff_only),
):
    """
    Lift a restriction; the room becomes available again once it has no
    other active restriction.
    """
    restriction = (
        db.query(models.RoomRestriction).filter(models.RoomRestriction.id == restriction_id).first()
    )
    if not restriction:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Restriction not found")

    restriction.is_active = False
    db.add(restriction)
    db.flush()

    if not active_restrictions(db, restriction.room_id):
        room = db.query(models.Room).filter(models.Room.id == restriction.room_id).first()
        if room:
            room.is_available = True
            db.add(room)

    db.commit()
    db.refresh(restriction)
    delete_prefix(ROOMS_CACHE_PREFIX)
    logger.info("Restriction %s on room %s lifted", restriction.id, restriction.room_id)
    return restriction


# ---------- System notice ----------


@router_v1.get("/notice", response_model=schemas.NoticeRead)
def get_notice(
    db: Session = Depends(get_db),
    _: dict = Depends(get_current_user_claims),
):
    notice = db.query(models.SystemNotice).order_by(models.SystemNotice.id).first()
    if notice is None:
        return schemas.NoticeRead()
    return notice


@router_v1.put("/notice", response_model=schemas.NoticeRead)
def update_notice(
    notice_in: schemas.NoticeUpdate,
    db: Session = Depends(get_db),
    claims: dict = Depends(staff_only),
):
    """
    Teacher/Admin: replace the system notice, creating it on first use.

    Blank values clear the corresponding field.
    """
    notice = db.query(models.SystemNotice).order_by(models.SystemNotice.id).first()
    if notice is None:
        notice = models.SystemNotice()

    notice.restricted_hours = (notice_in.restricted_hours or "").strip() or None
    notice.notes = (notice_in.notes or "").strip() or None
    notice.updated_by = claims["user_id"]
    db.add(notice)
    db.commit()
    db.refresh(notice)
    return notice


app.include_router(router_v1)
