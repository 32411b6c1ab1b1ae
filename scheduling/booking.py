# scheduling/booking.py
"""
Booking submission pipeline.

A request is validated against the time-slot rules, expanded into its
weekly occurrences, checked against the room's active restrictions,
pre-checked for overlaps (advisory) and finally handed to the store,
which re-checks overlaps and inserts every occurrence atomically.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .availability import restricted_slots
from .clock import as_utc, civil_now, to_civil
from .conflicts import advisory_check
from .errors import RestrictedSlotError, ValidationError
from .lifecycle import initial_status
from .models import Actor, NewReservation, ReservationStatus, Role
from .recurrence import expand
from .restrictions import RestrictionPeriod
from .timeslots import covered_slots, format_slot, validate_interval

logger = logging.getLogger(__name__)

MAX_ADVANCE_DAYS = 30
PURPOSE_MIN_LENGTH = 5
PURPOSE_MAX_LENGTH = 500


@dataclass(frozen=True)
class BookingRequest:
    room_id: int
    start: datetime
    end: datetime
    purpose: str
    attendees: Tuple[str, ...] = ()
    recurring: bool = False
    repeat_weeks: int = 1


def normalize_attendees(value: Union[None, str, Iterable[str]]) -> Tuple[str, ...]:
    """
    Turn a comma-separated string or a list of names into a clean tuple.

    Names are trimmed and empty entries dropped.
    """
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(name.strip() for name in value if name and name.strip())


def validate_purpose(purpose: str) -> str:
    purpose = (purpose or "").strip()
    if len(purpose) < PURPOSE_MIN_LENGTH:
        raise ValidationError(f"Purpose must be at least {PURPOSE_MIN_LENGTH} characters")
    if len(purpose) > PURPOSE_MAX_LENGTH:
        raise ValidationError(f"Purpose must be at most {PURPOSE_MAX_LENGTH} characters")
    return purpose


def check_booking_window(start: datetime, now: Optional[datetime] = None) -> None:
    """
    The first occurrence may not be in the past nor beyond the advance window.
    """
    current = civil_now(now)
    civil_start = to_civil(start)
    if civil_start < current:
        raise ValidationError("Cannot book a time slot that has already passed")
    if civil_start.date() > current.date() + timedelta(days=MAX_ADVANCE_DAYS):
        raise ValidationError(f"Reservations can be made at most {MAX_ADVANCE_DAYS} days in advance")


def check_restrictions(start: datetime, end: datetime, restrictions: Sequence[RestrictionPeriod]) -> None:
    day = to_civil(start).date()
    blocked = restricted_slots(day, restrictions)
    for slot in covered_slots(start, end):
        if slot in blocked:
            raise RestrictedSlotError(
                f"{day.isoformat()} {format_slot(slot)} falls within a room restriction"
            )


def plan_booking(
    request: BookingRequest,
    actor: Actor,
    restrictions: Sequence[RestrictionPeriod] = (),
    now: Optional[datetime] = None,
) -> List[NewReservation]:
    """
    Validate a request and build the reservations it would create.

    Parameters
    ----------
    request : BookingRequest
        Room, first occurrence, purpose, attendees and recurrence options.
    actor : Actor
        Submitting user; decides the initial status.
    restrictions : Sequence[RestrictionPeriod]
        Active restriction periods of the room.
    now : Optional[datetime]
        Reference instant for the booking window.

    Returns
    -------
    List[NewReservation]
        One entry per occurrence, in chronological order.

    Raises
    ------
    ValidationError
        On any rule violation; :class:`RestrictedSlotError` when an
        occurrence touches a restricted slot.
    """
    if Role(actor.role) == Role.SERVICE_ACCOUNT:
        raise ValidationError("Service accounts cannot create reservations")

    purpose = validate_purpose(request.purpose)
    validate_interval(request.start, request.end)
    check_booking_window(request.start, now=now)

    occurrences = expand(
        as_utc(request.start),
        as_utc(request.end),
        weeks=request.repeat_weeks,
        recurring=request.recurring,
    )
    for occurrence in occurrences:
        check_restrictions(occurrence.start, occurrence.end, restrictions)

    status = initial_status(actor.role)
    approved_by = actor.id if status == ReservationStatus.CONFIRMED else None
    attendees = normalize_attendees(request.attendees)

    return [
        NewReservation(
            user_id=actor.id,
            room_id=request.room_id,
            start=occurrence.start,
            end=occurrence.end,
            purpose=purpose,
            status=status,
            attendees=attendees,
            approved_by=approved_by,
        )
        for occurrence in occurrences
    ]


def submit_booking(
    store,
    request: BookingRequest,
    actor: Actor,
    restrictions: Sequence[RestrictionPeriod] = (),
    now: Optional[datetime] = None,
):
    """
    Run the full booking flow and return whatever the store inserted.

    The store must provide ``reservations_for_room(room_id, start, end)``
    and ``insert_reservations(new_reservations)``; the latter repeats the
    overlap check atomically with the insert and raises
    :class:`ConflictError` when it loses a race.
    """
    planned = plan_booking(request, actor, restrictions=restrictions, now=now)
    advisory_check(store, request.room_id, [p.interval for p in planned])
    created = store.insert_reservations(planned)
    logger.info(
        "User %s booked room %s: %d occurrence(s) as %s",
        actor.id, request.room_id, len(planned), planned[0].status.value,
    )
    return created
