# scheduling/conflicts.py
"""
Overlap detection between reservation intervals.

The same rule is applied twice by the booking pipeline: once as an
advisory pre-check that only saves a needless write, and once by the
storage layer in the transaction that inserts the rows. Only the second
result decides whether a booking exists.
"""

from datetime import datetime
from typing import Iterable, Optional, Sequence

from .clock import as_utc
from .errors import ConflictError
from .models import ACTIVE_STATUSES, Interval, ReservationSnapshot

ADVISORY = "advisory"
AUTHORITATIVE = "authoritative"


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """
    Half-open overlap test: touching endpoints do not overlap.
    """
    return as_utc(a_start) < as_utc(b_end) and as_utc(a_end) > as_utc(b_start)


def intervals_conflict(a: Interval, b: Interval) -> bool:
    return overlaps(a.start, a.end, b.start, b.end)


def find_conflict(
    candidate: Interval,
    existing: Iterable[ReservationSnapshot],
    exclude_id: Optional[int] = None,
) -> Optional[ReservationSnapshot]:
    """
    Return the first active reservation overlapping `candidate`, if any.

    Parameters
    ----------
    candidate : Interval
        Requested interval.
    existing : Iterable[ReservationSnapshot]
        Reservations of the same room. Rejected ones are ignored.
    exclude_id : Optional[int]
        Reservation id to skip (the reservation being edited).
    """
    for reservation in existing:
        if exclude_id is not None and reservation.id == exclude_id:
            continue
        if reservation.status not in ACTIVE_STATUSES:
            continue
        if overlaps(reservation.start, reservation.end, candidate.start, candidate.end):
            return reservation
    return None


def ensure_no_conflict(
    candidate: Interval,
    existing: Iterable[ReservationSnapshot],
    exclude_id: Optional[int] = None,
    stage: str = AUTHORITATIVE,
) -> None:
    """Raise :class:`ConflictError` if `candidate` overlaps an active reservation."""
    conflicting = find_conflict(candidate, existing, exclude_id=exclude_id)
    if conflicting is not None:
        raise ConflictError(conflicting, stage=stage)


def advisory_check(store, room_id: int, candidates: Sequence[Interval]) -> None:
    """
    Pre-submission check of every candidate against the store.

    A pass here guarantees nothing; the store repeats the check while
    inserting. A failure raises :class:`ConflictError` with stage
    ``"advisory"`` so the caller can re-query availability.
    """
    for candidate in candidates:
        existing = store.reservations_for_room(room_id, candidate.start, candidate.end)
        ensure_no_conflict(candidate, existing, stage=ADVISORY)
