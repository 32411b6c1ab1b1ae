# scheduling/models.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class Role(str, Enum):
    """
    Roles known to the booking system.

    Values
    ------
    student
        Books rooms; bookings start as pending and need approval.
    teacher
        Staff member; bookings are self-approved and may approve others.
    admin
        Staff member with the same scheduling powers as a teacher.
    service_account
        Non-human account used for inter-service calls.
    """
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"
    SERVICE_ACCOUNT = "service_account"


STAFF_ROLES = frozenset({Role.TEACHER, Role.ADMIN})


class ReservationStatus(str, Enum):
    """
    Enumeration of reservation statuses.

    Values
    ------
    pending
        Waiting for a teacher or admin decision; holds the slot.
    confirmed
        Approved; holds the slot.
    rejected
        Declined with a reason; releases the slot.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


ACTIVE_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED})


@dataclass(frozen=True)
class Actor:
    """Authenticated identity performing an operation."""
    id: int
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


@dataclass(frozen=True)
class Interval:
    """Half-open ``[start, end)`` interval of aware instants."""
    start: datetime
    end: datetime

    @property
    def duration(self):
        return self.end - self.start


@dataclass(frozen=True)
class ReservationSnapshot:
    """
    Immutable copy of a stored reservation.

    The core only ever reads snapshots; writing them back is the job of
    the persistence collaborator.
    """
    id: int
    room_id: int
    start: datetime
    end: datetime
    status: ReservationStatus
    user_id: Optional[int] = None
    purpose: str = ""
    attendees: Tuple[str, ...] = ()
    approved_by: Optional[int] = None
    rejected_by: Optional[int] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)


@dataclass(frozen=True)
class NewReservation:
    """A reservation accepted by the booking pipeline but not yet stored."""
    user_id: int
    room_id: int
    start: datetime
    end: datetime
    purpose: str
    status: ReservationStatus
    attendees: Tuple[str, ...] = field(default_factory=tuple)
    approved_by: Optional[int] = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)
