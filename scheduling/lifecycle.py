# scheduling/lifecycle.py
"""
Reservation status machine.

    pending --approve--> confirmed
    pending --reject---> rejected   (reason required)

`confirmed` and `rejected` are terminal. Deletion and archival remove a
reservation altogether and are not states of this machine.

Transition functions never touch storage: they validate the request and
return a :class:`StatusChange` that the store applies as one atomic
update guarded by the expected current status.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .clock import civil_now
from .errors import ValidationError
from .models import Actor, ReservationSnapshot, ReservationStatus, Role, STAFF_ROLES


@dataclass(frozen=True)
class StatusChange:
    """Complete set of fields written by one transition."""
    reservation_id: int
    expected_status: ReservationStatus
    status: ReservationStatus
    approved_by: Optional[int]
    rejected_by: Optional[int]
    rejection_reason: Optional[str]
    updated_at: datetime


def initial_status(role: Role) -> ReservationStatus:
    """Staff bookings are self-approved; everybody else waits for a decision."""
    if Role(role) in STAFF_ROLES:
        return ReservationStatus.CONFIRMED
    return ReservationStatus.PENDING


def _require_staff(actor: Actor, action: str) -> None:
    if not actor.is_staff:
        raise ValidationError(f"Only teachers and admins can {action} reservations")


def _require_pending(reservation: ReservationSnapshot, action: str) -> None:
    if reservation.status != ReservationStatus.PENDING:
        raise ValidationError(
            f"Cannot {action} a reservation that is already {reservation.status.value}"
        )


def approve(reservation: ReservationSnapshot, actor: Actor, now: Optional[datetime] = None) -> StatusChange:
    """
    pending -> confirmed.

    Sets the approver to the actor and clears any rejecter and reason.
    """
    _require_staff(actor, "approve")
    _require_pending(reservation, "approve")
    return StatusChange(
        reservation_id=reservation.id,
        expected_status=reservation.status,
        status=ReservationStatus.CONFIRMED,
        approved_by=actor.id,
        rejected_by=None,
        rejection_reason=None,
        updated_at=civil_now(now),
    )


def reject(
    reservation: ReservationSnapshot,
    actor: Actor,
    reason: Optional[str],
    now: Optional[datetime] = None,
) -> StatusChange:
    """
    pending -> rejected.

    A non-blank reason is mandatory. Sets the rejecter to the actor and
    clears the approver.
    """
    _require_staff(actor, "reject")
    if reason is None or not reason.strip():
        raise ValidationError("A rejection reason is required")
    _require_pending(reservation, "reject")
    return StatusChange(
        reservation_id=reservation.id,
        expected_status=reservation.status,
        status=ReservationStatus.REJECTED,
        approved_by=None,
        rejected_by=actor.id,
        rejection_reason=reason.strip(),
        updated_at=civil_now(now),
    )


def transition(
    reservation: ReservationSnapshot,
    new_status: ReservationStatus,
    actor: Actor,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> StatusChange:
    """Dispatch to :func:`approve` or :func:`reject` by target status."""
    new_status = ReservationStatus(new_status)
    if new_status == ReservationStatus.CONFIRMED:
        return approve(reservation, actor, now=now)
    if new_status == ReservationStatus.REJECTED:
        return reject(reservation, actor, reason, now=now)
    raise ValidationError(f"Cannot move a reservation back to {new_status.value}")


def can_remove(reservation: ReservationSnapshot, actor: Actor) -> bool:
    """Owners may delete their own reservations; staff may delete any."""
    return actor.is_staff or (reservation.user_id is not None and reservation.user_id == actor.id)


def check_invariants(reservation: ReservationSnapshot) -> None:
    """
    Verify the status/field coupling of a stored reservation.

    Raises
    ------
    ValidationError
        If a confirmed reservation lacks an approver or carries a reason,
        or a rejected reservation lacks a reason or carries an approver.
    """
    if reservation.status == ReservationStatus.CONFIRMED:
        if reservation.approved_by is None or reservation.rejection_reason is not None:
            raise ValidationError(f"Reservation {reservation.id} is confirmed without a clean approval")
    elif reservation.status == ReservationStatus.REJECTED:
        if not reservation.rejection_reason or reservation.approved_by is not None:
            raise ValidationError(f"Reservation {reservation.id} is rejected without a clean rejection")
