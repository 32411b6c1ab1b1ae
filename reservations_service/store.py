# reservations_service/store.py
"""
SQLAlchemy-backed persistence for the scheduling core.

`SqlReservationStore` is the storage collaborator the core talks to: it
answers room/date queries with immutable snapshots, performs the
authoritative overlap check in the same transaction as the insert, and
applies status changes and archive moves. SQLAlchemy failures are rolled
back and surfaced as `PersistenceError`.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Set

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling.clock import as_utc, civil_day_window
from scheduling.conflicts import ensure_no_conflict
from scheduling.errors import ConflictError, PersistenceError, SchedulingError, ValidationError
from scheduling.lifecycle import StatusChange
from scheduling.models import ACTIVE_STATUSES, NewReservation, ReservationSnapshot, ReservationStatus

from . import models

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


def to_snapshot(row) -> ReservationSnapshot:
    """Build an immutable snapshot from a stored (live or archived) row."""
    return ReservationSnapshot(
        id=getattr(row, "original_id", None) or row.id,
        room_id=row.room_id,
        start=_aware(row.start_time),
        end=_aware(row.end_time),
        status=ReservationStatus(row.status),
        user_id=row.user_id,
        purpose=row.purpose,
        attendees=tuple(row.attendees or ()),
        approved_by=row.approved_by,
        rejected_by=row.rejected_by,
        rejection_reason=row.rejection_reason,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlReservationStore:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _transaction(self, action: str):
        try:
            yield
            self.db.commit()
        except SchedulingError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Could not %s: %s", action, exc)
            raise PersistenceError(f"Could not {action}, please try again") from exc

    def _lock_room(self, room_id: int) -> None:
        """
        Serialize writers of one room until the transaction ends.

        PostgreSQL gets a transaction-scoped advisory lock keyed by room id.
        SQLite transactions start with ``BEGIN IMMEDIATE`` (see
        `database.py`), so the write lock is held before the overlap query.
        """
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": room_id})

    # ---------- reads ----------

    def get(self, reservation_id: int) -> Optional[models.Reservation]:
        return self.db.query(models.Reservation).filter(models.Reservation.id == reservation_id).first()

    def reservations_for_room(
        self,
        room_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Iterable[ReservationStatus] = ACTIVE_STATUSES,
    ) -> List[ReservationSnapshot]:
        """
        Reservations of a room, optionally only those overlapping ``[start, end)``.
        """
        q = (
            self.db.query(models.Reservation)
            .filter(models.Reservation.room_id == room_id)
            .filter(models.Reservation.status.in_(list(statuses)))
        )
        if start is not None:
            q = q.filter(models.Reservation.end_time > as_utc(start))
        if end is not None:
            q = q.filter(models.Reservation.start_time < as_utc(end))
        return [to_snapshot(r) for r in q.order_by(models.Reservation.start_time).all()]

    def reservations_on_day(self, room_id: int, day: date) -> List[ReservationSnapshot]:
        """Active reservations of a room starting on a civil date."""
        window_start, window_end = civil_day_window(day)
        rows = (
            self.db.query(models.Reservation)
            .filter(models.Reservation.room_id == room_id)
            .filter(models.Reservation.status.in_(list(ACTIVE_STATUSES)))
            .filter(models.Reservation.start_time >= window_start)
            .filter(models.Reservation.start_time < window_end)
            .order_by(models.Reservation.start_time)
            .all()
        )
        return [to_snapshot(r) for r in rows]

    def list_reservations(
        self,
        status: Optional[ReservationStatus] = None,
        room_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> List[models.Reservation]:
        q = self.db.query(models.Reservation)
        if status is not None:
            q = q.filter(models.Reservation.status == status)
        if room_id is not None:
            q = q.filter(models.Reservation.room_id == room_id)
        if user_id is not None:
            q = q.filter(models.Reservation.user_id == user_id)
        return q.order_by(models.Reservation.start_time.desc()).all()

    def confirmed_between(self, start: datetime, end: datetime, room_id: Optional[int] = None) -> List[models.Reservation]:
        """Confirmed reservations starting in ``[start, end)``, for the calendar view."""
        q = (
            self.db.query(models.Reservation)
            .filter(models.Reservation.status == ReservationStatus.CONFIRMED)
            .filter(models.Reservation.start_time >= as_utc(start))
            .filter(models.Reservation.start_time < as_utc(end))
        )
        if room_id is not None:
            q = q.filter(models.Reservation.room_id == room_id)
        return q.order_by(models.Reservation.start_time).all()

    def count_for_room(self, room_id: int) -> int:
        return self.db.query(models.Reservation).filter(models.Reservation.room_id == room_id).count()

    # ---------- booking ----------

    def insert_reservations(self, planned: Sequence[NewReservation]) -> List[models.Reservation]:
        """
        Insert every planned reservation, or none of them.

        The overlap check runs against committed rows and against the
        earlier items of the same batch, inside the locked transaction.

        Raises
        ------
        ConflictError
            If any item overlaps an active reservation; nothing is written.
        """
        created: List[models.Reservation] = []
        with self._transaction("create reservations"):
            for room_id in sorted({p.room_id for p in planned}):
                self._lock_room(room_id)

            for item in planned:
                existing = self.reservations_for_room(item.room_id, item.start, item.end)
                try:
                    ensure_no_conflict(item.interval, existing)
                except ConflictError as exc:
                    logger.info(
                        "Room %s %s-%s rejected: overlaps %s reservation %s",
                        item.room_id, item.start, item.end, exc.status.value, exc.conflicting.id,
                    )
                    raise

                row = models.Reservation(
                    user_id=item.user_id,
                    room_id=item.room_id,
                    start_time=as_utc(item.start),
                    end_time=as_utc(item.end),
                    purpose=item.purpose,
                    attendees=list(item.attendees),
                    status=item.status,
                    approved_by=item.approved_by,
                )
                self.db.add(row)
                self.db.flush()
                created.append(row)

        for row in created:
            self.db.refresh(row)
        return created

    # ---------- lifecycle ----------

    def apply_status_change(self, change: StatusChange) -> models.Reservation:
        """
        Write a status transition as one guarded UPDATE.

        Raises
        ------
        ValidationError
            If the reservation no longer has the expected status (it was
            decided or removed concurrently); nothing is changed.
        """
        with self._transaction("update the reservation status"):
            updated = (
                self.db.query(models.Reservation)
                .filter(models.Reservation.id == change.reservation_id)
                .filter(models.Reservation.status == change.expected_status)
                .update(
                    {
                        models.Reservation.status: change.status,
                        models.Reservation.approved_by: change.approved_by,
                        models.Reservation.rejected_by: change.rejected_by,
                        models.Reservation.rejection_reason: change.rejection_reason,
                        models.Reservation.updated_at: as_utc(change.updated_at),
                    },
                    synchronize_session=False,
                )
            )
            if updated == 0:
                raise ValidationError("The reservation was changed by someone else; reload and try again")

        self.db.expire_all()
        return self.get(change.reservation_id)

    def delete_reservation(self, reservation_id: int) -> None:
        with self._transaction("delete the reservation"):
            self.db.query(models.Reservation).filter(
                models.Reservation.id == reservation_id
            ).delete(synchronize_session=False)

    def delete_for_user(self, user_id: int) -> int:
        """Remove every reservation owned by a deleted account."""
        with self._transaction("delete the account's reservations"):
            deleted = (
                self.db.query(models.Reservation)
                .filter(models.Reservation.user_id == user_id)
                .delete(synchronize_session=False)
            )
        return deleted

    # ---------- archive ----------

    def confirmed_approved(self) -> List[ReservationSnapshot]:
        try:
            rows = (
                self.db.query(models.Reservation)
                .filter(models.Reservation.status == ReservationStatus.CONFIRMED)
                .filter(models.Reservation.approved_by.isnot(None))
                .all()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Could not load reservations for archiving") from exc
        return [to_snapshot(r) for r in rows]

    def archived_ids(self, ids: Iterable[int]) -> Set[int]:
        ids = list(ids)
        if not ids:
            return set()
        try:
            rows = (
                self.db.query(models.ArchivedReservation.original_id)
                .filter(models.ArchivedReservation.original_id.in_(ids))
                .all()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Could not read the archive") from exc
        return {r.original_id for r in rows}

    def copy_to_archive(self, reservations: Sequence[ReservationSnapshot], archived_at: datetime) -> int:
        with self._transaction("write archive copies"):
            for r in reservations:
                self.db.add(
                    models.ArchivedReservation(
                        original_id=r.id,
                        user_id=r.user_id,
                        room_id=r.room_id,
                        start_time=as_utc(r.start),
                        end_time=as_utc(r.end),
                        purpose=r.purpose,
                        attendees=list(r.attendees),
                        status=r.status,
                        approved_by=r.approved_by,
                        rejected_by=r.rejected_by,
                        rejection_reason=r.rejection_reason,
                        created_at=as_utc(r.created_at or archived_at),
                        updated_at=as_utc(r.updated_at or r.created_at or archived_at),
                        archived_at=as_utc(archived_at),
                    )
                )
        return len(reservations)

    def delete_reservations(self, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        with self._transaction("remove archived reservations"):
            deleted = (
                self.db.query(models.Reservation)
                .filter(models.Reservation.id.in_(list(ids)))
                .delete(synchronize_session=False)
            )
        return deleted

    def list_archive(self, room_id: Optional[int] = None, user_id: Optional[int] = None) -> List[models.ArchivedReservation]:
        q = self.db.query(models.ArchivedReservation)
        if room_id is not None:
            q = q.filter(models.ArchivedReservation.room_id == room_id)
        if user_id is not None:
            q = q.filter(models.ArchivedReservation.user_id == user_id)
        return q.order_by(models.ArchivedReservation.archived_at.desc()).all()
