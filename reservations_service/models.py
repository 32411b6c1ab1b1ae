from datetime import datetime, timezone

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Enum, Index, Integer, String, Text

from scheduling.models import ReservationStatus

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reservation(Base):
    """
    SQLAlchemy model representing a special-room reservation.

    Attributes
    ----------
    id : int
        Primary key.
    user_id : int
        Owner of the reservation.
    room_id : int
        Reserved room (owned by the Rooms service).
    start_time, end_time : datetime
        Half-open ``[start_time, end_time)`` interval, stored in UTC.
    purpose : str
        Why the room is needed (5-500 characters).
    attendees : list[str]
        Names of the people joining.
    status : ReservationStatus
        pending, confirmed or rejected.
    approved_by : int | None
        Approver id; set iff confirmed.
    rejected_by : int | None
        Rejecter id; set iff rejected.
    rejection_reason : str | None
        Required iff rejected.
    created_at, updated_at : datetime
        ``updated_at`` moves with every status transition.
    """
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_reservations_interval"),
        Index("ix_reservations_room_window", "room_id", "start_time", "end_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    room_id = Column(Integer, index=True, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    purpose = Column(String(500), nullable=False)
    attendees = Column(JSON, nullable=False, default=list)
    status = Column(Enum(ReservationStatus), nullable=False, default=ReservationStatus.PENDING, index=True)
    approved_by = Column(Integer, nullable=True)
    rejected_by = Column(Integer, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class ArchivedReservation(Base):
    """
    Point-in-time copy of a reservation removed by the archive sweep.

    ``original_id`` is unique: a reservation is archived at most once.
    """
    __tablename__ = "reservations_archive"

    id = Column(Integer, primary_key=True, index=True)
    original_id = Column(Integer, unique=True, nullable=False, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    room_id = Column(Integer, index=True, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    purpose = Column(String(500), nullable=False)
    attendees = Column(JSON, nullable=False, default=list)
    status = Column(Enum(ReservationStatus), nullable=False)
    approved_by = Column(Integer, nullable=True)
    rejected_by = Column(Integer, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    archived_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
