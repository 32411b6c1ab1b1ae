from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Enum, ForeignKey, Integer, String, Text, Time

from scheduling.restrictions import PeriodKind, RestrictionPeriod

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Room(Base):
    """
    SQLAlchemy model representing a bookable special room.

    Attributes
    ----------
    id : int
        Primary key.
    name : str
        Unique room name (e.g. '과학실 1').
    capacity : int
        Maximum number of people the room can hold.
    location : str
        Building and floor.
    facilities : list[str]
        Equipment available in the room.
    is_available : bool
        Listing flag; cleared while an active restriction exists.
    restricted_hours : str | None
        Free-text note shown with the room. Not used for booking checks.
    notes : str | None
        Additional remarks.
    """
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    capacity = Column(Integer, nullable=False)
    location = Column(String(255), nullable=False)
    facilities = Column(JSON, nullable=False, default=list)
    is_available = Column(Boolean, nullable=False, default=True)
    restricted_hours = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class RoomRestriction(Base):
    """
    A "do not use" declaration for a room.

    The period is stored in structured columns; ``restricted_hours`` keeps
    the rendered description for display only.
    """
    __tablename__ = "room_restrictions"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(Enum(PeriodKind), nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    restricted_hours = Column(String(255), nullable=False)
    reason = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def period(self) -> RestrictionPeriod:
        return RestrictionPeriod(
            PeriodKind(self.kind),
            start_date=self.start_date,
            end_date=self.end_date,
            start_time=self.start_time,
            end_time=self.end_time,
        )


class SystemNotice(Base):
    """Single school-wide notice shown on the booking dashboard."""
    __tablename__ = "system_notices"

    id = Column(Integer, primary_key=True, index=True)
    restricted_hours = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    updated_by = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
