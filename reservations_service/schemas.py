from datetime import date, datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scheduling.booking import PURPOSE_MAX_LENGTH, PURPOSE_MIN_LENGTH, normalize_attendees
from scheduling.clock import CIVIL_TZ, as_utc
from scheduling.models import ReservationStatus


class ReservationBase(BaseModel):
    """
    Base schema for reservation room and time information.

    Shared fields used across reservation create and read operations.
    """
    room_id: int = Field(..., ge=1)
    start_time: datetime = Field(...)
    end_time: datetime = Field(...)


class ReservationCreate(ReservationBase):
    """
    Schema for submitting a reservation request.

    ``attendees`` accepts a list of names or one comma-separated string.
    With ``recurring`` set, ``repeat_weeks`` occurrences are created one
    week apart.
    """
    purpose: str = Field(..., min_length=PURPOSE_MIN_LENGTH, max_length=PURPOSE_MAX_LENGTH)
    attendees: Union[List[str], str, None] = None
    recurring: bool = False
    repeat_weeks: int = Field(default=1, ge=1)

    @field_validator("attendees")
    @classmethod
    def split_attendees(cls, value):
        return list(normalize_attendees(value))

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def assume_civil_time(cls, value: datetime) -> datetime:
        """Times without an offset are school (civil) times."""
        if value.tzinfo is None:
            return value.replace(tzinfo=CIVIL_TZ)
        return value


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ReservationRead(ReservationBase):
    """
    Schema returned when reading reservation information.
    """
    id: int
    user_id: int
    purpose: str
    attendees: List[str]
    status: ReservationStatus
    approved_by: Optional[int] = None
    rejected_by: Optional[int] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    # SQLite hands back naive values; everything is stored in UTC.
    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def mark_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class ArchivedReservationRead(ReservationRead):
    original_id: int
    archived_at: datetime

    @field_validator("archived_at")
    @classmethod
    def mark_archived_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class AvailabilityRead(BaseModel):
    """
    Slot occupancy of a room on one civil date.

    Slots are ``HH:MM`` labels; the three blocked sets are disjoint.
    """
    room_id: int
    day: date
    booked: List[str]
    restricted: List[str]
    past: List[str]
    available_starts: List[str]
    available_ends: Optional[List[str]] = None


class ArchiveSweepRead(BaseModel):
    archived_count: int
    deleted_count: int
    archived_ids: List[int]
    warning: Optional[str] = None


class ReservationCount(BaseModel):
    room_id: int
    count: int
