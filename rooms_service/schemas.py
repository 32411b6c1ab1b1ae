from datetime import date, datetime, time
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from scheduling.restrictions import PeriodKind


def split_facilities(value):
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    return [item.strip() for item in value if item and item.strip()]


class RoomBase(BaseModel):
    """
    Base schema for room information.

    Shared fields used when creating and reading rooms.
    """
    name: str = Field(..., min_length=1, max_length=100)
    capacity: int = Field(..., ge=1)
    location: str = Field(..., min_length=1)
    facilities: Union[List[str], str] = Field(default_factory=list)
    restricted_hours: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("facilities")
    @classmethod
    def clean_facilities(cls, value):
        return split_facilities(value)


class RoomCreate(RoomBase):
    """
    Schema for creating a new room.

    ``facilities`` may be a list or a comma-separated string.
    """
    pass


class RoomUpdate(BaseModel):
    """
    Schema for partial updates to a room.

    All fields are optional and only provided values will be updated.
    """
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    capacity: Optional[int] = Field(default=None, ge=1)
    location: Optional[str] = None
    facilities: Union[List[str], str, None] = None
    is_available: Optional[bool] = None
    restricted_hours: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("facilities")
    @classmethod
    def clean_facilities(cls, value):
        return split_facilities(value)


class RoomRead(RoomBase):
    """
    Schema returned when reading room data.
    """
    id: int
    facilities: List[str]
    is_available: bool

    model_config = ConfigDict(from_attributes=True)


class RestrictionCreate(BaseModel):
    """
    Schema for declaring a room restriction.

    Either give the period in structured form (``kind`` plus optional
    dates and ``HH:MM`` times) or as a description such as
    ``"평일 18:00 - 20:00"`` in ``restricted_hours``; the description is
    parsed once, here.
    """
    room_id: int = Field(..., ge=1)
    reason: str = Field(..., min_length=1)
    kind: Optional[PeriodKind] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    restricted_hours: Optional[str] = None

    @model_validator(mode="after")
    def needs_a_period(self):
        if self.kind is None and not (self.restricted_hours or "").strip():
            raise ValueError("Give either a period kind or a restricted_hours description")
        return self


class RestrictionRead(BaseModel):
    id: int
    room_id: int
    kind: PeriodKind
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    restricted_hours: str
    reason: str
    is_active: bool
    created_by: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NoticeUpdate(BaseModel):
    restricted_hours: Optional[str] = None
    notes: Optional[str] = None


class NoticeRead(BaseModel):
    restricted_hours: Optional[str] = None
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
