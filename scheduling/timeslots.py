# scheduling/timeslots.py
from datetime import datetime, time, timedelta
from typing import List, Optional

from .clock import as_utc, to_civil
from .errors import ValidationError

SLOT_MINUTES = 30
SLOT_LENGTH = timedelta(minutes=SLOT_MINUTES)

OPENING_TIME = time(8, 0)
CLOSING_TIME = time(22, 0)
LAST_START_TIME = time(21, 30)


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def _from_minutes(total: int) -> time:
    return time(total // 60, total % 60)


def enumerate_slots() -> List[time]:
    """
    Return every slot boundary of the operating day, in order.

    There are 29 boundaries from 08:00 to 22:00. The first 28 are valid
    slot starts; 22:00 only closes the last slot.
    """
    return [
        _from_minutes(m)
        for m in range(_minutes(OPENING_TIME), _minutes(CLOSING_TIME) + 1, SLOT_MINUTES)
    ]


SLOT_BOUNDARIES = tuple(enumerate_slots())
START_SLOTS = SLOT_BOUNDARIES[:-1]


def is_aligned(t: time) -> bool:
    """True if `t` falls exactly on a 30-minute boundary."""
    return t.second == 0 and t.microsecond == 0 and t.minute % SLOT_MINUTES == 0


def is_valid_start(t: time) -> bool:
    return is_aligned(t) and OPENING_TIME <= t <= LAST_START_TIME


def is_valid_end(t: time, start: Optional[time] = None) -> bool:
    """
    True if `t` may close a booking.

    When `start` is given, `t` must also be strictly after it.
    """
    if not is_aligned(t) or not (OPENING_TIME < t <= CLOSING_TIME):
        return False
    return start is None or t > start


def parse_slot(value: str) -> time:
    """Parse an ``HH:MM`` label into a time of day."""
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError):
        raise ValidationError(f"Invalid time of day: {value!r}")


def format_slot(t: time) -> str:
    return t.strftime("%H:%M")


def slots_in_range(start: time, end: time) -> List[time]:
    """Slot starts `s` of the operating day with ``start <= s < end``."""
    return [slot for slot in START_SLOTS if start <= slot < end]


def covered_slots(start: datetime, end: datetime) -> List[time]:
    """
    Expand an instant interval into the civil slot labels it covers.

    Walks from the civil start in 30-minute steps while before `end`,
    so a 10:00-11:00 reservation covers 10:00 and 10:30.
    """
    current = to_civil(start)
    stop = to_civil(end)
    slots = []
    while current < stop:
        slots.append(current.time())
        current += SLOT_LENGTH
    return slots


def validate_interval(start: datetime, end: datetime) -> None:
    """
    Check that ``[start, end)`` is a bookable interval.

    Raises
    ------
    ValidationError
        If the end is not after the start, the interval crosses civil
        midnight, or either boundary breaks the slot rules.
    """
    if as_utc(end) <= as_utc(start):
        raise ValidationError("end_time must be after start_time")

    civil_start = to_civil(start)
    civil_end = to_civil(end)
    if civil_start.date() != civil_end.date():
        raise ValidationError("A reservation must start and end on the same day")

    start_t = civil_start.time()
    end_t = civil_end.time()
    if not is_aligned(start_t) or not is_aligned(end_t):
        raise ValidationError("Reservations must use 30-minute boundaries")
    if not is_valid_start(start_t):
        raise ValidationError("Start time must be between 08:00 and 21:30")
    if not is_valid_end(end_t, start_t):
        raise ValidationError("End time must be after the start and no later than 22:00")
