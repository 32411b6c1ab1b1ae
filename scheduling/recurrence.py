# scheduling/recurrence.py
from datetime import datetime, timedelta
from typing import List

from .errors import ValidationError
from .models import Interval

ALLOWED_REPEAT_WEEKS = (2, 4, 6, 8, 12)


def expand(start: datetime, end: datetime, weeks: int = 1, recurring: bool = True) -> List[Interval]:
    """
    Expand a first occurrence into a weekly series.

    Occurrence ``k`` is the first one shifted by exactly ``k * 7`` days,
    so weekday, time of day and duration are preserved. Civil time has a
    fixed offset, which makes the shift exact across month and year ends.

    Parameters
    ----------
    start, end : datetime
        First occurrence.
    weeks : int
        Number of occurrences. ``1`` always yields the single occurrence;
        other values must be one of ``ALLOWED_REPEAT_WEEKS``.
    recurring : bool
        When False the series is just the first occurrence.

    Raises
    ------
    ValidationError
        If a recurring series asks for an unsupported number of weeks.
    """
    if not recurring or weeks == 1:
        return [Interval(start, end)]
    if weeks not in ALLOWED_REPEAT_WEEKS:
        allowed = ", ".join(str(w) for w in ALLOWED_REPEAT_WEEKS)
        raise ValidationError(f"Repeat count must be one of {allowed} weeks")

    return [
        Interval(start + timedelta(weeks=k), end + timedelta(weeks=k))
        for k in range(weeks)
    ]
