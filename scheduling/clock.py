# scheduling/clock.py
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

# The school operates on Korean civil time, which never observes DST.
CIVIL_OFFSET = timedelta(hours=9)
CIVIL_TZ = timezone(CIVIL_OFFSET, "KST")


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to an aware UTC instant.

    Naive values are interpreted as UTC, which is how the storage layer
    hands back timestamps from backends without timezone support.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_civil(value: datetime) -> datetime:
    """
    Convert an instant to civil time (fixed +09:00 offset on the UTC instant).

    This is the single conversion used at every boundary: "now",
    archival thresholds, day windows and slot labels.

    Parameters
    ----------
    value : datetime
        Aware instant, or naive value already expressed in UTC.

    Returns
    -------
    datetime
        The same instant carrying the +09:00 civil offset.
    """
    return as_utc(value).astimezone(CIVIL_TZ)


def civil_now(now: Optional[datetime] = None) -> datetime:
    """Return the current civil time, or `now` converted to civil time."""
    if now is None:
        now = datetime.now(timezone.utc)
    return to_civil(now)


def civil_today(now: Optional[datetime] = None) -> date:
    return civil_now(now).date()


def civil_datetime(day: date, clock_time: time) -> datetime:
    """Build the civil instant for a calendar date and a time of day."""
    return datetime.combine(day, clock_time, tzinfo=CIVIL_TZ)


def civil_day_window(day: date):
    """
    Return the ``[start, end)`` UTC instants covering a civil calendar day.
    """
    start = civil_datetime(day, time(0, 0))
    return as_utc(start), as_utc(start + timedelta(days=1))
