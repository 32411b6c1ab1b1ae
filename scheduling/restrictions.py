# scheduling/restrictions.py
"""
Room restriction periods.

A restriction blacks out a room for a recurring or dated period,
optionally narrowed to a clock-time range. The period is a tagged value
decided when the restriction is created; its Korean description (the
text shown to users, e.g. ``"평일 18:00 - 20:00"``) is rendered from the
value. Legacy free-text descriptions are parsed once, at creation time,
by :meth:`RestrictionPeriod.parse`.
"""

import re
from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from .errors import ValidationError
from .timeslots import START_SLOTS, format_slot, is_aligned, parse_slot, slots_in_range


class PeriodKind(str, Enum):
    WEEKDAY = "weekday"
    WEEKEND = "weekend"
    ALL = "all"
    SPECIFIC = "specific"


WEEKDAY_LABEL = "평일"
WEEKEND_LABEL = "주말"
ALL_LABEL = "전체 기간"
WHOLE_DAY_LABEL = "전체"

_TIME_RANGE_RE = re.compile(r"(\d{1,2}:\d{2})\s*-\s*(\d{1,2}:\d{2})")
_DATE_PATTERN = r"(\d{4})년\s*(\d{1,2})월\s*(\d{1,2})일"
_DATE_RE = re.compile(_DATE_PATTERN)
_DATE_RANGE_RE = re.compile(_DATE_PATTERN + r"\s*-\s*" + _DATE_PATTERN)


def _format_date(value: date) -> str:
    return f"{value.year:04d}년 {value.month:02d}월 {value.day:02d}일"


def _build_date(year: str, month: str, day: str) -> date:
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        raise ValidationError(f"Invalid date in restriction: {year}-{month}-{day}")


@dataclass(frozen=True)
class RestrictionPeriod:
    """
    When a restriction applies.

    Attributes
    ----------
    kind : PeriodKind
        weekday (Mon-Fri), weekend (Sat-Sun), all (every date) or
        specific (an inclusive date range).
    start_date, end_date : Optional[date]
        Only for ``specific``; a single date has ``end_date == start_date``.
    start_time, end_time : Optional[time]
        Optional clock-time range ``[start_time, end_time)``. Without it the
        whole operating day is restricted.
    """
    kind: PeriodKind
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    def __post_init__(self):
        object.__setattr__(self, "kind", PeriodKind(self.kind))

        if self.kind == PeriodKind.SPECIFIC:
            if self.start_date is None:
                raise ValidationError("A specific-date restriction needs a start date")
            if self.end_date is None:
                object.__setattr__(self, "end_date", self.start_date)
            if self.end_date < self.start_date:
                raise ValidationError("Restriction end date must not be before its start date")
        elif self.start_date is not None or self.end_date is not None:
            raise ValidationError("Only specific-date restrictions carry dates")

        if (self.start_time is None) != (self.end_time is None):
            raise ValidationError("Restriction times need both a start and an end")
        if self.start_time is not None:
            if not (is_aligned(self.start_time) and is_aligned(self.end_time)):
                raise ValidationError("Restriction times must use 30-minute boundaries")
            if self.end_time <= self.start_time:
                raise ValidationError("Restriction end time must be after its start time")

    @property
    def has_time_range(self) -> bool:
        return self.start_time is not None

    def matches(self, day: date) -> bool:
        """True if the restriction applies on the calendar date `day`."""
        if self.kind == PeriodKind.WEEKDAY:
            return day.weekday() < 5
        if self.kind == PeriodKind.WEEKEND:
            return day.weekday() >= 5
        if self.kind == PeriodKind.ALL:
            return True
        return self.start_date <= day <= self.end_date

    def restricted_slots(self) -> FrozenSet[time]:
        """Slot starts blocked on a matching date."""
        if not self.has_time_range:
            return frozenset(START_SLOTS)
        return frozenset(slots_in_range(self.start_time, self.end_time))

    def slots_for(self, day: date) -> FrozenSet[time]:
        if not self.matches(day):
            return frozenset()
        return self.restricted_slots()

    def describe(self) -> str:
        """Render the user-facing description of the period."""
        times = None
        if self.has_time_range:
            times = f"{format_slot(self.start_time)} - {format_slot(self.end_time)}"

        if self.kind == PeriodKind.ALL:
            return f"{ALL_LABEL} {times}" if times else ALL_LABEL
        if self.kind in (PeriodKind.WEEKDAY, PeriodKind.WEEKEND):
            label = WEEKDAY_LABEL if self.kind == PeriodKind.WEEKDAY else WEEKEND_LABEL
            return f"{label} {times or WHOLE_DAY_LABEL}"

        if self.start_date == self.end_date:
            text = _format_date(self.start_date)
        else:
            text = f"{_format_date(self.start_date)} - {_format_date(self.end_date)}"
        return f"{text} {times}" if times else text

    @classmethod
    def parse(cls, text: str) -> "RestrictionPeriod":
        """
        Parse a textual description into a period.

        Accepted forms mirror :meth:`describe`: ``"평일 18:00-20:00"``,
        ``"주말 전체"``, ``"전체 기간"``, ``"2024년 5월 1일"`` and
        ``"2024년 05월 01일 - 2024년 05월 03일 09:00 - 12:00"``. An absent
        time suffix restricts the entire date.

        Raises
        ------
        ValidationError
            If no period can be recognised.
        """
        if not text or not text.strip():
            raise ValidationError("Restriction period must not be empty")
        text = text.strip()

        # Strip dates first so "2024년 05월 01일 - 2024년 05월 03일" is not
        # mistaken for a time range.
        range_match = _DATE_RANGE_RE.search(text)
        date_match = _DATE_RE.search(text)
        remainder = text
        if range_match:
            remainder = text[:range_match.start()] + text[range_match.end():]
        elif date_match:
            remainder = text[:date_match.start()] + text[date_match.end():]

        start_time = end_time = None
        time_match = _TIME_RANGE_RE.search(remainder)
        if time_match:
            start_time = parse_slot(time_match.group(1))
            end_time = parse_slot(time_match.group(2))

        if text.startswith(ALL_LABEL):
            kind = PeriodKind.ALL
        elif text.startswith(WEEKDAY_LABEL):
            kind = PeriodKind.WEEKDAY
        elif text.startswith(WEEKEND_LABEL):
            kind = PeriodKind.WEEKEND
        elif range_match:
            groups = range_match.groups()
            return cls(
                PeriodKind.SPECIFIC,
                start_date=_build_date(*groups[:3]),
                end_date=_build_date(*groups[3:]),
                start_time=start_time,
                end_time=end_time,
            )
        elif date_match:
            return cls(
                PeriodKind.SPECIFIC,
                start_date=_build_date(*date_match.groups()),
                start_time=start_time,
                end_time=end_time,
            )
        else:
            raise ValidationError(f"Unrecognised restriction period: {text!r}")

        return cls(kind, start_time=start_time, end_time=end_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "start_time": format_slot(self.start_time) if self.start_time else None,
            "end_time": format_slot(self.end_time) if self.end_time else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RestrictionPeriod":
        def _day(value):
            return date.fromisoformat(value) if value else None

        def _clock(value):
            return parse_slot(value[:5]) if value else None

        return cls(
            PeriodKind(data["kind"]),
            start_date=_day(data.get("start_date")),
            end_date=_day(data.get("end_date")),
            start_time=_clock(data.get("start_time")),
            end_time=_clock(data.get("end_time")),
        )
