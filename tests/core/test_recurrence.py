import os
import sys
from datetime import date, datetime, timedelta

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from scheduling.clock import CIVIL_TZ, to_civil
from scheduling.errors import ValidationError
from scheduling.models import Interval
from scheduling.recurrence import ALLOWED_REPEAT_WEEKS, expand


def kst(year, month, day, hour, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=CIVIL_TZ)


def test_four_weekly_mondays():
    series = expand(kst(2024, 6, 3, 14), kst(2024, 6, 3, 15), weeks=4)

    assert [to_civil(i.start).date() for i in series] == [
        date(2024, 6, 3), date(2024, 6, 10), date(2024, 6, 17), date(2024, 6, 24)
    ]
    for occurrence in series:
        assert to_civil(occurrence.start).hour == 14
        assert to_civil(occurrence.end).hour == 15


def test_single_occurrence_when_not_recurring():
    start, end = kst(2024, 6, 3, 14), kst(2024, 6, 3, 15)
    assert expand(start, end, weeks=1) == [Interval(start, end)]
    assert expand(start, end, weeks=8, recurring=False) == [Interval(start, end)]


def test_expansion_is_deterministic():
    start, end = kst(2024, 6, 3, 14), kst(2024, 6, 3, 15, 30)
    assert expand(start, end, weeks=12) == expand(start, end, weeks=12)


@pytest.mark.parametrize("weeks", ALLOWED_REPEAT_WEEKS)
def test_weekday_time_and_duration_are_preserved_across_year_end(weeks):
    start, end = kst(2024, 12, 16, 9), kst(2024, 12, 16, 10, 30)
    series = expand(start, end, weeks=weeks)

    assert len(series) == weeks
    for occurrence in series:
        civil = to_civil(occurrence.start)
        assert civil.weekday() == start.weekday()
        assert civil.time() == start.time()
        assert occurrence.duration == end - start
    for earlier, later in zip(series, series[1:]):
        assert later.start - earlier.start == timedelta(days=7)


@pytest.mark.parametrize("weeks", [0, 3, 5, 13, 52])
def test_unsupported_repeat_counts_are_rejected(weeks):
    with pytest.raises(ValidationError):
        expand(kst(2024, 6, 3, 14), kst(2024, 6, 3, 15), weeks=weeks)
