import os
import sys
from datetime import datetime, timedelta

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from scheduling.archival import is_archive_eligible, run_sweep
from scheduling.clock import CIVIL_TZ
from scheduling.errors import PersistenceError
from scheduling.models import ReservationSnapshot, ReservationStatus

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=CIVIL_TZ)


def confirmed(rid, updated_days_ago, approved_by=20, created_days_ago=None):
    start = NOW + timedelta(days=1)
    return ReservationSnapshot(
        id=rid,
        room_id=1,
        start=start,
        end=start + timedelta(hours=1),
        status=ReservationStatus.CONFIRMED,
        approved_by=approved_by,
        created_at=NOW - timedelta(days=created_days_ago if created_days_ago is not None else 30),
        updated_at=NOW - timedelta(days=updated_days_ago) if updated_days_ago is not None else None,
    )


class FakeArchiveStore:
    def __init__(self, reservations, fail_copy=False, fail_delete=False):
        self.live = {r.id: r for r in reservations}
        self.archive = {}
        self.fail_copy = fail_copy
        self.fail_delete = fail_delete

    def confirmed_approved(self):
        return [
            r for r in self.live.values()
            if r.status == ReservationStatus.CONFIRMED and r.approved_by is not None
        ]

    def archived_ids(self, ids):
        return {i for i in ids if i in self.archive}

    def copy_to_archive(self, reservations, archived_at):
        if self.fail_copy:
            raise PersistenceError("archive write failed")
        for r in reservations:
            assert r.id not in self.archive
            self.archive[r.id] = (r, archived_at)
        return len(reservations)

    def delete_reservations(self, ids):
        if self.fail_delete:
            raise PersistenceError("delete failed")
        deleted = 0
        for i in ids:
            if self.live.pop(i, None) is not None:
                deleted += 1
        return deleted


def test_eligibility_threshold():
    assert is_archive_eligible(confirmed(1, updated_days_ago=20), now=NOW)
    assert not is_archive_eligible(confirmed(2, updated_days_ago=10), now=NOW)
    assert not is_archive_eligible(confirmed(3, updated_days_ago=20, approved_by=None), now=NOW)
    # Without updated_at the creation time decides.
    assert is_archive_eligible(confirmed(4, updated_days_ago=None, created_days_ago=15), now=NOW)
    assert not is_archive_eligible(confirmed(5, updated_days_ago=None, created_days_ago=3), now=NOW)


def test_pending_and_rejected_are_never_eligible():
    old = NOW - timedelta(days=40)
    for status in (ReservationStatus.PENDING, ReservationStatus.REJECTED):
        r = ReservationSnapshot(id=1, room_id=1, start=NOW, end=NOW, status=status, approved_by=20, updated_at=old)
        assert not is_archive_eligible(r, now=NOW)


def test_sweep_archives_old_and_keeps_recent_then_is_idempotent():
    store = FakeArchiveStore([confirmed(1, updated_days_ago=20), confirmed(2, updated_days_ago=10)])

    first = run_sweep(store, now=NOW)
    assert (first.archived_count, first.deleted_count) == (1, 1)
    assert first.archived_ids == [1]
    assert not first.partial
    assert set(store.live) == {2}
    assert store.archive[1][1] == NOW

    second = run_sweep(store, now=NOW)
    assert (second.archived_count, second.deleted_count) == (0, 0)
    assert set(store.archive) == {1}


def test_failed_copy_deletes_nothing():
    store = FakeArchiveStore([confirmed(1, updated_days_ago=20)], fail_copy=True)

    with pytest.raises(PersistenceError):
        run_sweep(store, now=NOW)

    assert set(store.live) == {1}
    assert store.archive == {}


def test_failed_delete_reports_partial_success_and_retry_finishes():
    store = FakeArchiveStore([confirmed(1, updated_days_ago=20)], fail_delete=True)

    result = run_sweep(store, now=NOW)
    assert result.partial
    assert (result.archived_count, result.deleted_count) == (1, 0)
    assert result.warning.archived_ids == [1]
    assert set(store.live) == {1}

    store.fail_delete = False
    retry = run_sweep(store, now=NOW)
    assert retry.archived_count == 0
    assert retry.deleted_count == 1
    assert store.live == {}
    assert set(store.archive) == {1}


def test_custom_retention():
    store = FakeArchiveStore([confirmed(1, updated_days_ago=5)])
    result = run_sweep(store, now=NOW, retention=timedelta(days=3))
    assert result.archived_count == 1
