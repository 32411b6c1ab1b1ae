# scheduling/archival.py
"""
Archive sweep for aged, approved reservations.

The sweep talks to an archive store exposing:

- ``confirmed_approved() -> list[ReservationSnapshot]``
- ``archived_ids(ids) -> set[int]``
- ``copy_to_archive(reservations, archived_at) -> int``
- ``delete_reservations(ids) -> int``

Copies are written before originals are removed. A failed copy removes
nothing; a failed delete leaves archived duplicates behind. The next run
does not copy them again and only removes the leftover originals.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .clock import civil_now, to_civil
from .errors import ArchivalPartialFailure, PersistenceError
from .models import ReservationSnapshot, ReservationStatus

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=14)


@dataclass
class ArchivalResult:
    archived_count: int = 0
    deleted_count: int = 0
    archived_ids: List[int] = field(default_factory=list)
    warning: Optional[ArchivalPartialFailure] = None

    @property
    def partial(self) -> bool:
        return self.warning is not None


def reference_time(reservation: ReservationSnapshot) -> Optional[datetime]:
    """Last status change of a reservation, falling back to its creation time."""
    return reservation.updated_at or reservation.created_at


def is_archive_eligible(
    reservation: ReservationSnapshot,
    now: Optional[datetime] = None,
    retention: timedelta = DEFAULT_RETENTION,
) -> bool:
    """
    True for confirmed, approved reservations last touched before the retention window.
    """
    if reservation.status != ReservationStatus.CONFIRMED or reservation.approved_by is None:
        return False
    touched = reference_time(reservation)
    if touched is None:
        return False
    return to_civil(touched) < civil_now(now) - retention


def select_for_archive(
    reservations: Iterable[ReservationSnapshot],
    already_archived: Iterable[int],
    now: Optional[datetime] = None,
    retention: timedelta = DEFAULT_RETENTION,
) -> List[ReservationSnapshot]:
    skip = set(already_archived)
    return [
        r for r in reservations
        if r.id not in skip and is_archive_eligible(r, now=now, retention=retention)
    ]


def run_sweep(store, now: Optional[datetime] = None, retention: timedelta = DEFAULT_RETENTION) -> ArchivalResult:
    """
    Move aged confirmed reservations into the archive.

    Parameters
    ----------
    store
        Archive store (see module docstring).
    now : Optional[datetime]
        Reference instant; defaults to the current civil time.
    retention : timedelta
        Age after which an approved reservation is archived.

    Returns
    -------
    ArchivalResult
        Counts of archived and deleted reservations. When the delete step
        fails after a successful copy, ``deleted_count`` is 0 and
        ``warning`` carries an :class:`ArchivalPartialFailure`.

    Raises
    ------
    PersistenceError
        If reading candidates or writing the copies fails. Nothing has
        been deleted in that case.
    """
    archived_at = civil_now(now)

    candidates = [
        r for r in store.confirmed_approved()
        if is_archive_eligible(r, now=archived_at, retention=retention)
    ]
    if not candidates:
        logger.info("Archive sweep: nothing eligible")
        return ArchivalResult()

    already = set(store.archived_ids([r.id for r in candidates]))
    to_archive = select_for_archive(candidates, already, now=archived_at, retention=retention)
    # Originals left behind by an earlier sweep whose delete step failed.
    leftovers = [r.id for r in candidates if r.id in already]

    ids = [r.id for r in to_archive]
    archived_count = store.copy_to_archive(to_archive, archived_at) if to_archive else 0

    try:
        deleted_count = store.delete_reservations(ids + leftovers)
    except PersistenceError as exc:
        warning = ArchivalPartialFailure(ids, cause=exc)
        logger.warning("Archive sweep: %s (%s)", warning, exc)
        return ArchivalResult(archived_count=archived_count, deleted_count=0, archived_ids=ids, warning=warning)

    logger.info("Archive sweep: archived %d, deleted %d", archived_count, deleted_count)
    return ArchivalResult(archived_count=archived_count, deleted_count=deleted_count, archived_ids=ids)
