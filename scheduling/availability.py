# scheduling/availability.py
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import FrozenSet, Iterable, List, Optional

from .clock import civil_datetime, civil_now, to_civil
from .models import ACTIVE_STATUSES, ReservationSnapshot
from .restrictions import RestrictionPeriod
from .timeslots import SLOT_BOUNDARIES, START_SLOTS, covered_slots, is_valid_end, is_valid_start


@dataclass(frozen=True)
class DayAvailability:
    """
    Slot occupancy of one room on one civil date.

    `booked`, `restricted` and `past` are disjoint. A slot that is both
    booked and restricted is reported as booked; a slot that is restricted
    and already elapsed is reported as restricted.

    Instances describe a single snapshot and must be rebuilt whenever a
    reservation or restriction of the room changes.
    """
    room_id: int
    day: date
    booked: FrozenSet[time]
    restricted: FrozenSet[time]
    past: FrozenSet[time]

    @property
    def blocked(self) -> FrozenSet[time]:
        return self.booked | self.restricted | self.past

    def is_offerable_start(self, slot: time) -> bool:
        """True if a booking may start at `slot` on this date."""
        return is_valid_start(slot) and slot not in self.blocked

    def is_offerable_end(self, start: time, end: time) -> bool:
        """
        True if a booking starting at `start` may end at `end`.

        Every slot in ``[start, end)`` must be free, and `end` must obey the
        end-boundary rules.
        """
        if not self.is_offerable_start(start) or not is_valid_end(end, start):
            return False
        return all(slot not in self.blocked for slot in START_SLOTS if start <= slot < end)

    def offerable_starts(self) -> List[time]:
        return [slot for slot in START_SLOTS if self.is_offerable_start(slot)]

    def offerable_ends(self, start: time) -> List[time]:
        return [slot for slot in SLOT_BOUNDARIES if self.is_offerable_end(start, slot)]

    def disabled_starts(self) -> List[time]:
        return [slot for slot in START_SLOTS if not self.is_offerable_start(slot)]


def booked_slots(day: date, reservations: Iterable[ReservationSnapshot]) -> FrozenSet[time]:
    """Slots covered by pending or confirmed reservations starting on `day`."""
    booked = set()
    for reservation in reservations:
        if reservation.status not in ACTIVE_STATUSES:
            continue
        if to_civil(reservation.start).date() != day:
            continue
        booked.update(covered_slots(reservation.start, reservation.end))
    return frozenset(booked)


def restricted_slots(day: date, restrictions: Iterable[RestrictionPeriod]) -> FrozenSet[time]:
    """Slots blocked on `day` by any of the active restriction periods."""
    restricted = set()
    for period in restrictions:
        restricted.update(period.slots_for(day))
    return frozenset(restricted)


def elapsed_slots(day: date, now: Optional[datetime] = None) -> FrozenSet[time]:
    """
    Slots whose start has already passed.

    Only today's slots can be elapsed; earlier dates are rejected by the
    booking window instead.
    """
    current = civil_now(now)
    if current.date() != day:
        return frozenset()
    return frozenset(slot for slot in START_SLOTS if civil_datetime(day, slot) < current)


def build_availability(
    room_id: int,
    day: date,
    reservations: Iterable[ReservationSnapshot],
    restrictions: Iterable[RestrictionPeriod],
    now: Optional[datetime] = None,
) -> DayAvailability:
    """
    Compute the availability index of a room for a civil date.

    Parameters
    ----------
    room_id : int
        Room being queried.
    day : date
        Civil calendar date.
    reservations : Iterable[ReservationSnapshot]
        Reservations of the room on that date; inactive ones are ignored.
    restrictions : Iterable[RestrictionPeriod]
        Periods of the room's active restrictions.
    now : Optional[datetime]
        Reference instant for elapsed slots (defaults to the current time).

    Returns
    -------
    DayAvailability
        Disjoint booked / restricted / past slot sets.
    """
    booked = booked_slots(day, [r for r in reservations if r.room_id == room_id])
    restricted = restricted_slots(day, restrictions) - booked
    past = elapsed_slots(day, now) - booked - restricted
    return DayAvailability(room_id=room_id, day=day, booked=booked, restricted=restricted, past=past)
