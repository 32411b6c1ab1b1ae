# scheduling/errors.py
from typing import Optional


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""


class ValidationError(SchedulingError):
    """
    Malformed input or a forbidden action.

    Raised for invalid intervals, missing rejection reasons, illegal status
    transitions and unauthorized roles. Always raised before any mutation.
    """


class RestrictedSlotError(ValidationError):
    """A requested interval touches a slot blocked by an active room restriction."""


class PersistenceError(SchedulingError):
    """
    The storage collaborator failed to read or write.

    Retryable by user action; the core never retries on its own.
    """


PENDING_CONFLICT_MESSAGE = "A decision is still pending on this time slot. Please choose another time."
CONFIRMED_CONFLICT_MESSAGE = "This time slot is already taken. Please choose another time."


class ConflictError(SchedulingError):
    """
    A candidate interval overlaps an active reservation of the same room.

    Attributes
    ----------
    conflicting : ReservationSnapshot
        The existing reservation that blocks the candidate.
    status : ReservationStatus
        Status of the conflicting reservation (pending or confirmed).
    stage : str
        ``"advisory"`` for the pre-submission check, ``"authoritative"``
        for the check performed together with the insert.
    """

    def __init__(self, conflicting, stage: str = "authoritative", message: Optional[str] = None):
        self.conflicting = conflicting
        self.status = conflicting.status
        self.stage = stage
        super().__init__(message or conflict_message(self.status))


def conflict_message(status) -> str:
    if getattr(status, "value", status) == "pending":
        return PENDING_CONFLICT_MESSAGE
    return CONFIRMED_CONFLICT_MESSAGE


class ArchivalPartialFailure(SchedulingError):
    """
    Archive copies were written but the originals could not be deleted.

    Not raised: it is attached to the sweep result as a warning, because a
    retry is safe (already-archived ids are skipped).
    """

    def __init__(self, archived_ids, cause: Optional[BaseException] = None):
        self.archived_ids = list(archived_ids)
        self.cause = cause
        super().__init__(
            f"{len(self.archived_ids)} reservation(s) archived but not removed from the live set"
        )
