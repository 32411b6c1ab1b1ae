# reservations_service/rooms_client.py
import logging
import os
from typing import Any, Dict, List

import httpx
from fastapi import HTTPException, status

from common.auth import make_service_account_token
from common.circuit_breaker import CircuitBreaker
from scheduling.errors import ValidationError
from scheduling.restrictions import RestrictionPeriod

logger = logging.getLogger(__name__)

ROOMS_SERVICE_URL = os.getenv(
    "ROOMS_SERVICE_URL",
    "http://rooms_service:8001",  # Docker internal URL
)

SERVICE_ACCOUNT_USERNAME = "reservations_service"

rooms_circuit_breaker = CircuitBreaker("rooms")


def fetch_booking_context(room_id: int) -> Dict[str, Any]:
    """
    Ask the Rooms service whether a room exists and which restrictions apply.

    Returns
    -------
    dict
        ``{"room_id", "name", "is_available", "restrictions": [...]}`` where
        each restriction is a serialized :class:`RestrictionPeriod`.

    Raises
    ------
    HTTPException
        404 if the room does not exist, 503 while the circuit is open,
        502 if the Rooms service cannot be reached or answers with an error.
    """
    if not rooms_circuit_breaker.allow_request():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rooms service temporarily unavailable (circuit open)",
        )

    headers = {"Authorization": f"Bearer {make_service_account_token(SERVICE_ACCOUNT_USERNAME)}"}
    try:
        resp = httpx.get(
            f"{ROOMS_SERVICE_URL}/api/v1/rooms/{room_id}/booking-context",
            headers=headers,
            timeout=5.0,
        )
    except httpx.RequestError as exc:
        rooms_circuit_breaker.record_failure()
        logger.warning("Rooms service unreachable for room %s: %s", room_id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to contact rooms service",
        )

    if resp.status_code == 404:
        rooms_circuit_breaker.record_success()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")

    if resp.status_code != 200:
        rooms_circuit_breaker.record_failure()
        logger.warning("Rooms service answered %s for room %s", resp.status_code, room_id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Rooms service returned an error when loading the room",
        )

    rooms_circuit_breaker.record_success()
    return resp.json()


def restriction_periods(context: Dict[str, Any]) -> List[RestrictionPeriod]:
    """Decode the active restriction periods of a booking context."""
    periods = []
    for item in context.get("restrictions", []):
        try:
            periods.append(RestrictionPeriod.from_dict(item))
        except (KeyError, ValueError, ValidationError) as exc:
            logger.error("Malformed restriction %r for room %s: %s", item, context.get("room_id"), exc)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Rooms service returned an unreadable restriction",
            )
    return periods


def ensure_room_open(context: Dict[str, Any]) -> None:
    """
    Refuse bookings for a room that staff closed without a restriction.

    A restricted room is also flagged unavailable; its free slots stay
    bookable and the restriction periods decide the rest.
    """
    if not context.get("is_available", True) and not context.get("restrictions"):
        raise ValidationError("This room is closed for reservations")
