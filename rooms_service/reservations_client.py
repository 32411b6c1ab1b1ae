# rooms_service/reservations_client.py
import logging
import os

import httpx
from fastapi import HTTPException, status

from common.auth import make_service_account_token
from common.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

RESERVATIONS_SERVICE_URL = os.getenv(
    "RESERVATIONS_SERVICE_URL",
    "http://reservations_service:8002",  # Docker internal URL
)

SERVICE_ACCOUNT_USERNAME = "rooms_service"

reservations_circuit_breaker = CircuitBreaker("reservations")


def count_room_reservations(room_id: int) -> int:
    """
    Number of live reservations the Reservations service holds for a room.

    Raises
    ------
    HTTPException
        503 while the circuit is open, 502 on transport errors or error
        responses.
    """
    if not reservations_circuit_breaker.allow_request():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reservations service temporarily unavailable (circuit open)",
        )

    headers = {"Authorization": f"Bearer {make_service_account_token(SERVICE_ACCOUNT_USERNAME)}"}
    try:
        resp = httpx.get(
            f"{RESERVATIONS_SERVICE_URL}/api/v1/reservations/count",
            params={"room_id": room_id},
            headers=headers,
            timeout=5.0,
        )
    except httpx.RequestError as exc:
        reservations_circuit_breaker.record_failure()
        logger.warning("Reservations service unreachable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to contact reservations service",
        )

    if resp.status_code != 200:
        reservations_circuit_breaker.record_failure()
        logger.warning("Reservations service answered %s for room %s", resp.status_code, room_id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Reservations service returned an error when counting reservations",
        )

    reservations_circuit_breaker.record_success()
    return int(resp.json()["count"])
