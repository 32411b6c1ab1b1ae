import os
import time
from typing import Any, Dict, List

from fastapi import Depends, HTTPException, status

from common.auth import get_current_user_claims

WINDOW_SECONDS = 60
MAX_RESERVATIONS_PER_WINDOW = 20

_user_request_log: Dict[int, List[float]] = {}


def reservation_rate_limiter(claims: Dict[str, Any] = Depends(get_current_user_claims)):
    """
    Rate limit reservation-changing actions per authenticated user.

    Disabled when TESTING=1.
    """
    if os.getenv("TESTING") == "1":
        return

    user_id = claims["user_id"]
    now = time.time()
    window_start = now - WINDOW_SECONDS

    timestamps = _user_request_log.get(user_id, [])
    timestamps = [ts for ts in timestamps if ts >= window_start]

    if len(timestamps) >= MAX_RESERVATIONS_PER_WINDOW:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many reservation requests in a short time",
        )

    timestamps.append(now)
    _user_request_log[user_id] = timestamps
