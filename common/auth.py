# common/auth.py
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from scheduling.models import Actor, Role

# Shared by every service; tokens are issued by the identity provider.
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "special-rooms-development-secret-key")
ALGORITHM = "HS256"

SERVICE_ACCOUNT_USER_ID = 0

security = HTTPBearer()


async def get_current_user_claims(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Dict[str, Any]:
    """
    Decode a JWT bearer token and extract user claims.

    Parameters
    ----------
    credentials : HTTPAuthorizationCredentials
        Authorization header parsed by FastAPI's HTTPBearer.

    Returns
    -------
    Dict[str, Any]
        A dictionary with:
        - 'username' : str
        - 'user_id' : int
        - 'role' : str (student, teacher, admin or service_account)

    Raises
    ------
    HTTPException
        401 if the token is invalid, expired, or misses a required claim.
    """
    token = credentials.credentials

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception

    username = payload.get("sub")
    role = payload.get("role")
    user_id = payload.get("user_id")
    if username is None or user_id is None or role not in {r.value for r in Role}:
        raise credentials_exception

    return {"username": username, "user_id": int(user_id), "role": role}


def require_roles(*allowed_roles: str) -> Callable:
    """
    Build a dependency that enforces a set of allowed roles.

    Parameters
    ----------
    allowed_roles : str
        One or more role names that are permitted to access a route.

    Returns
    -------
    Callable
        A FastAPI dependency returning the claims, or raising HTTP 403.
    """
    allowed = {getattr(r, "value", r) for r in allowed_roles}

    async def dependency(claims: Dict[str, Any] = Depends(get_current_user_claims)) -> Dict[str, Any]:
        if claims["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return claims

    return dependency


def actor_from_claims(claims: Dict[str, Any]) -> Actor:
    return Actor(id=claims["user_id"], role=Role(claims["role"]))


def make_service_account_token(service_name: str) -> str:
    """Short-lived token used for service-to-service calls."""
    payload = {
        "sub": service_name,
        "role": Role.SERVICE_ACCOUNT.value,
        "user_id": SERVICE_ACCOUNT_USER_ID,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)
