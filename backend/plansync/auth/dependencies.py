"""FastAPI authentication dependencies for route protection."""

import hmac
import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from plansync.auth.jwt import decode_token
from plansync.config import settings

# Strict bearer: raises 403 automatically if no token provided
_bearer_scheme = HTTPBearer()

# Optional bearer: returns None so the cron check can produce its own 401
_bearer_scheme_optional = HTTPBearer(auto_error=False)


def _decode_access_token(credentials: HTTPAuthorizationCredentials) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise credentials_exception from None

    # Only accept access tokens
    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.get("sub") is None:
        raise credentials_exception

    return payload


async def get_current_account_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> uuid.UUID:
    """Return the account UUID from a valid Bearer token.

    Raises:
        HTTPException 401: If the token is invalid, expired, wrong type, or has no account.
    """
    payload = _decode_access_token(credentials)
    try:
        return uuid.UUID(payload["sub"])
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None


async def require_admin(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Return the admin's ID (used as the audit actor) if the token has the admin role.

    Raises:
        HTTPException 401: Invalid token.
        HTTPException 403: Valid token without the admin role.
    """
    payload = _decode_access_token(credentials)
    if payload.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return str(payload["sub"])


async def verify_cron_secret(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme_optional),
) -> None:
    """Allow scheduled jobs carrying ``Bearer <CRON_SECRET>``.

    Without a configured secret, only localhost calls in development are allowed.
    """
    if not settings.cron_secret:
        host = request.headers.get("host", "")
        if settings.environment == "development" and host.split(":")[0] in ("localhost", "127.0.0.1"):
            return
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    if credentials is None or not hmac.compare_digest(
        credentials.credentials, settings.cron_secret
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
