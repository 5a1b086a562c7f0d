"""JWT caller identity for the credential hub.

Accounts live in an external service; this module only mints and verifies
the access tokens that carry the caller's user id in ``sub``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from credhub.config import Settings, get_settings

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=True)


def create_access_token(
    data: dict,
    expires_delta: timedelta | None = None,
    *,
    settings: Settings | None = None,
) -> str:
    """Create a JWT access token.

    Args:
        data: Claims to encode in the token (must include ``sub`` for subject).
        expires_delta: Custom expiration timedelta. Falls back to config default.
        settings: Optional settings override (useful for testing).

    Returns:
        Encoded JWT string.
    """
    if settings is None:
        settings = get_settings()

    to_encode = data.copy()
    expire = datetime.now(UTC) + (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})

    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(
    token: str,
    *,
    settings: Settings | None = None,
) -> dict:
    """Decode and verify a JWT token.

    Raises:
        JWTError: If the token is invalid, expired, or tampered with.
    """
    if settings is None:
        settings = get_settings()

    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


async def get_current_user(
    token: str = Depends(oauth2_scheme),
) -> dict:
    """FastAPI dependency that extracts the caller from a Bearer token.

    Returns a dict with ``user_id`` (the token subject) and ``username``
    when the issuer included one.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = verify_token(token)
    except JWTError:
        raise credentials_exception from None

    if payload.get("type") != "access":
        raise credentials_exception

    subject = payload.get("sub")
    if subject is None:
        raise credentials_exception

    return {
        "user_id": str(subject),
        "username": payload.get("username"),
    }
