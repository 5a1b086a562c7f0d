"""Shared FastAPI dependencies and error translation for the API routers."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from fastapi import HTTPException, status
from sqlalchemy.orm.exc import StaleDataError

from credhub.services.access_control import ForbiddenError, NotFoundError, ServiceError
from credhub.services.config_service import ConfigConflictError, ConfigInUseError
from credhub.services.secret_codec import MisconfiguredSecretError, TamperOrCorruptionError
from credhub.services.token_service import NotRefreshableError
from credhub.services.webhook_service import NoUsableCredentialError
from credhub.twitch_gateway.client import (
    InvalidCredentialsError,
    InvalidGrantError,
    InvalidTokenError,
    ProviderRejectedError,
    TwitchApiError,
    TwitchAuthClient,
)
from credhub.twitch_gateway.eventsub import EventSubClient

logger = logging.getLogger(__name__)

# Everything an endpoint translates into an HTTP error
HANDLED_ERRORS = (
    ServiceError,
    TwitchApiError,
    MisconfiguredSecretError,
    TamperOrCorruptionError,
    StaleDataError,
)

_SERVICE_STATUS: dict[type[ServiceError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    NotRefreshableError: status.HTTP_400_BAD_REQUEST,
    NoUsableCredentialError: status.HTTP_404_NOT_FOUND,
    ConfigConflictError: status.HTTP_409_CONFLICT,
    ConfigInUseError: status.HTTP_409_CONFLICT,
}

_TWITCH_STATUS: dict[type[TwitchApiError], int] = {
    InvalidCredentialsError: status.HTTP_400_BAD_REQUEST,
    InvalidGrantError: status.HTTP_400_BAD_REQUEST,
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


async def get_twitch_client() -> AsyncGenerator[TwitchAuthClient, None]:
    client = TwitchAuthClient()
    try:
        yield client
    finally:
        await client.aclose()


async def get_eventsub_client() -> AsyncGenerator[EventSubClient, None]:
    client = EventSubClient()
    try:
        yield client
    finally:
        await client.aclose()


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def to_http_exception(exc: Exception) -> HTTPException:
    """Map a service, provider or storage failure to an ``HTTPException``."""
    if isinstance(exc, ServiceError):
        for error_type, code in _SERVICE_STATUS.items():
            if isinstance(exc, error_type):
                return HTTPException(status_code=code, detail=exc.message)
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)

    if isinstance(exc, TwitchApiError):
        # 401 stays reserved for the caller's own session
        if isinstance(exc, InvalidTokenError):
            return HTTPException(
                status_code=status.HTTP_424_FAILED_DEPENDENCY,
                detail=f"Twitch rejected the stored access token: {exc.message}",
            )
        for error_type, code in _TWITCH_STATUS.items():
            if isinstance(exc, error_type):
                return HTTPException(status_code=code, detail=exc.message)
        if isinstance(exc, ProviderRejectedError) and exc.status_code:
            code = exc.status_code
            if code == status.HTTP_401_UNAUTHORIZED:
                code = status.HTTP_424_FAILED_DEPENDENCY
            return HTTPException(status_code=code, detail=exc.message)
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)

    if isinstance(exc, StaleDataError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The token was modified by another request. Please retry.",
        )

    if isinstance(exc, TamperOrCorruptionError):
        logger.error("Stored secret could not be decrypted: %s", exc)
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stored secret could not be decrypted",
        )

    if isinstance(exc, MisconfiguredSecretError):
        logger.error("Encryption key is not configured")
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server encryption is not configured",
        )

    raise exc
