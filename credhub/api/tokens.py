"""Saved token endpoints (app tokens, user tokens via device / code flow).

Provides:
- ``GET    /tokens``                    -- List saved tokens (no secrets)
- ``GET    /tokens/{id}``               -- Fetch one token with secrets
- ``DELETE /tokens/{id}``               -- Delete (optionally revoke) a token
- ``POST   /tokens/app``                -- Client-credentials app token
- ``POST   /tokens/user/device/start``  -- Begin a device flow
- ``POST   /tokens/user/device/poll``   -- Single poll of a device flow
- ``POST   /tokens/user/authorize``     -- Authorization URL for the code flow
- ``POST   /tokens/user/callback``      -- Exchange an authorization code
- ``POST   /tokens/{id}/refresh``       -- Refresh a user token in place
- ``POST   /tokens/{id}/validate``      -- Ask Twitch whether a token is valid

All endpoints require JWT authentication.  Device polling is stateless: the
client repeats ``poll`` with the same ``device_code`` at the returned
interval until the status is no longer ``pending``.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from credhub.api.deps import HANDLED_ERRORS, get_twitch_client, to_http_exception
from credhub.constants import DeviceFlowStatus
from credhub.database import get_db
from credhub.models import SavedToken
from credhub.services.auth_service import get_current_user
from credhub.services.token_service import IssuedToken, TokenService
from credhub.twitch_gateway.client import TwitchAuthClient
from credhub.utils.datetime_utils import is_expired

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens", tags=["tokens"])

_POLL_STATUS_CODES = {
    DeviceFlowStatus.PENDING: status.HTTP_200_OK,
    DeviceFlowStatus.SUCCESS: status.HTTP_201_CREATED,
    DeviceFlowStatus.DENIED: status.HTTP_403_FORBIDDEN,
    DeviceFlowStatus.EXPIRED: status.HTTP_400_BAD_REQUEST,
}


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class TwitchConfigRef(BaseModel):
    id: str
    client_id: str
    name: str | None = None


class TokenResponse(BaseModel):
    id: str
    token_type: str
    scopes: list[str] = []
    channel_login: str | None = None
    channel_id: str | None = None
    name: str | None = None
    expires_at: datetime | None = None
    is_expired: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    twitch_config: TwitchConfigRef


class TokenSecretResponse(TokenResponse):
    access_token: str
    refresh_token: str | None = None


class TokenListResponse(BaseModel):
    items: list[TokenResponse]
    total: int


class AppTokenRequest(BaseModel):
    config_id: str
    name: str | None = Field(None, max_length=255)


class DeviceStartRequest(BaseModel):
    config_id: str
    scopes: list[str] = Field(..., min_length=1)


class DeviceStartResponse(BaseModel):
    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int


class DevicePollRequest(BaseModel):
    config_id: str
    device_code: str
    name: str | None = Field(None, max_length=255)


class DevicePollResponse(BaseModel):
    status: DeviceFlowStatus
    message: str | None = None
    token: TokenSecretResponse | None = None


class AuthorizeRequest(BaseModel):
    config_id: str
    scopes: list[str] = Field(..., min_length=1)
    state: str | None = None
    redirect_uri: str | None = None


class AuthorizeResponse(BaseModel):
    authorization_url: str
    redirect_uri: str
    state: str


class CallbackRequest(BaseModel):
    config_id: str
    code: str
    state: str | None = None
    name: str | None = Field(None, max_length=255)
    redirect_uri: str | None = None


class ValidateResponse(BaseModel):
    valid: bool
    message: str | None = None
    client_id: str | None = None
    login: str | None = None
    user_id: str | None = None
    scopes: list[str] = []
    expires_in: int | None = None


def _to_response(token: SavedToken) -> TokenResponse:
    config = token.twitch_config
    return TokenResponse(
        id=token.id,
        token_type=token.token_type,
        scopes=list(token.scopes or []),
        channel_login=token.channel_login,
        channel_id=token.channel_id,
        name=token.name,
        expires_at=token.expires_at,
        is_expired=is_expired(token.expires_at),
        created_at=token.created_at,
        updated_at=token.updated_at,
        twitch_config=TwitchConfigRef(id=config.id, client_id=config.client_id, name=config.name),
    )


def _to_secret_response(token: SavedToken, access_token: str, refresh_token: str | None) -> TokenSecretResponse:
    return TokenSecretResponse(
        **_to_response(token).model_dump(),
        access_token=access_token,
        refresh_token=refresh_token,
    )


def _issued(issued: IssuedToken) -> TokenSecretResponse:
    return _to_secret_response(issued.record, issued.access_token, issued.refresh_token)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_token_service(
    db: AsyncSession = Depends(get_db),
    twitch: TwitchAuthClient = Depends(get_twitch_client),
) -> TokenService:
    return TokenService(db, twitch)


# ---------------------------------------------------------------------------
# Listing / single token
# ---------------------------------------------------------------------------


@router.get("", response_model=TokenListResponse)
async def list_tokens(
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> TokenListResponse:
    tokens = await service.list_tokens(current_user["user_id"])
    items = [_to_response(token) for token in tokens]
    return TokenListResponse(items=items, total=len(items))


@router.post("/app", response_model=TokenSecretResponse, status_code=status.HTTP_201_CREATED)
async def generate_app_token(
    body: AppTokenRequest,
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> TokenSecretResponse:
    try:
        issued = await service.generate_app_token(current_user["user_id"], body.config_id, body.name)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _issued(issued)


# ---------------------------------------------------------------------------
# Device flow
# ---------------------------------------------------------------------------


@router.post("/user/device/start", response_model=DeviceStartResponse)
async def start_device_flow(
    body: DeviceStartRequest,
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> DeviceStartResponse:
    try:
        grant = await service.start_device_flow(current_user["user_id"], body.config_id, body.scopes)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    return DeviceStartResponse(
        device_code=grant.device_code,
        user_code=grant.user_code,
        verification_uri=grant.verification_uri,
        expires_in=grant.expires_in,
        interval=grant.interval,
    )


@router.post("/user/device/poll", response_model=DevicePollResponse)
async def poll_device_flow(
    body: DevicePollRequest,
    response: Response,
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> DevicePollResponse:
    try:
        result = await service.poll_device_flow(
            current_user["user_id"],
            body.config_id,
            body.device_code,
            body.name,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    response.status_code = _POLL_STATUS_CODES[result.status]
    return DevicePollResponse(
        status=result.status,
        message=result.message,
        token=_issued(result.token) if result.token else None,
    )


# ---------------------------------------------------------------------------
# Authorization code flow
# ---------------------------------------------------------------------------


@router.post("/user/authorize", response_model=AuthorizeResponse)
async def start_authorization_flow(
    body: AuthorizeRequest,
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> AuthorizeResponse:
    state = body.state or TokenService.generate_state()
    try:
        result = await service.start_authorization_flow(
            current_user["user_id"],
            body.config_id,
            body.scopes,
            state,
            redirect_uri=body.redirect_uri,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return AuthorizeResponse(**result, state=state)


@router.post("/user/callback", response_model=TokenSecretResponse, status_code=status.HTTP_201_CREATED)
async def handle_authorization_callback(
    body: CallbackRequest,
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> TokenSecretResponse:
    try:
        issued = await service.complete_authorization_flow(
            current_user["user_id"],
            body.config_id,
            body.code,
            body.name,
            redirect_uri=body.redirect_uri,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _issued(issued)


# ---------------------------------------------------------------------------
# Per-token operations
# ---------------------------------------------------------------------------


@router.get("/{token_id}", response_model=TokenSecretResponse)
async def get_token(
    token_id: str,
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> TokenSecretResponse:
    try:
        revealed = await service.get_token(current_user["user_id"], token_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _to_secret_response(revealed.record, revealed.access_token, revealed.refresh_token)


@router.delete("/{token_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_token(
    token_id: str,
    revoke: bool = Query(False, description="Revoke the token at Twitch before deleting"),
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> None:
    try:
        await service.delete_token(current_user["user_id"], token_id, revoke=revoke)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc


@router.post("/{token_id}/refresh", response_model=TokenSecretResponse)
async def refresh_token(
    token_id: str,
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> TokenSecretResponse:
    try:
        issued = await service.refresh_token(current_user["user_id"], token_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _issued(issued)


@router.api_route("/{token_id}/validate", methods=["GET", "POST"], response_model=ValidateResponse)
async def validate_token(
    token_id: str,
    current_user: dict = Depends(get_current_user),
    service: TokenService = Depends(_get_token_service),
) -> ValidateResponse:
    try:
        report = await service.validate_token(current_user["user_id"], token_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    if not report.valid or report.validation is None:
        return ValidateResponse(valid=False, message=report.message)

    validation = report.validation
    return ValidateResponse(
        valid=True,
        client_id=validation.client_id,
        login=validation.login,
        user_id=validation.user_id,
        scopes=validation.scopes,
        expires_in=validation.expires_in,
    )
