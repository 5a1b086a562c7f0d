"""Twitch application config endpoints.

Provides:
- ``GET    /twitch-configs``        -- List the caller's configs
- ``POST   /twitch-configs``        -- Register a client id / secret pair
- ``GET    /twitch-configs/{id}``   -- Fetch one config with its secret
- ``PUT    /twitch-configs/{id}``   -- Update a config
- ``DELETE /twitch-configs/{id}``   -- Delete an unused config
- ``POST   /twitch-configs/validate`` -- Test a client id / secret pair at Twitch

All endpoints require JWT authentication.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from credhub.api.deps import HANDLED_ERRORS, get_twitch_client, to_http_exception
from credhub.database import get_db
from credhub.services.auth_service import get_current_user
from credhub.services.config_service import ConfigService, ConfigView
from credhub.twitch_gateway.client import TwitchAuthClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/twitch-configs", tags=["twitch-configs"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class ConfigCreateRequest(BaseModel):
    client_id: str = Field(..., min_length=1, max_length=255)
    client_secret: str = Field(..., min_length=1)
    name: str | None = Field(None, max_length=255)


class ConfigUpdateRequest(BaseModel):
    client_id: str | None = Field(None, min_length=1, max_length=255)
    client_secret: str | None = Field(None, min_length=1)
    name: str | None = Field(None, max_length=255)


class ConfigResponse(BaseModel):
    id: str
    client_id: str
    client_secret: str
    name: str | None = None
    tokens_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ConfigListResponse(BaseModel):
    items: list[ConfigResponse]
    total: int


class CredentialCheckRequest(BaseModel):
    client_id: str = Field(..., min_length=1, max_length=255)
    client_secret: str = Field(..., min_length=1)


class CredentialCheckResponse(BaseModel):
    valid: bool
    message: str
    expires_in: int | None = None
    error: str | None = None


def _to_response(view: ConfigView) -> ConfigResponse:
    config = view.record
    return ConfigResponse(
        id=config.id,
        client_id=config.client_id,
        client_secret=view.client_secret,
        name=config.name,
        tokens_count=view.tokens_count,
        created_at=config.created_at,
        updated_at=config.updated_at,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=ConfigListResponse)
async def list_configs(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConfigListResponse:
    try:
        views = await ConfigService(db).list_configs(current_user["user_id"])
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    items = [_to_response(view) for view in views]
    return ConfigListResponse(items=items, total=len(items))


@router.post("", response_model=ConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_config(
    body: ConfigCreateRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConfigResponse:
    try:
        view = await ConfigService(db).create_config(
            current_user["user_id"],
            body.client_id.strip(),
            body.client_secret,
            name=body.name,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _to_response(view)


@router.get("/{config_id}", response_model=ConfigResponse)
async def get_config(
    config_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConfigResponse:
    try:
        view = await ConfigService(db).get_config(current_user["user_id"], config_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _to_response(view)


@router.put("/{config_id}", response_model=ConfigResponse)
async def update_config(
    config_id: str,
    body: ConfigUpdateRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConfigResponse:
    try:
        view = await ConfigService(db).update_config(
            current_user["user_id"],
            config_id,
            client_id=body.client_id.strip() if body.client_id else None,
            client_secret=body.client_secret,
            name=body.name,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _to_response(view)


@router.delete("/{config_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_config(
    config_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await ConfigService(db).delete_config(current_user["user_id"], config_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc


@router.post("/validate", response_model=CredentialCheckResponse)
async def validate_credentials(
    body: CredentialCheckRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    twitch: TwitchAuthClient = Depends(get_twitch_client),
) -> CredentialCheckResponse:
    """Rejected credentials come back as ``valid: false`` with status 200."""
    try:
        check = await ConfigService(db, twitch=twitch).validate_credentials(
            body.client_id.strip(),
            body.client_secret,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    return CredentialCheckResponse(
        valid=check.valid,
        message=check.message,
        expires_in=check.expires_in,
        error=check.error,
    )
