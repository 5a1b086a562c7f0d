"""EventSub webhook endpoints.

Provides:
- ``GET    /webhooks``          -- Locally cached subscriptions
- ``POST   /webhooks``          -- Create a subscription at Twitch
- ``DELETE /webhooks/{id}``     -- Delete a subscription
- ``GET    /webhooks/types``    -- Supported EventSub types
- ``GET    /webhooks/remote``   -- Subscriptions as Twitch reports them
- ``POST   /webhooks/sync``     -- Reconcile the local cache with Twitch

All endpoints except ``/types`` require JWT authentication.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from credhub.api.deps import HANDLED_ERRORS, get_eventsub_client, to_http_exception
from credhub.constants import EVENTSUB_TYPES
from credhub.database import get_db
from credhub.models import Webhook
from credhub.services.auth_service import get_current_user
from credhub.services.webhook_service import WebhookService
from credhub.twitch_gateway.eventsub import EventSubClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class WebhookCreateRequest(BaseModel):
    token_id: str
    type: str = Field(..., min_length=1)
    version: str = "1"
    condition: dict = Field(default_factory=dict)
    callback_url: str = Field(..., pattern=r"^https://")


class WebhookResponse(BaseModel):
    id: str
    subscription_id: str
    type: str
    version: str
    condition: dict
    callback_url: str
    status: str
    cost: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class WebhookListResponse(BaseModel):
    items: list[WebhookResponse]
    total: int


class EventSubType(BaseModel):
    type: str
    version: str
    description: str
    condition: dict[str, str]


class RemoteSubscription(BaseModel):
    id: str
    type: str
    version: str
    status: str
    condition: dict
    callback_url: str
    cost: int
    created_at: str | None = None


class RemoteListResponse(BaseModel):
    subscriptions: list[RemoteSubscription]
    total: int
    total_cost: int
    max_total_cost: int


class SyncResponse(BaseModel):
    imported: int
    updated: int
    removed: int
    total: int
    configs_synced: list[str]
    synced_at: datetime


class SyncRequest(BaseModel):
    config_id: str | None = None


def _to_response(webhook: Webhook) -> WebhookResponse:
    return WebhookResponse(
        id=webhook.id,
        subscription_id=webhook.subscription_id,
        type=webhook.type,
        version=webhook.version,
        condition=dict(webhook.condition or {}),
        callback_url=webhook.callback_url,
        status=webhook.status,
        cost=webhook.cost,
        created_at=webhook.created_at,
        updated_at=webhook.updated_at,
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_webhook_service(
    db: AsyncSession = Depends(get_db),
    eventsub: EventSubClient = Depends(get_eventsub_client),
) -> WebhookService:
    return WebhookService(db, eventsub)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/types", response_model=list[EventSubType])
async def list_eventsub_types() -> list[EventSubType]:
    return [EventSubType(**item) for item in EVENTSUB_TYPES]


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(
    current_user: dict = Depends(get_current_user),
    service: WebhookService = Depends(_get_webhook_service),
) -> WebhookListResponse:
    webhooks = await service.list_webhooks(current_user["user_id"])
    items = [_to_response(webhook) for webhook in webhooks]
    return WebhookListResponse(items=items, total=len(items))


@router.get("/remote", response_model=RemoteListResponse)
async def list_remote_webhooks(
    current_user: dict = Depends(get_current_user),
    service: WebhookService = Depends(_get_webhook_service),
) -> RemoteListResponse:
    try:
        listing = await service.list_remote(current_user["user_id"])
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    return RemoteListResponse(
        subscriptions=[
            RemoteSubscription(
                id=sub.id,
                type=sub.type,
                version=sub.version,
                status=sub.status,
                condition=sub.condition,
                callback_url=sub.callback_url,
                cost=sub.cost,
                created_at=sub.created_at,
            )
            for sub in listing.subscriptions
        ],
        total=listing.total,
        total_cost=listing.total_cost,
        max_total_cost=listing.max_total_cost,
    )


@router.post("/sync", response_model=SyncResponse)
async def sync_webhooks(
    body: SyncRequest | None = None,
    current_user: dict = Depends(get_current_user),
    service: WebhookService = Depends(_get_webhook_service),
) -> SyncResponse:
    """Full reconciliation: import new, update known, purge stale."""
    config_id = body.config_id if body else None
    try:
        report = await service.sync_webhooks(current_user["user_id"], config_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    return SyncResponse(
        imported=report.imported,
        updated=report.updated,
        removed=report.removed,
        total=report.total,
        configs_synced=report.configs_synced,
        synced_at=report.synced_at,
    )


@router.post("", response_model=WebhookResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    body: WebhookCreateRequest,
    current_user: dict = Depends(get_current_user),
    service: WebhookService = Depends(_get_webhook_service),
) -> WebhookResponse:
    try:
        webhook = await service.create_webhook(
            current_user["user_id"],
            body.token_id,
            body.type,
            body.condition,
            body.callback_url,
            version=body.version,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _to_response(webhook)


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: str,
    current_user: dict = Depends(get_current_user),
    service: WebhookService = Depends(_get_webhook_service),
) -> None:
    try:
        await service.delete_webhook(current_user["user_id"], webhook_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
