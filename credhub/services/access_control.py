"""Ownership guards for configs, tokens and webhooks.

Existence is checked before ownership: a missing row is always
:class:`NotFoundError`, and :class:`ForbiddenError` only ever means the row
exists but belongs to somebody else.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from credhub.models import SavedToken, TwitchConfig, Webhook
from credhub.services import records


class ServiceError(Exception):
    """Base class for business-rule failures raised by the service layer."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(ServiceError):
    pass


class ForbiddenError(ServiceError):
    pass


def _ensure_owner(resource: TwitchConfig | SavedToken | Webhook, owner_id: str, label: str) -> None:
    if resource.owner_id != owner_id:
        raise ForbiddenError(f"You do not have permission to access this {label}")


async def get_owned_config(db: AsyncSession, owner_id: str, config_id: str) -> TwitchConfig:
    config = await records.get_config(db, config_id)
    if config is None:
        raise NotFoundError("Twitch configuration not found")
    _ensure_owner(config, owner_id, "configuration")
    return config


async def get_owned_token(db: AsyncSession, owner_id: str, token_id: str) -> SavedToken:
    token = await records.get_token(db, token_id)
    if token is None:
        raise NotFoundError("Token not found")
    _ensure_owner(token, owner_id, "token")
    return token


async def get_owned_webhook(db: AsyncSession, owner_id: str, webhook_id: str) -> Webhook:
    webhook = await records.get_webhook(db, webhook_id)
    if webhook is None:
        raise NotFoundError("Webhook not found")
    _ensure_owner(webhook, owner_id, "webhook")
    return webhook
