"""Typed reads and writes for Twitch configs, saved tokens and webhooks.

All functions take the caller's ``AsyncSession`` and only ``flush``;
transaction boundaries belong to the caller (see ``credhub.database.get_db``).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from credhub.constants import TokenKind
from credhub.models import SavedToken, TwitchConfig, Webhook

# ---------------------------------------------------------------------------
# Twitch configs
# ---------------------------------------------------------------------------


async def get_config(db: AsyncSession, config_id: str) -> TwitchConfig | None:
    result = await db.execute(select(TwitchConfig).where(TwitchConfig.id == config_id))
    return result.scalar_one_or_none()


async def get_config_by_client_id(db: AsyncSession, owner_id: str, client_id: str) -> TwitchConfig | None:
    result = await db.execute(
        select(TwitchConfig).where(
            TwitchConfig.owner_id == owner_id,
            TwitchConfig.client_id == client_id,
        )
    )
    return result.scalar_one_or_none()


async def list_configs(db: AsyncSession, owner_id: str) -> list[TwitchConfig]:
    result = await db.execute(
        select(TwitchConfig)
        .where(TwitchConfig.owner_id == owner_id)
        .order_by(TwitchConfig.created_at.desc())
    )
    return list(result.scalars().all())


async def count_tokens_by_config(db: AsyncSession, owner_id: str) -> dict[str, int]:
    result = await db.execute(
        select(SavedToken.twitch_config_id, func.count(SavedToken.id))
        .where(SavedToken.owner_id == owner_id)
        .group_by(SavedToken.twitch_config_id)
    )
    return {config_id: count for config_id, count in result.all()}


async def count_tokens_for_config(db: AsyncSession, config_id: str) -> int:
    result = await db.execute(
        select(func.count(SavedToken.id)).where(SavedToken.twitch_config_id == config_id)
    )
    return int(result.scalar_one())


async def create_config(
    db: AsyncSession,
    owner_id: str,
    client_id: str,
    client_secret_encrypted: str,
    name: str | None = None,
) -> TwitchConfig:
    config = TwitchConfig(
        owner_id=owner_id,
        client_id=client_id,
        client_secret_encrypted=client_secret_encrypted,
        name=name,
    )
    db.add(config)
    await db.flush()
    return config


async def update_config(
    db: AsyncSession,
    config: TwitchConfig,
    *,
    client_id: str | None = None,
    client_secret_encrypted: str | None = None,
    name: str | None = None,
) -> TwitchConfig:
    """Apply the given fields; ``None`` leaves a field unchanged."""
    if client_id is not None:
        config.client_id = client_id
    if client_secret_encrypted is not None:
        config.client_secret_encrypted = client_secret_encrypted
    if name is not None:
        config.name = name or None
    await db.flush()
    return config


async def delete_config(db: AsyncSession, config: TwitchConfig) -> None:
    await db.delete(config)
    await db.flush()


# ---------------------------------------------------------------------------
# Saved tokens
# ---------------------------------------------------------------------------


async def create_token(
    db: AsyncSession,
    config: TwitchConfig,
    token_type: TokenKind,
    access_token_encrypted: str,
    *,
    refresh_token_encrypted: str | None = None,
    scopes: list[str] | None = None,
    channel_login: str | None = None,
    channel_id: str | None = None,
    name: str | None = None,
    expires_at: datetime | None = None,
) -> SavedToken:
    token = SavedToken(
        owner_id=config.owner_id,
        twitch_config=config,
        token_type=str(token_type),
        access_token_encrypted=access_token_encrypted,
        refresh_token_encrypted=refresh_token_encrypted,
        scopes=list(scopes or []),
        channel_login=channel_login,
        channel_id=channel_id,
        name=name,
        expires_at=expires_at,
    )
    db.add(token)
    await db.flush()
    return token


async def get_token(db: AsyncSession, token_id: str) -> SavedToken | None:
    result = await db.execute(select(SavedToken).where(SavedToken.id == token_id))
    return result.scalar_one_or_none()


async def list_tokens(
    db: AsyncSession,
    owner_id: str,
    token_type: TokenKind | None = None,
    config_id: str | None = None,
) -> list[SavedToken]:
    conditions = [SavedToken.owner_id == owner_id]
    if token_type is not None:
        conditions.append(SavedToken.token_type == str(token_type))
    if config_id is not None:
        conditions.append(SavedToken.twitch_config_id == config_id)

    result = await db.execute(
        select(SavedToken).where(*conditions).order_by(SavedToken.created_at.desc())
    )
    return list(result.scalars().all())


async def find_first_token(
    db: AsyncSession,
    owner_id: str,
    token_type: TokenKind,
    config_id: str | None = None,
) -> SavedToken | None:
    """Return the newest token of ``token_type`` for an owner, if any."""
    tokens = await list_tokens(db, owner_id, token_type=token_type, config_id=config_id)
    return tokens[0] if tokens else None


async def update_token_secrets(
    db: AsyncSession,
    token: SavedToken,
    *,
    access_token_encrypted: str,
    refresh_token_encrypted: str | None,
    scopes: list[str],
    expires_at: datetime | None,
) -> SavedToken:
    """Replace a token's secrets, scopes and expiry in a single UPDATE."""
    token.access_token_encrypted = access_token_encrypted
    token.refresh_token_encrypted = refresh_token_encrypted
    token.scopes = list(scopes)
    token.expires_at = expires_at
    await db.flush()
    return token


async def delete_token(db: AsyncSession, token: SavedToken) -> None:
    await db.delete(token)
    await db.flush()


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


async def create_webhook(
    db: AsyncSession,
    owner_id: str,
    subscription_id: str,
    type: str,
    callback_url: str,
    status: str,
    *,
    version: str = "1",
    condition: dict | None = None,
    cost: int = 0,
) -> Webhook:
    webhook = Webhook(
        owner_id=owner_id,
        subscription_id=subscription_id,
        type=type,
        version=version,
        condition=dict(condition or {}),
        callback_url=callback_url,
        status=status,
        cost=cost,
    )
    db.add(webhook)
    await db.flush()
    return webhook


async def get_webhook(db: AsyncSession, webhook_id: str) -> Webhook | None:
    result = await db.execute(select(Webhook).where(Webhook.id == webhook_id))
    return result.scalar_one_or_none()


async def list_webhooks(db: AsyncSession, owner_id: str) -> list[Webhook]:
    result = await db.execute(
        select(Webhook).where(Webhook.owner_id == owner_id).order_by(Webhook.created_at.desc())
    )
    return list(result.scalars().all())


async def update_webhook_by_subscription_id(
    db: AsyncSession,
    owner_id: str,
    subscription_id: str,
    *,
    status: str,
    condition: dict,
    cost: int,
) -> Webhook | None:
    result = await db.execute(
        select(Webhook).where(
            Webhook.owner_id == owner_id,
            Webhook.subscription_id == subscription_id,
        )
    )
    webhook = result.scalar_one_or_none()
    if webhook is None:
        return None

    webhook.status = status
    webhook.condition = dict(condition)
    webhook.cost = cost
    await db.flush()
    return webhook


async def delete_webhook(db: AsyncSession, webhook: Webhook) -> None:
    await db.delete(webhook)
    await db.flush()


async def delete_webhook_by_subscription_id(db: AsyncSession, owner_id: str, subscription_id: str) -> int:
    result = await db.execute(
        delete(Webhook).where(
            Webhook.owner_id == owner_id,
            Webhook.subscription_id == subscription_id,
        )
    )
    return result.rowcount or 0
