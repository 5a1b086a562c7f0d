"""EventSub webhook management and Twitch -> local reconciliation.

Sync strategy (full refresh, per Twitch config with a usable app token):
1. **Fetch** -- every remote subscription visible to the config's app token
   (all pages).
2. **Load** -- every local webhook of the owner.  Local rows are not
   partitioned by config; Twitch subscription ids are globally unique.
3. **Merge** -- unknown remote id -> INSERT (imported); known id -> overwrite
   status / condition / cost (updated, even when nothing changed).
4. **Purge** -- local rows whose id Twitch did not report -> DELETE (removed).

Each config runs inside a SAVEPOINT.  A config that fails to sync (revoked
token, Twitch error, a subscription id already cached for another owner) is
rolled back, logged and skipped; the remaining configs still sync.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from credhub.constants import TokenKind
from credhub.models import SavedToken, TwitchConfig, Webhook
from credhub.services import records
from credhub.services.access_control import ServiceError, get_owned_config, get_owned_token, get_owned_webhook
from credhub.services.secret_codec import SecretCodec, get_secret_codec
from credhub.twitch_gateway.client import TwitchApiError
from credhub.twitch_gateway.eventsub import EventSubClient, SubscriptionListing
from credhub.utils.datetime_utils import is_expired

logger = logging.getLogger(__name__)

# Twitch accepts 10-100 ASCII characters
_TRANSPORT_SECRET_BYTES = 16


class NoUsableCredentialError(ServiceError):
    """Raised when no app token is available to talk to EventSub."""


@dataclass
class SyncReport:
    """Aggregate result of a reconciliation pass."""

    imported: int = 0
    updated: int = 0
    removed: int = 0
    total: int = 0
    configs_synced: list[str] = field(default_factory=list)
    synced_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class _ConfigSync:
    imported: int = 0
    updated: int = 0
    removed: int = 0
    total: int = 0


def _usable_app_tokens(tokens: list[SavedToken]) -> dict[str, SavedToken]:
    """Pick the newest unexpired app token per config id.

    ``tokens`` must be ordered newest first.
    """
    now = datetime.now(UTC)
    chosen: dict[str, SavedToken] = {}
    for token in tokens:
        if token.twitch_config_id in chosen or is_expired(token.expires_at, now):
            continue
        chosen[token.twitch_config_id] = token
    return chosen


class WebhookService:
    """EventSub subscriptions for one owner.

    Args:
        db: Async session; the caller owns the transaction.
        eventsub: Client for the Helix EventSub endpoint.
        codec: Secret codec (defaults to the process-wide one).
    """

    def __init__(
        self,
        db: AsyncSession,
        eventsub: EventSubClient,
        codec: SecretCodec | None = None,
    ) -> None:
        self._db = db
        self._eventsub = eventsub
        self._codec = codec or get_secret_codec()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def sync_webhooks(self, owner_id: str, config_id: str | None = None) -> SyncReport:
        """Reconcile local webhooks with Twitch for one config or all of them.

        Raises:
            NotFoundError / ForbiddenError: ``config_id`` is unknown or foreign.
            NoUsableCredentialError: No candidate config has a usable app token.
        """
        if config_id is not None:
            await get_owned_config(self._db, owner_id, config_id)

        tokens = await records.list_tokens(self._db, owner_id, token_type=TokenKind.APP, config_id=config_id)
        usable = _usable_app_tokens(tokens)
        if not usable:
            raise NoUsableCredentialError(
                "No app token found for this configuration."
                if config_id
                else "No app tokens found. Create an app token first to sync subscriptions."
            )

        report = SyncReport()
        for token in usable.values():
            config = token.twitch_config
            display_name = config.display_name
            try:
                # A failed config rolls back only its own writes
                async with self._db.begin_nested():
                    outcome = await self._sync_config(owner_id, config, token)
            except (TwitchApiError, ServiceError, SQLAlchemyError, ValueError, RuntimeError):
                logger.exception("Failed to sync webhooks for config %s", display_name)
                continue

            report.imported += outcome.imported
            report.updated += outcome.updated
            report.removed += outcome.removed
            report.total += outcome.total
            report.configs_synced.append(display_name)

        logger.info(
            "Webhook sync for %s: imported=%d updated=%d removed=%d total=%d configs=%s",
            owner_id,
            report.imported,
            report.updated,
            report.removed,
            report.total,
            report.configs_synced,
        )
        return report

    async def _sync_config(self, owner_id: str, config: TwitchConfig, token: SavedToken) -> _ConfigSync:
        access_token = await self._codec.decrypt_async(token.access_token_encrypted)
        listing = await self._eventsub.list_subscriptions(access_token, config.client_id)
        remote = listing.subscriptions

        local = await records.list_webhooks(self._db, owner_id)
        local_ids = {webhook.subscription_id for webhook in local}

        outcome = _ConfigSync(total=len(remote))
        for sub in remote:
            if sub.id not in local_ids:
                await records.create_webhook(
                    self._db,
                    owner_id,
                    sub.id,
                    sub.type,
                    sub.callback_url,
                    sub.status,
                    version=sub.version,
                    condition=sub.condition,
                    cost=sub.cost,
                )
                outcome.imported += 1
            else:
                await records.update_webhook_by_subscription_id(
                    self._db,
                    owner_id,
                    sub.id,
                    status=sub.status,
                    condition=sub.condition,
                    cost=sub.cost,
                )
                outcome.updated += 1

        remote_ids = {sub.id for sub in remote}
        for webhook in local:
            if webhook.subscription_id not in remote_ids:
                await records.delete_webhook(self._db, webhook)
                outcome.removed += 1

        return outcome

    # ------------------------------------------------------------------
    # Local / remote listing
    # ------------------------------------------------------------------

    async def list_webhooks(self, owner_id: str) -> list[Webhook]:
        return await records.list_webhooks(self._db, owner_id)

    async def list_remote(self, owner_id: str) -> SubscriptionListing:
        """List Twitch-side subscriptions using the owner's newest usable app token."""
        tokens = await records.list_tokens(self._db, owner_id, token_type=TokenKind.APP)
        usable = _usable_app_tokens(tokens)
        if not usable:
            raise NoUsableCredentialError(
                "No app token found. Create an app token first to fetch remote subscriptions."
            )

        token = next(iter(usable.values()))
        access_token = await self._codec.decrypt_async(token.access_token_encrypted)
        return await self._eventsub.list_subscriptions(access_token, token.twitch_config.client_id)

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    async def create_webhook(
        self,
        owner_id: str,
        token_id: str,
        type: str,
        condition: dict,
        callback_url: str,
        version: str = "1",
    ) -> Webhook:
        """Register a subscription at Twitch and cache it locally."""
        token = await get_owned_token(self._db, owner_id, token_id)
        access_token = await self._codec.decrypt_async(token.access_token_encrypted)

        subscription = await self._eventsub.create_subscription(
            access_token,
            token.twitch_config.client_id,
            type=type,
            version=version,
            condition=condition,
            callback_url=callback_url,
            secret=secrets.token_hex(_TRANSPORT_SECRET_BYTES),
        )

        webhook = await records.create_webhook(
            self._db,
            owner_id,
            subscription.id,
            subscription.type,
            callback_url,
            subscription.status,
            version=subscription.version,
            condition=subscription.condition or condition,
            cost=subscription.cost,
        )
        logger.info("Created EventSub subscription %s (%s)", subscription.id, subscription.type)
        return webhook

    async def delete_webhook(self, owner_id: str, webhook_id: str) -> None:
        """Delete a webhook at Twitch (best effort) and locally.

        Uses an app token when one exists, otherwise a user token.  If
        neither exists or Twitch refuses, the local row is still removed.
        """
        webhook = await get_owned_webhook(self._db, owner_id, webhook_id)

        token = await records.find_first_token(self._db, owner_id, TokenKind.APP)
        if token is None:
            token = await records.find_first_token(self._db, owner_id, TokenKind.USER)

        if token is not None:
            try:
                access_token = await self._codec.decrypt_async(token.access_token_encrypted)
                await self._eventsub.delete_subscription(
                    access_token,
                    token.twitch_config.client_id,
                    webhook.subscription_id,
                )
            except TwitchApiError as exc:
                logger.warning(
                    "Failed to delete subscription %s at Twitch: %s",
                    webhook.subscription_id,
                    exc.message,
                )
        else:
            logger.info("No token available to delete subscription %s at Twitch", webhook.subscription_id)

        await records.delete_webhook(self._db, webhook)
