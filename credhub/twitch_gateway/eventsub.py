"""Twitch EventSub subscription API wrapper.

Covers ``/helix/eventsub/subscriptions`` (list / create / delete) with the
webhook transport.  Listing follows Twitch's cursor pagination until the
last page, so callers always see the complete remote state.

Errors follow :mod:`credhub.twitch_gateway.client`: 401 raises
:class:`~credhub.twitch_gateway.client.InvalidTokenError`, other 4xx
:class:`~credhub.twitch_gateway.client.ProviderRejectedError`.

Usage::

    async with EventSubClient() as eventsub:
        listing = await eventsub.list_subscriptions(access_token, client_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from credhub.config import Settings, get_settings
from credhub.twitch_gateway.client import (
    InvalidTokenError,
    TwitchUnavailableError,
    error_message,
    raise_for_twitch_status,
)

logger = logging.getLogger(__name__)

# Guard against a provider that keeps handing out cursors
_MAX_PAGES = 100


@dataclass(frozen=True)
class EventSubSubscription:
    """One subscription as reported by Twitch."""

    id: str
    type: str
    status: str
    version: str = "1"
    condition: dict = field(default_factory=dict)
    callback_url: str = ""
    cost: int = 0
    created_at: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> EventSubSubscription:
        transport = data.get("transport") or {}
        return cls(
            id=data["id"],
            type=data["type"],
            status=data.get("status", ""),
            version=str(data.get("version", "1")),
            condition=dict(data.get("condition") or {}),
            callback_url=transport.get("callback", ""),
            cost=int(data.get("cost") or 0),
            created_at=data.get("created_at"),
        )


@dataclass
class SubscriptionListing:
    """All remote subscriptions visible to one app token."""

    subscriptions: list[EventSubSubscription] = field(default_factory=list)
    total: int = 0
    total_cost: int = 0
    max_total_cost: int = 0


class EventSubClient:
    """Async client for the Helix EventSub subscription endpoint.

    Args:
        settings: Application settings (Helix base URL, timeout).
        http_client: Optional pre-built ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._url: str = f"{settings.TWITCH_HELIX_URL.rstrip('/')}/eventsub/subscriptions"
        self._client: httpx.AsyncClient = http_client or httpx.AsyncClient(
            timeout=settings.TWITCH_HTTP_TIMEOUT,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> EventSubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @staticmethod
    def _headers(access_token: str, client_id: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Client-Id": client_id,
        }

    async def _send(self, method: str, **kwargs: object) -> httpx.Response:
        try:
            response = await self._client.request(method, self._url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("EventSub %s failed: %s", method, exc)
            raise TwitchUnavailableError(f"Twitch request failed: {exc}") from exc

        if response.status_code == 401:
            raise InvalidTokenError(error_message(response), response.status_code)
        raise_for_twitch_status(response)
        return response

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_subscriptions(self, access_token: str, client_id: str) -> SubscriptionListing:
        """Fetch every subscription, following ``pagination.cursor``."""
        listing = SubscriptionListing()
        cursor: str | None = None

        for _ in range(_MAX_PAGES):
            params = {"after": cursor} if cursor else None
            response = await self._send(
                "GET",
                params=params,
                headers=self._headers(access_token, client_id),
            )
            data = response.json()

            listing.subscriptions.extend(
                EventSubSubscription.from_payload(item) for item in data.get("data") or []
            )
            listing.total = int(data.get("total") or len(listing.subscriptions))
            listing.total_cost = int(data.get("total_cost") or 0)
            listing.max_total_cost = int(data.get("max_total_cost") or 0)

            cursor = (data.get("pagination") or {}).get("cursor")
            if not cursor:
                break
        else:
            logger.warning("EventSub listing stopped after %d pages", _MAX_PAGES)

        return listing

    async def create_subscription(
        self,
        access_token: str,
        client_id: str,
        type: str,
        version: str,
        condition: dict,
        callback_url: str,
        secret: str,
    ) -> EventSubSubscription:
        """Create a webhook-transport subscription."""
        payload = {
            "type": type,
            "version": version,
            "condition": condition,
            "transport": {
                "method": "webhook",
                "callback": callback_url,
                "secret": secret,
            },
        }
        response = await self._send(
            "POST",
            json=payload,
            headers=self._headers(access_token, client_id),
        )
        return EventSubSubscription.from_payload(response.json()["data"][0])

    async def delete_subscription(self, access_token: str, client_id: str, subscription_id: str) -> None:
        await self._send(
            "DELETE",
            params={"id": subscription_id},
            headers=self._headers(access_token, client_id),
        )
