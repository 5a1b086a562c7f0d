"""Tests for the Twitch identity and EventSub clients.

All HTTP traffic is faked by patching the underlying ``httpx.AsyncClient``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from credhub.twitch_gateway.client import (
    AccessDeniedError,
    DeviceCodeExpiredError,
    InvalidCredentialsError,
    InvalidGrantError,
    InvalidTokenError,
    ProviderRejectedError,
    TwitchAuthClient,
    TwitchUnavailableError,
)
from credhub.twitch_gateway.eventsub import EventSubClient
from tests.conftest import make_response


def _subscription(sub_id: str, status: str = "enabled") -> dict:
    return {
        "id": sub_id,
        "type": "stream.online",
        "version": "1",
        "status": status,
        "condition": {"broadcaster_user_id": "1234"},
        "transport": {"method": "webhook", "callback": "https://example.com/hook"},
        "cost": 1,
        "created_at": "2026-01-01T00:00:00Z",
    }


# ---------------------------------------------------------------------------
# 1. Client credentials
# ---------------------------------------------------------------------------


class TestClientCredentials:
    @pytest.mark.asyncio
    async def test_success_converts_expiry_to_absolute(self, twitch_client: TwitchAuthClient):
        response = make_response({"access_token": "tok_1", "expires_in": 3600, "token_type": "bearer"})

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response) as mock:
            result = await twitch_client.client_credentials_grant("abc123", "shh")

        assert result.access_token == "tok_1"
        assert result.expires_in == 3600
        assert result.refresh_token is None
        delta = result.expires_at - datetime.now(UTC)
        assert timedelta(seconds=3590) < delta <= timedelta(seconds=3600)

        method, url = mock.call_args.args
        assert method == "POST"
        assert url == "https://id.twitch.test/oauth2/token"
        assert mock.call_args.kwargs["params"]["grant_type"] == "client_credentials"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 401, 403])
    async def test_rejected_credentials(self, twitch_client: TwitchAuthClient, status_code: int):
        response = make_response({"status": status_code, "message": "invalid client secret"}, status_code)

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(InvalidCredentialsError) as exc_info:
                await twitch_client.client_credentials_grant("abc123", "wrong")

        assert exc_info.value.message == "invalid client secret"

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, twitch_client: TwitchAuthClient):
        response = make_response({"message": "oops"}, 503)

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(TwitchUnavailableError):
                await twitch_client.client_credentials_grant("abc123", "shh")

    @pytest.mark.asyncio
    async def test_network_error_is_unavailable(self, twitch_client: TwitchAuthClient):
        with patch.object(
            twitch_client._client,
            "request",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("connection refused"),
        ):
            with pytest.raises(TwitchUnavailableError):
                await twitch_client.client_credentials_grant("abc123", "shh")


# ---------------------------------------------------------------------------
# 2. Device flow
# ---------------------------------------------------------------------------


class TestDeviceGrant:
    @pytest.mark.asyncio
    async def test_start_returns_descriptor(self, twitch_client: TwitchAuthClient):
        response = make_response(
            {
                "device_code": "dc1",
                "user_code": "ABCD-1234",
                "verification_uri": "https://www.twitch.tv/activate",
                "expires_in": 1800,
                "interval": 5,
            }
        )

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response) as mock:
            grant = await twitch_client.start_device_grant("abc123", ["chat:read", "chat:edit"])

        assert grant.device_code == "dc1"
        assert grant.user_code == "ABCD-1234"
        assert grant.interval == 5
        assert grant.expires_in == 1800
        assert mock.call_args.kwargs["params"]["scopes"] == "chat:read chat:edit"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["authorization_pending", "slow_down"])
    async def test_poll_pending_returns_none(self, twitch_client: TwitchAuthClient, message: str):
        response = make_response({"status": 400, "message": message}, 400)

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            assert await twitch_client.poll_device_grant("abc123", "dc1") is None

    @pytest.mark.asyncio
    async def test_poll_denied(self, twitch_client: TwitchAuthClient):
        response = make_response({"status": 400, "message": "access_denied"}, 400)

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(AccessDeniedError):
                await twitch_client.poll_device_grant("abc123", "dc1")

    @pytest.mark.asyncio
    async def test_poll_expired(self, twitch_client: TwitchAuthClient):
        response = make_response({"status": 400, "message": "expired_token"}, 400)

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(DeviceCodeExpiredError):
                await twitch_client.poll_device_grant("abc123", "dc1")

    @pytest.mark.asyncio
    async def test_poll_unknown_error_is_rejected(self, twitch_client: TwitchAuthClient):
        response = make_response({"status": 400, "message": "invalid device code"}, 400)

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(ProviderRejectedError) as exc_info:
                await twitch_client.poll_device_grant("abc123", "dc1")

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "invalid device code"

    @pytest.mark.asyncio
    async def test_poll_success_parses_scopes(self, twitch_client: TwitchAuthClient):
        response = make_response(
            {
                "access_token": "user-at",
                "refresh_token": "user-rt",
                "expires_in": 14400,
                "scope": ["chat:read"],
                "token_type": "bearer",
            }
        )

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response) as mock:
            result = await twitch_client.poll_device_grant("abc123", "dc1")

        assert result.access_token == "user-at"
        assert result.refresh_token == "user-rt"
        assert result.scopes == ["chat:read"]
        assert mock.call_args.kwargs["params"]["grant_type"] == "urn:ietf:params:oauth:grant-type:device_code"


# ---------------------------------------------------------------------------
# 3. Authorization code / refresh / validate
# ---------------------------------------------------------------------------


class TestAuthorizationCode:
    def test_authorization_url(self, twitch_client: TwitchAuthClient):
        url = twitch_client.build_authorization_url(
            "abc123",
            "http://localhost:5173/oauth/callback",
            ["chat:read", "user:read:email"],
            "xyz",
        )

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://id.twitch.test/oauth2/authorize"
        assert params["client_id"] == ["abc123"]
        assert params["response_type"] == ["code"]
        assert params["scope"] == ["chat:read user:read:email"]
        assert params["state"] == ["xyz"]
        assert "force_verify" not in params

    @pytest.mark.asyncio
    async def test_exchange_stale_code(self, twitch_client: TwitchAuthClient):
        response = make_response({"status": 400, "message": "Invalid authorization code"}, 400)

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(InvalidGrantError):
                await twitch_client.exchange_authorization_code("abc123", "shh", "used", "http://cb")

    @pytest.mark.asyncio
    async def test_refresh_revoked(self, twitch_client: TwitchAuthClient):
        response = make_response({"status": 400, "message": "Invalid refresh token"}, 400)

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(InvalidGrantError):
                await twitch_client.refresh_grant("abc123", "shh", "rt")


class TestValidate:
    @pytest.mark.asyncio
    async def test_valid_token(self, twitch_client: TwitchAuthClient):
        response = make_response(
            {
                "client_id": "abc123",
                "login": "streamer",
                "user_id": "141981764",
                "scopes": ["chat:read"],
                "expires_in": 5000,
            }
        )

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response) as mock:
            validation = await twitch_client.validate_token("user-at")

        assert validation.login == "streamer"
        assert validation.user_id == "141981764"
        assert validation.scopes == ["chat:read"]
        assert mock.call_args.kwargs["headers"] == {"Authorization": "OAuth user-at"}

    @pytest.mark.asyncio
    async def test_app_token_has_no_login(self, twitch_client: TwitchAuthClient):
        response = make_response({"client_id": "abc123", "scopes": [], "expires_in": 5000})

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            validation = await twitch_client.validate_token("app-at")

        assert validation.login is None
        assert validation.user_id is None

    @pytest.mark.asyncio
    async def test_invalid_token(self, twitch_client: TwitchAuthClient):
        response = make_response({"status": 401, "message": "invalid access token"}, 401)

        with patch.object(twitch_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(InvalidTokenError):
                await twitch_client.validate_token("dead")


# ---------------------------------------------------------------------------
# 4. EventSub
# ---------------------------------------------------------------------------


class TestEventSub:
    @pytest.mark.asyncio
    async def test_list_follows_pagination(self, eventsub_client: EventSubClient):
        pages = [
            make_response(
                {
                    "data": [_subscription("s1"), _subscription("s2")],
                    "total": 3,
                    "total_cost": 3,
                    "max_total_cost": 10000,
                    "pagination": {"cursor": "page2"},
                }
            ),
            make_response(
                {
                    "data": [_subscription("s3")],
                    "total": 3,
                    "total_cost": 3,
                    "max_total_cost": 10000,
                    "pagination": {},
                }
            ),
        ]

        with patch.object(eventsub_client._client, "request", new_callable=AsyncMock, side_effect=pages) as mock:
            listing = await eventsub_client.list_subscriptions("app-at", "abc123")

        assert [sub.id for sub in listing.subscriptions] == ["s1", "s2", "s3"]
        assert listing.total == 3
        assert listing.max_total_cost == 10000
        assert listing.subscriptions[0].callback_url == "https://example.com/hook"
        assert mock.call_count == 2
        assert mock.call_args_list[1].kwargs["params"] == {"after": "page2"}
        assert mock.call_args_list[0].kwargs["headers"] == {
            "Authorization": "Bearer app-at",
            "Client-Id": "abc123",
        }

    @pytest.mark.asyncio
    async def test_list_unauthorized(self, eventsub_client: EventSubClient):
        response = make_response({"status": 401, "message": "Invalid OAuth token"}, 401)

        with patch.object(eventsub_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(InvalidTokenError):
                await eventsub_client.list_subscriptions("dead", "abc123")

    @pytest.mark.asyncio
    async def test_create_sends_webhook_transport(self, eventsub_client: EventSubClient):
        response = make_response({"data": [_subscription("new", status="webhook_callback_verification_pending")]}, 202)

        with patch.object(eventsub_client._client, "request", new_callable=AsyncMock, return_value=response) as mock:
            sub = await eventsub_client.create_subscription(
                "app-at",
                "abc123",
                type="stream.online",
                version="1",
                condition={"broadcaster_user_id": "1234"},
                callback_url="https://example.com/hook",
                secret="s" * 32,
            )

        assert sub.id == "new"
        assert sub.status == "webhook_callback_verification_pending"
        transport = mock.call_args.kwargs["json"]["transport"]
        assert transport == {"method": "webhook", "callback": "https://example.com/hook", "secret": "s" * 32}

    @pytest.mark.asyncio
    async def test_create_conflict_passes_status_through(self, eventsub_client: EventSubClient):
        response = make_response({"status": 409, "message": "subscription already exists"}, 409)

        with patch.object(eventsub_client._client, "request", new_callable=AsyncMock, return_value=response):
            with pytest.raises(ProviderRejectedError) as exc_info:
                await eventsub_client.create_subscription(
                    "app-at", "abc123", "stream.online", "1", {}, "https://example.com/hook", "s" * 32
                )

        assert exc_info.value.status_code == 409
        assert exc_info.value.message == "subscription already exists"

    @pytest.mark.asyncio
    async def test_delete(self, eventsub_client: EventSubClient):
        response = make_response(None, 204)

        with patch.object(eventsub_client._client, "request", new_callable=AsyncMock, return_value=response) as mock:
            await eventsub_client.delete_subscription("app-at", "abc123", "s1")

        assert mock.call_args.args[0] == "DELETE"
        assert mock.call_args.kwargs["params"] == {"id": "s1"}
