"""Tests for the config, token and webhook API endpoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from credhub.api.deps import get_eventsub_client, get_twitch_client
from credhub.constants import TokenKind
from credhub.services import records
from credhub.twitch_gateway.client import (
    AccessDeniedError,
    DeviceCodeExpiredError,
    InvalidCredentialsError,
    InvalidTokenError,
    TokenResult,
    TokenValidation,
    TwitchAuthClient,
    TwitchUnavailableError,
)
from credhub.twitch_gateway.eventsub import EventSubClient, EventSubSubscription, SubscriptionListing
from tests.conftest import OTHER_OWNER, make_auth_headers


@pytest.fixture
def twitch(test_app):
    mock = MagicMock(spec=TwitchAuthClient)
    test_app.dependency_overrides[get_twitch_client] = lambda: mock
    return mock


@pytest.fixture
def eventsub(test_app):
    mock = MagicMock(spec=EventSubClient)
    test_app.dependency_overrides[get_eventsub_client] = lambda: mock
    return mock


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class TestAuth:
    @pytest.mark.asyncio
    async def test_requires_bearer_token(self, test_client):
        resp = await test_client.get("/api/tokens")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_bad_token(self, test_client):
        resp = await test_client.get("/api/tokens", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_health_is_public(self, test_client):
        resp = await test_client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# Twitch configs
# ---------------------------------------------------------------------------


class TestConfigEndpoints:
    @pytest.mark.asyncio
    async def test_create_list_delete(self, test_client):
        headers = make_auth_headers()

        resp = await test_client.post(
            "/api/twitch-configs",
            json={"client_id": "abc123", "client_secret": "shh", "name": "Main app"},
            headers=headers,
        )
        assert resp.status_code == 201
        config_id = resp.json()["id"]

        resp = await test_client.get("/api/twitch-configs", headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        assert data["items"][0]["client_secret"] == "shh"
        assert data["items"][0]["tokens_count"] == 0

        resp = await test_client.delete(f"/api/twitch-configs/{config_id}", headers=headers)
        assert resp.status_code == 204

    @pytest.mark.asyncio
    async def test_duplicate_is_conflict(self, test_client, twitch_config):
        resp = await test_client.post(
            "/api/twitch-configs",
            json={"client_id": "abc123", "client_secret": "other"},
            headers=make_auth_headers(),
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_foreign_config_is_forbidden(self, test_client, twitch_config):
        resp = await test_client.get(
            f"/api/twitch-configs/{twitch_config.id}",
            headers=make_auth_headers(OTHER_OWNER),
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_config_is_not_found(self, test_client):
        resp = await test_client.get("/api/twitch-configs/missing", headers=make_auth_headers())
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_validate_credentials(self, test_client, twitch):
        twitch.client_credentials_grant.return_value = TokenResult(access_token="tok_1", expires_in=3600)

        resp = await test_client.post(
            "/api/twitch-configs/validate",
            json={"client_id": "abc123", "client_secret": "shh"},
            headers=make_auth_headers(),
        )

        assert resp.status_code == 200
        assert resp.json()["valid"] is True
        assert resp.json()["expires_in"] == 3600

    @pytest.mark.asyncio
    async def test_validate_rejected_credentials_is_200(self, test_client, twitch):
        twitch.client_credentials_grant.side_effect = InvalidCredentialsError("invalid client secret", 403)

        resp = await test_client.post(
            "/api/twitch-configs/validate",
            json={"client_id": "abc123", "client_secret": "wrong"},
            headers=make_auth_headers(),
        )

        assert resp.status_code == 200
        assert resp.json()["valid"] is False
        assert resp.json()["error"] == "invalid client secret"


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TestAppTokenEndpoint:
    @pytest.mark.asyncio
    async def test_generate(self, test_client, twitch, twitch_config):
        twitch.client_credentials_grant.return_value = TokenResult(
            access_token="tok_1",
            expires_in=3600,
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        )

        resp = await test_client.post(
            "/api/tokens/app",
            json={"config_id": twitch_config.id, "name": "bot"},
            headers=make_auth_headers(),
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["access_token"] == "tok_1"
        assert data["token_type"] == "app"
        assert data["scopes"] == []
        assert data["twitch_config"]["client_id"] == "abc123"

        resp = await test_client.get("/api/tokens", headers=make_auth_headers())
        listed = resp.json()["items"]
        assert len(listed) == 1
        assert "access_token" not in listed[0]

    @pytest.mark.asyncio
    async def test_bad_credentials_is_400(self, test_client, twitch, twitch_config):
        twitch.client_credentials_grant.side_effect = InvalidCredentialsError("invalid client secret", 403)

        resp = await test_client.post(
            "/api/tokens/app",
            json={"config_id": twitch_config.id},
            headers=make_auth_headers(),
        )

        assert resp.status_code == 400
        assert resp.json()["detail"] == "invalid client secret"

    @pytest.mark.asyncio
    async def test_twitch_down_is_502(self, test_client, twitch, twitch_config):
        twitch.client_credentials_grant.side_effect = TwitchUnavailableError("Twitch request failed", None)

        resp = await test_client.post(
            "/api/tokens/app",
            json={"config_id": twitch_config.id},
            headers=make_auth_headers(),
        )

        assert resp.status_code == 502


class TestDevicePollEndpoint:
    @pytest.mark.asyncio
    async def test_pending(self, test_client, twitch, twitch_config):
        twitch.poll_device_grant.return_value = None

        resp = await test_client.post(
            "/api/tokens/user/device/poll",
            json={"config_id": twitch_config.id, "device_code": "dc1"},
            headers=make_auth_headers(),
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "pending"
        assert resp.json()["token"] is None

    @pytest.mark.asyncio
    async def test_success(self, test_client, twitch, twitch_config):
        twitch.poll_device_grant.return_value = TokenResult(
            access_token="user-at",
            refresh_token="user-rt",
            expires_in=14400,
            scopes=["chat:read"],
            expires_at=datetime.now(UTC) + timedelta(hours=4),
        )
        twitch.validate_token.return_value = TokenValidation(
            client_id="abc123", scopes=["chat:read"], expires_in=14400, login="streamer", user_id="42"
        )

        resp = await test_client.post(
            "/api/tokens/user/device/poll",
            json={"config_id": twitch_config.id, "device_code": "dc1"},
            headers=make_auth_headers(),
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "success"
        assert data["token"]["channel_login"] == "streamer"
        assert data["token"]["refresh_token"] == "user-rt"

    @pytest.mark.asyncio
    async def test_denied(self, test_client, twitch, twitch_config):
        twitch.poll_device_grant.side_effect = AccessDeniedError("access_denied", 400)

        resp = await test_client.post(
            "/api/tokens/user/device/poll",
            json={"config_id": twitch_config.id, "device_code": "dc1"},
            headers=make_auth_headers(),
        )

        assert resp.status_code == 403
        assert resp.json()["status"] == "denied"

    @pytest.mark.asyncio
    async def test_expired(self, test_client, twitch, twitch_config):
        twitch.poll_device_grant.side_effect = DeviceCodeExpiredError("expired_token", 400)

        resp = await test_client.post(
            "/api/tokens/user/device/poll",
            json={"config_id": twitch_config.id, "device_code": "dc1"},
            headers=make_auth_headers(),
        )

        assert resp.status_code == 400
        assert resp.json()["status"] == "expired"


class TestPerTokenEndpoints:
    @pytest.mark.asyncio
    async def test_refresh_app_token_is_400(self, test_client, twitch, twitch_config, test_db, codec):
        token = await records.create_token(test_db, twitch_config, TokenKind.APP, codec.encrypt("app-at"))

        resp = await test_client.post(f"/api/tokens/{token.id}/refresh", headers=make_auth_headers())

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_get_foreign_token_is_403(self, test_client, twitch, twitch_config, test_db, codec):
        token = await records.create_token(test_db, twitch_config, TokenKind.APP, codec.encrypt("app-at"))

        resp = await test_client.get(f"/api/tokens/{token.id}", headers=make_auth_headers(OTHER_OWNER))

        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_get_reveals_secret(self, test_client, twitch, twitch_config, test_db, codec):
        token = await records.create_token(test_db, twitch_config, TokenKind.APP, codec.encrypt("app-at"))

        resp = await test_client.get(f"/api/tokens/{token.id}", headers=make_auth_headers())

        assert resp.status_code == 200
        assert resp.json()["access_token"] == "app-at"

    @pytest.mark.asyncio
    async def test_validate_invalid_is_200(self, test_client, twitch, twitch_config, test_db, codec):
        token = await records.create_token(test_db, twitch_config, TokenKind.APP, codec.encrypt("app-at"))
        twitch.validate_token.side_effect = InvalidTokenError("invalid access token", 401)

        resp = await test_client.post(f"/api/tokens/{token.id}/validate", headers=make_auth_headers())

        assert resp.status_code == 200
        assert resp.json()["valid"] is False


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class TestWebhookEndpoints:
    @pytest.mark.asyncio
    async def test_types(self, test_client):
        resp = await test_client.get("/api/webhooks/types")

        assert resp.status_code == 200
        assert "stream.online" in {item["type"] for item in resp.json()}

    @pytest.mark.asyncio
    async def test_sync_without_app_token_is_404(self, test_client, eventsub, twitch_config):
        resp = await test_client.post("/api/webhooks/sync", headers=make_auth_headers())

        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_sync_reports_counts(self, test_client, eventsub, twitch_config, test_db, codec):
        await records.create_token(
            test_db,
            twitch_config,
            TokenKind.APP,
            codec.encrypt("app-at"),
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        )
        eventsub.list_subscriptions.return_value = SubscriptionListing(
            subscriptions=[
                EventSubSubscription(
                    id="s1",
                    type="stream.online",
                    status="enabled",
                    condition={"broadcaster_user_id": "1234"},
                    callback_url="https://example.com/hook",
                    cost=1,
                )
            ],
            total=1,
            total_cost=1,
            max_total_cost=10000,
        )

        resp = await test_client.post("/api/webhooks/sync", headers=make_auth_headers())

        assert resp.status_code == 200
        data = resp.json()
        assert data["imported"] == 1
        assert data["removed"] == 0
        assert data["configs_synced"] == ["Main app"]

        resp = await test_client.get("/api/webhooks", headers=make_auth_headers())
        assert resp.json()["items"][0]["subscription_id"] == "s1"

    @pytest.mark.asyncio
    async def test_dead_twitch_token_is_424_not_401(self, test_client, eventsub, twitch_config, test_db, codec):
        token = await records.create_token(test_db, twitch_config, TokenKind.APP, codec.encrypt("revoked-at"))
        eventsub.create_subscription.side_effect = InvalidTokenError("Invalid OAuth token", 401)

        resp = await test_client.post(
            "/api/webhooks",
            json={
                "token_id": token.id,
                "type": "stream.online",
                "condition": {"broadcaster_user_id": "1234"},
                "callback_url": "https://example.com/hook",
            },
            headers=make_auth_headers(),
        )

        assert resp.status_code == 424
        assert "Twitch rejected the stored access token" in resp.json()["detail"]
