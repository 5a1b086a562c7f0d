"""Twitch identity (``id.twitch.tv/oauth2``) client.

Thin async wrappers, one per OAuth grant, plus token validation and
revocation.  The client keeps no session state: every method is a single
request against Twitch and either returns a typed result or raises one of
the typed errors below.  Twitch's wire-level error strings
(``authorization_pending``, ``access_denied``, ...) are matched only here.

Usage::

    async with TwitchAuthClient() as twitch:
        result = await twitch.client_credentials_grant(client_id, client_secret)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from urllib.parse import urlencode

import httpx

from credhub.config import Settings, get_settings
from credhub.constants import (
    DEFAULT_DEVICE_POLL_INTERVAL,
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_DEVICE_CODE,
    GRANT_REFRESH_TOKEN,
)
from credhub.utils.datetime_utils import expires_at_from

logger = logging.getLogger(__name__)

# Device-poll outcomes that only mean "ask again later"
_DEVICE_PENDING_CODES: frozenset[str] = frozenset({"authorization_pending", "slow_down"})


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TwitchApiError(Exception):
    """Base class for failures reported by (or while talking to) Twitch.

    Attributes:
        message: The provider's diagnostic message, passed through verbatim.
        status_code: HTTP status of the provider response, if there was one.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class InvalidCredentialsError(TwitchApiError):
    """Twitch rejected the client id / client secret pair."""


class InvalidGrantError(TwitchApiError):
    """The authorization code or refresh token is stale, used, or revoked."""


class InvalidTokenError(TwitchApiError):
    """The access token is not currently valid."""


class AccessDeniedError(TwitchApiError):
    """The user declined the device authorization request."""


class DeviceCodeExpiredError(TwitchApiError):
    """The device code's lifetime elapsed before the user authorized."""


class ProviderRejectedError(TwitchApiError):
    """Any other 4xx response from Twitch."""


class TwitchUnavailableError(TwitchApiError):
    """Transport failure or unexpected 5xx from Twitch."""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenResult:
    """Tokens issued by the token endpoint.

    ``expires_at`` is fixed at the moment the response was received.
    """

    access_token: str
    expires_in: int
    refresh_token: str | None = None
    scopes: list[str] = field(default_factory=list)
    expires_at: datetime | None = None


@dataclass(frozen=True)
class DeviceAuthorization:
    """Response to a device authorization request."""

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int = DEFAULT_DEVICE_POLL_INTERVAL


@dataclass(frozen=True)
class TokenValidation:
    """Response of ``GET /oauth2/validate``."""

    client_id: str
    scopes: list[str]
    expires_in: int
    login: str | None = None
    user_id: str | None = None
    expires_at: datetime | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def error_message(response: httpx.Response) -> str:
    """Extract Twitch's diagnostic message from an error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or response.text)
    return response.text


def raise_for_twitch_status(response: httpx.Response) -> None:
    """Raise the generic error for a non-2xx response nobody classified.

    4xx becomes :class:`ProviderRejectedError`, anything else
    :class:`TwitchUnavailableError`.
    """
    if response.is_success:
        return
    message = error_message(response)
    if 400 <= response.status_code < 500:
        raise ProviderRejectedError(message, response.status_code)
    raise TwitchUnavailableError(message, response.status_code)


def _parse_scopes(raw: object) -> list[str]:
    if isinstance(raw, list):
        return [str(scope) for scope in raw]
    if isinstance(raw, str) and raw:
        return raw.split(" ")
    return []


def _parse_token_result(data: dict, received_at: datetime) -> TokenResult:
    expires_in = int(data.get("expires_in") or 0)
    return TokenResult(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_in=expires_in,
        scopes=_parse_scopes(data.get("scope")),
        expires_at=expires_at_from(expires_in, received_at),
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TwitchAuthClient:
    """Async client for the Twitch OAuth2 identity endpoints.

    Args:
        settings: Application settings (base URL, timeout).
        http_client: Optional pre-built ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._base_url: str = settings.TWITCH_AUTH_URL.rstrip("/")
        self._client: httpx.AsyncClient = http_client or httpx.AsyncClient(
            timeout=settings.TWITCH_HTTP_TIMEOUT,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> TwitchAuthClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post_token(self, params: dict[str, str]) -> httpx.Response:
        return await self._send("POST", "/token", params=params)

    async def _send(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        try:
            response = await self._client.request(method, f"{self._base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Twitch %s %s failed: %s", method, path, exc)
            raise TwitchUnavailableError(f"Twitch request failed: {exc}") from exc
        if response.status_code >= 500:
            raise TwitchUnavailableError(error_message(response), response.status_code)
        return response

    # ------------------------------------------------------------------
    # Client credentials
    # ------------------------------------------------------------------

    async def client_credentials_grant(self, client_id: str, client_secret: str) -> TokenResult:
        """Mint an app access token.

        Raises:
            InvalidCredentialsError: If Twitch rejects the client id/secret.
        """
        response = await self._post_token(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "grant_type": GRANT_CLIENT_CREDENTIALS,
            }
        )
        received_at = datetime.now(UTC)

        if response.status_code in (400, 401, 403):
            message = error_message(response)
            logger.warning("Client credentials rejected for client %s: %s", client_id, message)
            raise InvalidCredentialsError(message, response.status_code)
        raise_for_twitch_status(response)

        data = response.json()
        if not data.get("expires_in"):
            raise ProviderRejectedError("Token response did not include expires_in", response.status_code)
        return _parse_token_result(data, received_at)

    # ------------------------------------------------------------------
    # Device authorization
    # ------------------------------------------------------------------

    async def start_device_grant(self, client_id: str, scopes: list[str]) -> DeviceAuthorization:
        """Request a device code / user code pair."""
        response = await self._send(
            "POST",
            "/device",
            params={"client_id": client_id, "scopes": " ".join(scopes)},
        )
        raise_for_twitch_status(response)

        data = response.json()
        return DeviceAuthorization(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_uri=data["verification_uri"],
            expires_in=int(data["expires_in"]),
            interval=int(data.get("interval") or DEFAULT_DEVICE_POLL_INTERVAL),
        )

    async def poll_device_grant(self, client_id: str, device_code: str) -> TokenResult | None:
        """Try once to exchange a device code for tokens.

        Returns:
            The issued tokens, or None while the user has not finished
            authorizing (``authorization_pending`` or ``slow_down``).

        Raises:
            AccessDeniedError: The user declined.
            DeviceCodeExpiredError: The device code expired.
            ProviderRejectedError: Any other 4xx.
        """
        response = await self._post_token(
            {
                "client_id": client_id,
                "device_code": device_code,
                "grant_type": GRANT_DEVICE_CODE,
            }
        )
        received_at = datetime.now(UTC)

        if response.is_success:
            return _parse_token_result(response.json(), received_at)

        message = error_message(response)
        if response.status_code == 400:
            if message in _DEVICE_PENDING_CODES:
                if message == "slow_down":
                    logger.info("Twitch asked to slow down device polling for client %s", client_id)
                return None
            if message == "access_denied":
                raise AccessDeniedError(message, response.status_code)
            if message == "expired_token":
                raise DeviceCodeExpiredError(message, response.status_code)

        logger.warning("Device token poll rejected (%d): %s", response.status_code, message)
        raise ProviderRejectedError(message, response.status_code)

    # ------------------------------------------------------------------
    # Authorization code
    # ------------------------------------------------------------------

    def build_authorization_url(
        self,
        client_id: str,
        redirect_uri: str,
        scopes: list[str],
        state: str,
        force_verify: bool = False,
    ) -> str:
        """Build the URL to send the user to.  No network call.

        ``state`` is passed through unmodified; generating and checking it is
        the caller's job.
        """
        params: dict[str, str] = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
        }
        if force_verify:
            params["force_verify"] = "true"
        return f"{self._base_url}/authorize?{urlencode(params)}"

    async def exchange_authorization_code(
        self,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str,
    ) -> TokenResult:
        """Exchange an authorization code for user tokens.

        Raises:
            InvalidGrantError: Stale or reused code, or redirect URI mismatch.
            InvalidCredentialsError: Client secret rejected.
        """
        response = await self._post_token(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "grant_type": GRANT_AUTHORIZATION_CODE,
                "redirect_uri": redirect_uri,
            }
        )
        received_at = datetime.now(UTC)

        if response.status_code == 400:
            raise InvalidGrantError(error_message(response), response.status_code)
        if response.status_code in (401, 403):
            raise InvalidCredentialsError(error_message(response), response.status_code)
        raise_for_twitch_status(response)

        return _parse_token_result(response.json(), received_at)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_grant(self, client_id: str, client_secret: str, refresh_token: str) -> TokenResult:
        """Trade a refresh token for a new token pair.

        Raises:
            InvalidGrantError: The refresh token was revoked or expired.  The
                stored token is dead; retrying will not help.
            InvalidCredentialsError: Client secret rejected.
        """
        response = await self._post_token(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": GRANT_REFRESH_TOKEN,
            }
        )
        received_at = datetime.now(UTC)

        if response.status_code in (400, 401):
            raise InvalidGrantError(error_message(response), response.status_code)
        if response.status_code == 403:
            raise InvalidCredentialsError(error_message(response), response.status_code)
        raise_for_twitch_status(response)

        return _parse_token_result(response.json(), received_at)

    # ------------------------------------------------------------------
    # Validate / revoke
    # ------------------------------------------------------------------

    async def validate_token(self, access_token: str) -> TokenValidation:
        """Look up what a token belongs to.

        Raises:
            InvalidTokenError: Twitch answered 401.
        """
        response = await self._send(
            "GET",
            "/validate",
            headers={"Authorization": f"OAuth {access_token}"},
        )
        received_at = datetime.now(UTC)

        if response.status_code == 401:
            raise InvalidTokenError(error_message(response), response.status_code)
        raise_for_twitch_status(response)

        data = response.json()
        expires_in = int(data.get("expires_in") or 0)
        user_id = data.get("user_id")
        return TokenValidation(
            client_id=data.get("client_id", ""),
            login=data.get("login") or None,
            user_id=str(user_id) if user_id else None,
            scopes=_parse_scopes(data.get("scopes")),
            expires_in=expires_in,
            expires_at=expires_at_from(expires_in, received_at),
        )

    async def revoke_token(self, client_id: str, access_token: str) -> None:
        """Revoke an access token."""
        response = await self._send(
            "POST",
            "/revoke",
            params={"client_id": client_id, "token": access_token},
        )
        raise_for_twitch_status(response)
