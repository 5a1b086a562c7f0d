"""Token flow orchestration for Twitch app and user tokens.

Drives each OAuth grant to completion and maps the result into saved token
rows:

- **Client credentials** -- one round trip, new ``app`` token per call.
- **Device authorization** -- ``start`` returns Twitch's descriptor verbatim;
  ``poll`` is called repeatedly by the client at the returned interval and
  reports ``pending`` / ``success`` / ``denied`` / ``expired``.  Nothing is
  kept between calls: the device code and config id travel with every poll.
- **Authorization code** -- ``start`` builds the redirect URL, ``callback``
  exchanges the code.
- **Refresh** and **validate** for existing tokens.

Every secret is encrypted with :class:`~credhub.services.secret_codec.SecretCodec`
before it reaches the database.  No network call is retried here.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from credhub.config import Settings, get_settings
from credhub.constants import DeviceFlowStatus, TokenKind
from credhub.models import SavedToken, TwitchConfig
from credhub.services import records
from credhub.services.access_control import ServiceError, get_owned_config, get_owned_token
from credhub.services.secret_codec import SecretCodec, get_secret_codec
from credhub.twitch_gateway.client import (
    AccessDeniedError,
    DeviceAuthorization,
    DeviceCodeExpiredError,
    InvalidTokenError,
    TokenResult,
    TokenValidation,
    TwitchApiError,
    TwitchAuthClient,
)

logger = logging.getLogger(__name__)


class NotRefreshableError(ServiceError):
    """Raised when refresh is requested for an app token or one without a refresh secret."""

    def __init__(self) -> None:
        super().__init__("This token cannot be refreshed")


@dataclass
class IssuedToken:
    """A saved token together with the plaintext secrets just issued for it."""

    record: SavedToken
    access_token: str
    refresh_token: str | None = None


@dataclass
class DevicePollResult:
    status: DeviceFlowStatus
    token: IssuedToken | None = None
    message: str | None = None


@dataclass
class ValidationReport:
    valid: bool
    validation: TokenValidation | None = None
    message: str | None = None


@dataclass
class RevealedToken:
    record: SavedToken
    access_token: str
    refresh_token: str | None = None


class TokenService:
    """Orchestrates Twitch OAuth flows for one request.

    Args:
        db: Async session; the caller owns the transaction.
        twitch: Client for the Twitch identity endpoints.
        codec: Secret codec (defaults to the process-wide one).
        settings: Application settings.
    """

    def __init__(
        self,
        db: AsyncSession,
        twitch: TwitchAuthClient,
        codec: SecretCodec | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._db = db
        self._twitch = twitch
        self._codec = codec or get_secret_codec()
        self._settings = settings or get_settings()

    @staticmethod
    def generate_state() -> str:
        """Generate a random state parameter for CSRF protection."""
        return secrets.token_urlsafe(32)

    # ------------------------------------------------------------------
    # Client credentials
    # ------------------------------------------------------------------

    async def generate_app_token(self, owner_id: str, config_id: str, name: str | None = None) -> IssuedToken:
        """Mint a new app access token for a config.

        Each call creates an independent token row.
        """
        config = await get_owned_config(self._db, owner_id, config_id)
        client_secret = await self._codec.decrypt_async(config.client_secret_encrypted)

        result = await self._twitch.client_credentials_grant(config.client_id, client_secret)

        token = await records.create_token(
            self._db,
            config,
            TokenKind.APP,
            await self._codec.encrypt_async(result.access_token),
            scopes=[],
            name=name or None,
            expires_at=result.expires_at,
        )
        logger.info("Issued app token %s for config %s", token.id, config.id)
        return IssuedToken(record=token, access_token=result.access_token)

    # ------------------------------------------------------------------
    # Device authorization
    # ------------------------------------------------------------------

    async def start_device_flow(self, owner_id: str, config_id: str, scopes: list[str]) -> DeviceAuthorization:
        """Begin a device flow.  Nothing is persisted."""
        config = await get_owned_config(self._db, owner_id, config_id)
        return await self._twitch.start_device_grant(config.client_id, scopes)

    async def poll_device_flow(
        self,
        owner_id: str,
        config_id: str,
        device_code: str,
        name: str | None = None,
    ) -> DevicePollResult:
        """Make a single poll attempt for a device code.

        Denial and expiry are reported as statuses, not raised.  Any other
        provider or transport error propagates.
        """
        config = await get_owned_config(self._db, owner_id, config_id)

        try:
            result = await self._twitch.poll_device_grant(config.client_id, device_code)
        except AccessDeniedError:
            return DevicePollResult(
                status=DeviceFlowStatus.DENIED,
                message="User denied the authorization request",
            )
        except DeviceCodeExpiredError:
            return DevicePollResult(
                status=DeviceFlowStatus.EXPIRED,
                message="The device code has expired. Please start over.",
            )

        if result is None:
            return DevicePollResult(status=DeviceFlowStatus.PENDING)

        issued = await self._save_user_token(config, result, name)
        return DevicePollResult(status=DeviceFlowStatus.SUCCESS, token=issued)

    # ------------------------------------------------------------------
    # Authorization code
    # ------------------------------------------------------------------

    async def start_authorization_flow(
        self,
        owner_id: str,
        config_id: str,
        scopes: list[str],
        state: str,
        redirect_uri: str | None = None,
    ) -> dict[str, str]:
        """Build the Twitch authorization URL for a config.

        Returns:
            Dict with "authorization_url" and "redirect_uri".
        """
        config = await get_owned_config(self._db, owner_id, config_id)
        redirect_uri = redirect_uri or self._settings.TWITCH_REDIRECT_URI

        url = self._twitch.build_authorization_url(config.client_id, redirect_uri, scopes, state)
        return {"authorization_url": url, "redirect_uri": redirect_uri}

    async def complete_authorization_flow(
        self,
        owner_id: str,
        config_id: str,
        code: str,
        name: str | None = None,
        redirect_uri: str | None = None,
    ) -> IssuedToken:
        """Exchange an authorization code and save the resulting user token."""
        config = await get_owned_config(self._db, owner_id, config_id)
        client_secret = await self._codec.decrypt_async(config.client_secret_encrypted)
        redirect_uri = redirect_uri or self._settings.TWITCH_REDIRECT_URI

        result = await self._twitch.exchange_authorization_code(
            config.client_id,
            client_secret,
            code,
            redirect_uri,
        )
        return await self._save_user_token(config, result, name)

    async def _save_user_token(self, config: TwitchConfig, result: TokenResult, name: str | None) -> IssuedToken:
        # The grant response does not say who authorized; ask Twitch.
        validation = await self._twitch.validate_token(result.access_token)

        token = await records.create_token(
            self._db,
            config,
            TokenKind.USER,
            await self._codec.encrypt_async(result.access_token),
            refresh_token_encrypted=await self._codec.encrypt_async(result.refresh_token) if result.refresh_token else None,
            scopes=result.scopes,
            channel_login=validation.login,
            channel_id=validation.user_id,
            name=name or None,
            expires_at=result.expires_at,
        )
        logger.info(
            "Issued user token %s for %s via config %s",
            token.id,
            validation.login,
            config.id,
        )
        return IssuedToken(
            record=token,
            access_token=result.access_token,
            refresh_token=result.refresh_token,
        )

    # ------------------------------------------------------------------
    # Refresh / validate
    # ------------------------------------------------------------------

    async def refresh_token(self, owner_id: str, token_id: str) -> IssuedToken:
        """Refresh a user token in place.

        Raises:
            NotRefreshableError: App tokens and tokens without a refresh secret.
            InvalidGrantError: Twitch no longer accepts the refresh token;
                the saved token is dead.
        """
        token = await get_owned_token(self._db, owner_id, token_id)
        if token.token_type != TokenKind.USER or not token.refresh_token_encrypted:
            raise NotRefreshableError()

        refresh_secret = await self._codec.decrypt_async(token.refresh_token_encrypted)
        config = token.twitch_config
        client_secret = await self._codec.decrypt_async(config.client_secret_encrypted)

        result = await self._twitch.refresh_grant(config.client_id, client_secret, refresh_secret)

        # Twitch rotates refresh tokens; keep the old one if none came back.
        new_refresh = result.refresh_token or refresh_secret
        await records.update_token_secrets(
            self._db,
            token,
            access_token_encrypted=await self._codec.encrypt_async(result.access_token),
            refresh_token_encrypted=await self._codec.encrypt_async(new_refresh),
            scopes=result.scopes,
            expires_at=result.expires_at,
        )
        logger.info("Refreshed user token %s", token.id)
        return IssuedToken(record=token, access_token=result.access_token, refresh_token=new_refresh)

    async def validate_token(self, owner_id: str, token_id: str) -> ValidationReport:
        """Check a saved token with Twitch.

        A token Twitch no longer accepts is reported as ``valid=False``.
        """
        token = await get_owned_token(self._db, owner_id, token_id)
        access_token = await self._codec.decrypt_async(token.access_token_encrypted)

        try:
            validation = await self._twitch.validate_token(access_token)
        except InvalidTokenError:
            return ValidationReport(valid=False, message="Token is invalid or expired")

        return ValidationReport(valid=True, validation=validation)

    # ------------------------------------------------------------------
    # Listing / reveal / delete
    # ------------------------------------------------------------------

    async def list_tokens(self, owner_id: str) -> list[SavedToken]:
        return await records.list_tokens(self._db, owner_id)

    async def get_token(self, owner_id: str, token_id: str) -> RevealedToken:
        """Fetch one token with its secrets decrypted."""
        token = await get_owned_token(self._db, owner_id, token_id)
        logger.info("Token %s secrets revealed to owner %s", token.id, owner_id)
        return RevealedToken(
            record=token,
            access_token=await self._codec.decrypt_async(token.access_token_encrypted),
            refresh_token=(
                await self._codec.decrypt_async(token.refresh_token_encrypted) if token.refresh_token_encrypted else None
            ),
        )

    async def delete_token(self, owner_id: str, token_id: str, revoke: bool = False) -> None:
        """Delete a saved token, optionally revoking it at Twitch first.

        A failed revocation is logged; the local row is deleted regardless.
        """
        token = await get_owned_token(self._db, owner_id, token_id)

        if revoke:
            try:
                access_token = await self._codec.decrypt_async(token.access_token_encrypted)
                await self._twitch.revoke_token(token.twitch_config.client_id, access_token)
            except TwitchApiError as exc:
                logger.warning("Failed to revoke token %s at Twitch: %s", token.id, exc.message)

        await records.delete_token(self._db, token)
        logger.info("Deleted token %s (revoked=%s)", token_id, revoke)
