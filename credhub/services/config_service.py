"""Twitch application configs (client id + encrypted client secret)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from credhub.config import Settings, get_settings
from credhub.models import TwitchConfig
from credhub.services import records
from credhub.services.access_control import ServiceError, get_owned_config
from credhub.services.secret_codec import SecretCodec, get_secret_codec
from credhub.twitch_gateway.client import InvalidCredentialsError, TwitchAuthClient

logger = logging.getLogger(__name__)

SECRET_MASK = "********"


class ConfigConflictError(ServiceError):
    """The owner already has a config with this client id."""


class ConfigInUseError(ServiceError):
    """Saved tokens still reference the config."""


@dataclass
class ConfigView:
    """A config with its client secret resolved for display."""

    record: TwitchConfig
    client_secret: str
    tokens_count: int = 0


@dataclass(frozen=True)
class CredentialCheck:
    valid: bool
    message: str
    expires_in: int | None = None
    error: str | None = None


class ConfigService:
    def __init__(
        self,
        db: AsyncSession,
        codec: SecretCodec | None = None,
        settings: Settings | None = None,
        twitch: TwitchAuthClient | None = None,
    ) -> None:
        self._db = db
        self._codec = codec or get_secret_codec()
        self._settings = settings or get_settings()
        self._twitch = twitch

    async def list_configs(self, owner_id: str) -> list[ConfigView]:
        """List the owner's configs with token counts.

        Client secrets are decrypted only when ``EXPOSE_CLIENT_SECRETS_IN_LIST``
        is enabled; otherwise they are masked.
        """
        configs = await records.list_configs(self._db, owner_id)
        counts = await records.count_tokens_by_config(self._db, owner_id)
        if self._settings.EXPOSE_CLIENT_SECRETS_IN_LIST:
            client_secrets = await asyncio.gather(
                *(self._codec.decrypt_async(config.client_secret_encrypted) for config in configs)
            )
        else:
            client_secrets = [SECRET_MASK] * len(configs)

        return [
            ConfigView(record=config, client_secret=secret, tokens_count=counts.get(config.id, 0))
            for config, secret in zip(configs, client_secrets)
        ]

    async def get_config(self, owner_id: str, config_id: str) -> ConfigView:
        config = await get_owned_config(self._db, owner_id, config_id)
        logger.info("Config %s client secret revealed to owner %s", config.id, owner_id)
        return ConfigView(
            record=config,
            client_secret=await self._codec.decrypt_async(config.client_secret_encrypted),
            tokens_count=await records.count_tokens_for_config(self._db, config.id),
        )

    async def create_config(
        self,
        owner_id: str,
        client_id: str,
        client_secret: str,
        name: str | None = None,
    ) -> ConfigView:
        if await records.get_config_by_client_id(self._db, owner_id, client_id) is not None:
            raise ConfigConflictError("A configuration with this Client ID already exists")

        config = await records.create_config(
            self._db,
            owner_id,
            client_id,
            await self._codec.encrypt_async(client_secret),
            name=name or None,
        )
        logger.info("Created Twitch config %s for owner %s", config.id, owner_id)
        return ConfigView(record=config, client_secret=client_secret)

    async def update_config(
        self,
        owner_id: str,
        config_id: str,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        name: str | None = None,
    ) -> ConfigView:
        """Update a config; omitted fields keep their value."""
        config = await get_owned_config(self._db, owner_id, config_id)

        if client_id and client_id != config.client_id:
            existing = await records.get_config_by_client_id(self._db, owner_id, client_id)
            if existing is not None:
                raise ConfigConflictError("A configuration with this Client ID already exists")

        await records.update_config(
            self._db,
            config,
            client_id=client_id or None,
            client_secret_encrypted=await self._codec.encrypt_async(client_secret) if client_secret else None,
            name=name,
        )
        logger.info("Updated Twitch config %s", config.id)
        return ConfigView(
            record=config,
            client_secret=client_secret or await self._codec.decrypt_async(config.client_secret_encrypted),
            tokens_count=await records.count_tokens_for_config(self._db, config.id),
        )

    async def delete_config(self, owner_id: str, config_id: str) -> None:
        config = await get_owned_config(self._db, owner_id, config_id)

        in_use = await records.count_tokens_for_config(self._db, config.id)
        if in_use:
            raise ConfigInUseError(
                f"Cannot delete configuration: {in_use} saved token(s) still use it. Delete them first."
            )

        await records.delete_config(self._db, config)
        logger.info("Deleted Twitch config %s", config_id)

    async def validate_credentials(self, client_id: str, client_secret: str) -> CredentialCheck:
        """Check a client id / secret pair against Twitch without saving anything.

        A rejected pair is reported as ``valid=False``; an unreachable Twitch
        still raises.
        """
        if self._twitch is None:
            raise RuntimeError("ConfigService needs a TwitchAuthClient to validate credentials")

        try:
            result = await self._twitch.client_credentials_grant(client_id, client_secret)
        except InvalidCredentialsError as exc:
            logger.info("Twitch rejected credentials for client %s: %s", client_id, exc.message)
            return CredentialCheck(
                valid=False,
                message="Invalid Client ID or Client Secret",
                error=exc.message,
            )

        return CredentialCheck(valid=True, message="Client ID and Secret are valid", expires_in=result.expires_in)
