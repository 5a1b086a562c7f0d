"""Authenticated encryption for secrets at rest.

Client secrets and OAuth tokens are stored as::

    hex(salt):hex(nonce):hex(tag):hex(ciphertext)

Each call derives a fresh AES-256 key from the master secret
(``ENCRYPTION_KEY``) and a random salt with PBKDF2-HMAC-SHA512, then seals the
plaintext with AES-GCM under a random nonce.  The stored string is therefore
self-contained given only the master secret, and encrypting the same value
twice never yields the same output.
"""

from __future__ import annotations

import asyncio
import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from credhub.config import Settings, get_settings

logger = logging.getLogger(__name__)

_SALT_LENGTH = 64
_NONCE_LENGTH = 16
_TAG_LENGTH = 16
_KEY_LENGTH = 32
_KDF_ITERATIONS = 100_000
_DELIMITER = ":"


class MisconfiguredSecretError(RuntimeError):
    """Raised when no master encryption secret is configured."""

    def __init__(self) -> None:
        super().__init__("ENCRYPTION_KEY is not configured")


class TamperOrCorruptionError(ValueError):
    """Raised when stored ciphertext cannot be authenticated or parsed."""


class SecretCodec:
    """Encrypt and decrypt secrets with a process-wide master secret.

    Args:
        master_secret: The long-lived secret keys are derived from.  An empty
            value is accepted here so the application can start far enough to
            report the problem, but every encrypt/decrypt call then fails with
            :class:`MisconfiguredSecretError`.
    """

    def __init__(self, master_secret: str) -> None:
        self._master_secret = master_secret.encode("utf-8") if master_secret else b""

    @property
    def is_configured(self) -> bool:
        return bool(self._master_secret)

    def ensure_configured(self) -> None:
        if not self._master_secret:
            raise MisconfiguredSecretError()

    def _derive_key(self, salt: bytes) -> bytes:
        self.ensure_configured()
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=_KEY_LENGTH,
            salt=salt,
            iterations=_KDF_ITERATIONS,
        )
        return kdf.derive(self._master_secret)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` and return the delimited storage string."""
        salt = os.urandom(_SALT_LENGTH)
        key = self._derive_key(salt)
        nonce = os.urandom(_NONCE_LENGTH)

        sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]

        return _DELIMITER.join((salt.hex(), nonce.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, stored: str) -> str:
        """Decrypt a string produced by :meth:`encrypt`.

        Raises:
            MisconfiguredSecretError: If no master secret is configured.
            TamperOrCorruptionError: If the string is malformed or fails
                authentication.
        """
        self.ensure_configured()

        parts = stored.split(_DELIMITER)
        if len(parts) != 4:
            raise TamperOrCorruptionError("Invalid encrypted data format")

        try:
            salt, nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as exc:
            raise TamperOrCorruptionError("Encrypted data is not valid hex") from exc

        if len(salt) != _SALT_LENGTH or len(nonce) != _NONCE_LENGTH or len(tag) != _TAG_LENGTH:
            raise TamperOrCorruptionError("Encrypted data has unexpected component sizes")

        key = self._derive_key(salt)
        try:
            plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            logger.warning("Rejected stored secret: authentication tag mismatch")
            raise TamperOrCorruptionError("Encrypted data failed authentication") from exc

        return plaintext.decode("utf-8")

    async def encrypt_async(self, plaintext: str) -> str:
        """Run :meth:`encrypt` in a worker thread; key derivation is CPU-bound."""
        return await asyncio.to_thread(self.encrypt, plaintext)

    async def decrypt_async(self, stored: str) -> str:
        return await asyncio.to_thread(self.decrypt, stored)


def build_secret_codec(settings: Settings | None = None) -> SecretCodec:
    settings = settings or get_settings()
    return SecretCodec(settings.ENCRYPTION_KEY)


@lru_cache
def get_secret_codec() -> SecretCodec:
    """Return the process-wide codec built from application settings."""
    return build_secret_codec()
