"""Signing-key providers.  Keys are addressed by id so they can be rotated."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod

import structlog
from pydantic import BaseModel, Field

from auditguard.core.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


class SigningKey(BaseModel):
    key_id: str = Field(..., min_length=1)
    secret: bytes = Field(..., min_length=16)

    model_config = {"frozen": True}

    def __repr__(self) -> str:
        return f"SigningKey(key_id={self.key_id!r})"


class SecretsProvider(ABC):
    """Supplies the HMAC key used to sign events.

    New events are signed with :meth:`active_key`; verification looks the
    key up by the id recorded at signing time.
    """

    @abstractmethod
    def active_key(self) -> SigningKey:
        """Return the key new signatures should use."""

    @abstractmethod
    def get_key(self, key_id: str) -> SigningKey | None:
        """Return the key with *key_id*, or ``None`` if it is unknown."""


class StaticSecretsProvider(SecretsProvider):
    """In-memory provider holding every key it has been given.

    Example::

        secrets = StaticSecretsProvider("k1", b"0123456789abcdef0123")
        secrets.rotate("k2", b"fedcba9876543210fedc")
    """

    def __init__(self, key_id: str, secret: bytes | str) -> None:
        self._keys: dict[str, SigningKey] = {}
        self._active_id = key_id
        self._add(key_id, secret)

    def _add(self, key_id: str, secret: bytes | str) -> None:
        raw = secret.encode("utf-8") if isinstance(secret, str) else secret
        self._keys[key_id] = SigningKey(key_id=key_id, secret=raw)

    def rotate(self, key_id: str, secret: bytes | str) -> StaticSecretsProvider:
        """Make *key_id* the active key.  Older keys stay available for verification."""
        self._add(key_id, secret)
        self._active_id = key_id
        logger.info("signing_key_rotated", key_id=key_id)
        return self

    def active_key(self) -> SigningKey:
        return self._keys[self._active_id]

    def get_key(self, key_id: str) -> SigningKey | None:
        return self._keys.get(key_id)


class EnvSecretsProvider(SecretsProvider):
    """Reads the key from ``AUDITGUARD_SIGNING_KEY`` / ``AUDITGUARD_SIGNING_KEY_ID``.

    The environment is read on every call so an external rotation takes
    effect without a restart.

    Raises:
        ConfigurationError: If the key variable is unset or empty.
    """

    KEY_ENV = "AUDITGUARD_SIGNING_KEY"
    KEY_ID_ENV = "AUDITGUARD_SIGNING_KEY_ID"

    def active_key(self) -> SigningKey:
        secret = os.environ.get(self.KEY_ENV, "").strip()
        if not secret:
            raise ConfigurationError(
                f"{self.KEY_ENV} is not set", code="MISSING_SIGNING_KEY"
            )
        key_id = os.environ.get(self.KEY_ID_ENV, "").strip() or "default"
        return SigningKey(key_id=key_id, secret=secret.encode("utf-8"))

    def get_key(self, key_id: str) -> SigningKey | None:
        try:
            key = self.active_key()
        except ConfigurationError:
            return None
        return key if key.key_id == key_id else None
