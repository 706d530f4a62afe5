"""Fernet-based field encryption for insight narratives and contact details.

Insight messages, recommendations and evidence describe a person's health,
and contact phone numbers identify them; both are encrypted before they
reach SQLite. Numeric observation values and insight flags stay in the
clear so trend and inbox queries can use indexes.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class FieldEncryptor:
    """Symmetric JSON-field encryption backed by Fernet.

    Usage::

        encryptor = FieldEncryptor(key=settings.encryption_key)
        token = encryptor.encrypt({"message": "...", "recommendations": [...]})
        narrative = encryptor.decrypt(token)
    """

    def __init__(self, key: str) -> None:
        """Build the cipher from a Fernet key.

        Raises:
            EncryptionError: If the key is empty or not a valid Fernet key.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.strip().encode("utf-8"))
        except (ValueError, TypeError) as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    def encrypt(self, data: Any) -> str:
        """Serialize ``data`` to compact JSON and return the Fernet token.

        Args:
            data: Any JSON-serializable value. ``None`` encrypts to the empty
                string so nullable columns stay NULL-ish.

        Returns:
            URL-safe Fernet token, or ``""`` for ``None``.

        Raises:
            EncryptionError: If ``data`` cannot be serialized to JSON.
        """
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str | None) -> Any:
        """Reverse :meth:`encrypt`.

        Args:
            token: Fernet token produced by :meth:`encrypt`.

        Returns:
            The decoded JSON value, or ``None`` for an empty or missing token.

        Raises:
            EncryptionError: If the token is invalid, was made with another
                key, or does not hold JSON.
        """
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        try:
            return json.loads(plaintext)
        except ValueError as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        """Return a new URL-safe base64 Fernet key."""
        return Fernet.generate_key().decode("utf-8")
