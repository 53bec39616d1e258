"""Symmetric encryption utilities for protecting stored tokens."""

from __future__ import annotations

import base64
import binascii
import logging

from cryptography.fernet import Fernet, InvalidToken

from accounting_gateway.core.errors import CryptoError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32


def parse_encryption_key(raw: str) -> bytes:
    """Decode a provisioned key given as 64 hex characters or urlsafe base64."""
    value = (raw or "").strip()
    if not value:
        raise ValueError("Token encryption key must be provided.")
    key: bytes | None = None
    if len(value) == KEY_LENGTH * 2:
        try:
            key = bytes.fromhex(value)
        except ValueError:
            key = None
    if key is None:
        try:
            padded = value + "=" * (-len(value) % 4)
            key = base64.urlsafe_b64decode(padded.encode("ascii"))
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Token encryption key is not valid hex or base64.") from exc
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Token encryption key must decode to {KEY_LENGTH} bytes.")
    return key


class TokenCipherService:
    """Encrypt and decrypt sensitive strings with a provisioned Fernet key.

    Every call to :meth:`encrypt` draws a fresh random IV, so encrypting the
    same plaintext twice never yields the same ciphertext. Ciphertexts are
    authenticated; tampering or a key mismatch raises :class:`CryptoError`.
    """

    def __init__(self, *, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Token encryption key must be {KEY_LENGTH} bytes.")
        self._fernet = Fernet(base64.urlsafe_b64encode(key))

    @classmethod
    def from_secret(cls, secret: str) -> "TokenCipherService":
        return cls(key=parse_encryption_key(secret))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string and return the ciphertext."""
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return token.decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a ciphertext string and return the plaintext."""
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
            return plaintext.decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            logger.critical("Stored ciphertext failed to decrypt; key mismatch or corruption.")
            raise CryptoError(
                "Failed to decrypt token; invalid ciphertext provided."
            ) from exc


__all__ = ["TokenCipherService", "parse_encryption_key"]
