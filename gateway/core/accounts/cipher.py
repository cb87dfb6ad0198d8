"""Encrypt/decrypt boundary for stored provider tokens."""

from __future__ import annotations

import abc
import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from gateway.core.oauth.exceptions import ConfigurationError, StorageError


class TokenCipher(abc.ABC):
    """Opaque encrypt/decrypt service for token fields."""

    @abc.abstractmethod
    def encrypt(self, plaintext: str) -> str:
        pass

    @abc.abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        pass


class FernetTokenCipher(TokenCipher):
    """Fernet (AES-128-CBC + HMAC) cipher keyed from a passphrase.

    Example:
        >>> cipher = FernetTokenCipher("correct horse battery staple")
        >>> cipher.decrypt(cipher.encrypt("sk-123"))
        'sk-123'
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ConfigurationError("GATEWAY_SECRET is required to encrypt provider tokens")
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise StorageError("Stored token cannot be decrypted with the configured secret") from e


class PlaintextTokenCipher(TokenCipher):
    """Identity cipher for tests. Never wire this into a running server."""

    def encrypt(self, plaintext: str) -> str:
        return plaintext

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext
