"""Sealing of user SCM tokens at rest.

Tokens are encrypted with Fernet (AES-128-CBC + HMAC-SHA256) before they
reach the entity store and unsealed only for the single commit lookup that
needs them.
"""

from __future__ import annotations

import os
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from buildrelay.errors import CredentialError


class TokenUnsealer(Protocol):
    def unseal(self, sealed: str) -> str: ...


class TokenSealer:
    """Fernet-backed token sealer."""

    def __init__(self, key: str | bytes):
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise CredentialError("Invalid token encryption key") from exc

    @classmethod
    def from_env(cls, key_env: str) -> TokenSealer:
        """Build a sealer from the key stored in environment variable ``key_env``."""
        key = os.environ.get(key_env)
        if not key:
            raise CredentialError(f"Token encryption key not configured. Set {key_env}")
        return cls(key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def seal(self, token: str) -> str:
        return self._fernet.encrypt(token.encode()).decode()

    def unseal(self, sealed: str) -> str:
        if not sealed:
            raise CredentialError("No stored token")
        try:
            return self._fernet.decrypt(sealed.encode()).decode()
        except InvalidToken as exc:
            raise CredentialError("Stored token could not be unsealed") from exc
