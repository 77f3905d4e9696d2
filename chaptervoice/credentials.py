"""Secure credential storage for the TTS provider API key.

Responsibilities:
- Persist provider API keys in the OS keyring, one entry per provider.
- Never log or echo secret values.

Key types:
- `CredentialStore`: interface for provider credential persistence.
- `KeyringCredentialStore`: keyring-backed secure credential storage.
"""

from __future__ import annotations

from dataclasses import dataclass

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

_DEFAULT_SERVICE_NAME = "chaptervoice"


class CredentialStore:
    """Interface for secure provider credential operations."""

    def get_api_key(self, provider: str) -> str | None:
        """Load the stored API key of `provider`, when present."""

        raise NotImplementedError

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Persist an API key for `provider`."""

        raise NotImplementedError

    def clear_api_key(self, provider: str) -> bool:
        """Delete a stored API key and return whether one existed."""

        raise NotImplementedError


@dataclass(slots=True)
class KeyringCredentialStore(CredentialStore):
    """Secure credential store backed by the `keyring` package."""

    service_name: str = _DEFAULT_SERVICE_NAME

    @staticmethod
    def _account_name(provider: str) -> str:
        return f"{provider.strip().lower() or 'openai'}_api_key"

    def get_api_key(self, provider: str) -> str | None:
        """Return a normalized API key, or `None` when missing or the backend fails."""

        try:
            value = keyring.get_password(self.service_name, self._account_name(provider))
        except KeyringError:
            return None
        if value is None:
            return None
        return value.strip() or None

    def set_api_key(self, provider: str, api_key: str) -> None:
        normalized = api_key.strip()
        if not normalized:
            raise ValueError("API key must be a non-empty string.")
        keyring.set_password(self.service_name, self._account_name(provider), normalized)

    def clear_api_key(self, provider: str) -> bool:
        if self.get_api_key(provider) is None:
            return False
        try:
            keyring.delete_password(self.service_name, self._account_name(provider))
        except PasswordDeleteError:
            return False
        return True


def create_credential_store() -> CredentialStore:
    """Create the default secure credential store implementation."""

    return KeyringCredentialStore()
