"""Persisted entropy secret and KDF parameters, kept in the keyring."""

from __future__ import annotations

import logging
import secrets
import threading
from typing import Optional

import keyring
from keyring.errors import KeyringError

from .config import AuthenticatorSettings
from .errors import DerivationUnavailable
from .models import ScrambleHash

LOGGER = logging.getLogger(__name__)

SECRET_ENTRY = "entropy-secret"
ITERATIONS_ENTRY = "kdf-iterations"
SCRAMBLE_ENTRY = "scramble-hash"


def generate_secret() -> str:
    return secrets.token_urlsafe(32)


class SecretVault:
    def __init__(self, settings: AuthenticatorSettings):
        self.settings = settings
        self.service = settings.keyring_service
        self._lock = threading.Lock()

    # Entropy secret ----------------------------------------------------
    def get_secret(self) -> str:
        """Return the secret mixed into derivation, or "" when disabled."""
        if not self.settings.use_entropy_secret:
            return ""
        with self._lock:
            try:
                secret = keyring.get_password(self.service, SECRET_ENTRY)
                if secret:
                    return secret
                if not self.settings.auto_create_secret:
                    raise DerivationUnavailable("Entropy secret is required but missing")
                secret = generate_secret()
                keyring.set_password(self.service, SECRET_ENTRY, secret)
            except KeyringError as exc:
                raise DerivationUnavailable(f"Keyring unavailable: {exc}") from exc
        LOGGER.info("Created new entropy secret")
        return secret

    def has_secret(self) -> bool:
        return bool(keyring.get_password(self.service, SECRET_ENTRY))

    def set_secret(self, secret: str) -> None:
        if not secret:
            raise ValueError("secret cannot be empty")
        keyring.set_password(self.service, SECRET_ENTRY, secret)

    def clear_secret(self) -> None:
        if self.has_secret():
            keyring.delete_password(self.service, SECRET_ENTRY)

    # KDF iterations ----------------------------------------------------
    def iterations(self) -> int:
        """Persisted iteration count; the default is pinned on first use."""
        with self._lock:
            stored = keyring.get_password(self.service, ITERATIONS_ENTRY)
            if stored:
                return int(stored)
            count = self.settings.default_iterations
            keyring.set_password(self.service, ITERATIONS_ENTRY, str(count))
        LOGGER.info("Pinned PBKDF2 iteration count at %d", count)
        return count

    def has_iterations(self) -> bool:
        return keyring.get_password(self.service, ITERATIONS_ENTRY) is not None

    def set_iterations(self, count: int) -> None:
        if count < 1:
            raise ValueError("iterations must be positive")
        keyring.set_password(self.service, ITERATIONS_ENTRY, str(count))

    # Fixed scramble ----------------------------------------------------
    def scramble_hash(self) -> Optional[ScrambleHash]:
        stored = keyring.get_password(self.service, SCRAMBLE_ENTRY)
        if stored is None:
            return None
        return ScrambleHash.model_validate_json(stored)

    def set_scramble_hash(self, record: ScrambleHash) -> None:
        keyring.set_password(self.service, SCRAMBLE_ENTRY, record.model_dump_json())
