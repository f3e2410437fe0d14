"""Deterministic Ed25519 key derivation from a physical cube state."""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import PhysicalStateRejected

LOGGER = logging.getLogger(__name__)

DOMAIN_SALT = b"cubekey/ed25519/v1"
SEED_LENGTH = 32

_HEX_STATE = re.compile(r"[0-9a-fA-F]+")


class DerivedKey:
    """An Ed25519 keypair re-derived for a single ceremony."""

    def __init__(self, private_key: ed25519.Ed25519PrivateKey):
        self._private_key = private_key
        self.public_key = private_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        self.credential_id = credential_id_for(self.public_key)

    @property
    def secret_key(self) -> bytes:
        """64-byte seed || public key, the layout NaCl calls a secret key."""
        seed = self._private_key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        return seed + self.public_key

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def public_key_der(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )


def credential_id_for(public_key: bytes) -> bytes:
    return hashlib.sha256(public_key).digest()


def check_physical_state(state: str, expected_length: Optional[int] = None) -> str:
    if not isinstance(state, str) or not _HEX_STATE.fullmatch(state):
        raise PhysicalStateRejected("Physical state must be a non-empty hex string")
    if expected_length is not None and len(state) != expected_length:
        raise PhysicalStateRejected(
            f"Physical state must be {expected_length} hex characters"
        )
    return state


def stretch(entropy: bytes, salt: bytes, iterations: int, length: int = SEED_LENGTH) -> bytes:
    if iterations < 1:
        raise ValueError("iterations must be positive")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=length,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(entropy)


def derive(
    physical_state: str,
    secret: str,
    seed: Optional[str] = None,
    iterations: int = 100_000,
) -> DerivedKey:
    """Derive the keypair for ``physical_state`` and ``secret``.

    ``seed`` salts the KDF; without one the fixed domain salt is used. The
    result depends only on the arguments, so authentication re-derives the
    key created at registration without it ever being stored.
    """
    check_physical_state(physical_state)
    entropy = f"{physical_state}:{secret or ''}".encode("utf-8")
    salt = seed.encode("utf-8") if seed else DOMAIN_SALT
    key_seed = stretch(entropy, salt, iterations)
    key = DerivedKey(ed25519.Ed25519PrivateKey.from_private_bytes(key_seed))
    LOGGER.debug("Derived Ed25519 key with %d iterations", iterations)
    return key
