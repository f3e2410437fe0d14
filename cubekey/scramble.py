"""Iteration calibration and the fixed-scramble verifier."""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from typing import Callable, Optional, Sequence

from .derivation import check_physical_state, stretch
from .models import ScrambleHash
from .vault import SecretVault

LOGGER = logging.getLogger(__name__)

CANDIDATE_ITERATIONS = (50_000, 100_000, 150_000, 200_000, 250_000, 300_000, 500_000)
FALLBACK_ITERATIONS = 100_000
SALT_BYTES = 16
VERIFIER_LENGTH = 64


def calibrate_iterations(
    target_ms: float = 50.0,
    candidates: Sequence[int] = CANDIDATE_ITERATIONS,
    timer: Callable[[], float] = time.perf_counter,
) -> int:
    """Highest candidate count whose derivation stays under ``target_ms``."""
    salt = secrets.token_bytes(SALT_BYTES)
    best: Optional[int] = None
    for count in candidates:
        start = timer()
        stretch(b"test", salt, count)
        elapsed_ms = (timer() - start) * 1000
        LOGGER.debug("PBKDF2 %d iterations took %.1fms", count, elapsed_ms)
        if elapsed_ms > target_ms:
            break
        best = count
    if best is None:
        LOGGER.warning("No candidate met %.0fms, using %d", target_ms, FALLBACK_ITERATIONS)
        return FALLBACK_ITERATIONS
    return best


def generate_scramble_hash(state: str, iterations: int) -> ScrambleHash:
    check_physical_state(state)
    salt = secrets.token_bytes(SALT_BYTES)
    digest = stretch(state.encode("utf-8"), salt, iterations, VERIFIER_LENGTH)
    return ScrambleHash(iterations=iterations, salt=salt.hex(), hash=digest.hex())


def verify_scramble_hash(state: str, record: ScrambleHash) -> bool:
    digest = stretch(
        state.encode("utf-8"),
        bytes.fromhex(record.salt),
        record.iterations,
        VERIFIER_LENGTH,
    )
    return hmac.compare_digest(digest.hex(), record.hash.lower())


def set_scramble(
    state: str,
    vault: SecretVault,
    *,
    calibrate: bool = True,
    credentials_exist: bool = False,
) -> ScrambleHash:
    """Pin the iteration count and record a verifier for ``state``.

    The count is part of every derivation, so it is only calibrated while
    no credential depends on it.
    """
    check_physical_state(state, vault.settings.expected_state_length)
    if credentials_exist:
        iterations = vault.iterations()
        LOGGER.info("Credentials exist; keeping %d iterations", iterations)
    elif calibrate:
        iterations = calibrate_iterations(vault.settings.kdf_target_ms)
        vault.set_iterations(iterations)
    else:
        iterations = vault.iterations()
    record = generate_scramble_hash(state, iterations)
    vault.set_scramble_hash(record)
    LOGGER.info("Stored scramble verifier (%d iterations)", iterations)
    return record
