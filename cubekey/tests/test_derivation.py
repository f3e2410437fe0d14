from __future__ import annotations

import hashlib
import random

import pytest
from cryptography.hazmat.primitives.asymmetric import ed25519

from cubekey.derivation import check_physical_state, derive
from cubekey.errors import PhysicalStateRejected

ITERATIONS = 1_000
HEX = "0123456789abcdef"


def test_derive_is_deterministic():
    first = derive("00112233", "s", seed="example.com", iterations=ITERATIONS)
    second = derive("00112233", "s", seed="example.com", iterations=ITERATIONS)
    assert first.public_key == second.public_key
    assert first.secret_key == second.secret_key
    assert first.credential_id == second.credential_id


def test_derived_key_shapes():
    key = derive("00112233", "s", iterations=ITERATIONS)
    assert len(key.public_key) == 32
    assert len(key.secret_key) == 64
    assert key.secret_key[32:] == key.public_key
    assert key.credential_id == hashlib.sha256(key.public_key).digest()


def test_signature_verifies_with_raw_public_key():
    key = derive("00112233", "s", iterations=ITERATIONS)
    signature = key.sign(b"message")
    ed25519.Ed25519PublicKey.from_public_bytes(key.public_key).verify(signature, b"message")


def test_seed_secret_and_iterations_change_the_key():
    base = derive("00112233", "s", seed="example.com", iterations=ITERATIONS)
    assert derive("00112233", "s", seed="other.com", iterations=ITERATIONS).public_key != base.public_key
    assert derive("00112233", "", seed="example.com", iterations=ITERATIONS).public_key != base.public_key
    assert derive("00112233", "s", seed="example.com", iterations=ITERATIONS + 1).public_key != base.public_key
    assert derive("00112233", "s", iterations=ITERATIONS).public_key != base.public_key


def test_single_character_changes_never_collide():
    rng = random.Random(1234)
    seen = set()
    for _ in range(100):
        state = "".join(rng.choice(HEX) for _ in range(16))
        position = rng.randrange(len(state))
        replacement = rng.choice(HEX.replace(state[position], ""))
        changed = state[:position] + replacement + state[position + 1 :]
        original_key = derive(state, "s", iterations=10).public_key
        changed_key = derive(changed, "s", iterations=10).public_key
        assert original_key != changed_key
        seen.update({original_key, changed_key})
    assert len(seen) >= 100


def test_single_character_secret_change_changes_key():
    assert (
        derive("00112233", "secret-a", iterations=ITERATIONS).public_key
        != derive("00112233", "secret-b", iterations=ITERATIONS).public_key
    )


@pytest.mark.parametrize("state", ["", "xyz", "00 11", "0x11", "0011\n"])
def test_non_hex_state_is_rejected(state):
    with pytest.raises(PhysicalStateRejected):
        check_physical_state(state)


def test_expected_length_is_enforced():
    assert check_physical_state("00112233", 8) == "00112233"
    with pytest.raises(PhysicalStateRejected):
        check_physical_state("0011223", 8)


def test_iterations_must_be_positive():
    with pytest.raises(ValueError):
        derive("00112233", "s", iterations=0)


def test_trailing_newline_is_not_part_of_a_valid_state():
    with pytest.raises(PhysicalStateRejected):
        derive("00112233\n", "s", iterations=ITERATIONS)
