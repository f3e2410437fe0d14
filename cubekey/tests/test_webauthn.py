from __future__ import annotations

import hashlib
import json

import cbor2
import pytest
from fido2.cose import CoseKey
from fido2.webauthn import AttestationObject, AuthenticatorData

from cubekey.derivation import derive
from cubekey.errors import EncodingError
from cubekey.webauthn import (
    build_attestation_object,
    build_authenticator_data,
    build_client_data,
    build_cose_key,
    sign_assertion,
    signed_payload,
)


@pytest.fixture(scope="module")
def key():
    return derive("00112233", "s", seed="example.com", iterations=1_000)


def test_build_cose_key_encodes_okp_eddsa(key):
    encoded = build_cose_key(key.public_key)
    decoded = cbor2.loads(encoded)
    assert decoded == {1: 1, 3: -8, -1: 6, -2: key.public_key}
    # the map is written in the order kty, alg, crv, x
    assert encoded[:7] == b"\xa4\x01\x01\x03\x27\x20\x06"


def test_build_cose_key_es256_splits_point():
    point = bytes(range(64))
    decoded = cbor2.loads(build_cose_key(point, -7))
    assert decoded == {1: 2, 3: -7, -1: 1, -2: point[:32], -3: point[32:]}


@pytest.mark.parametrize("public_key, algorithm", [(bytes(32), -7), (bytes(64), -8), (bytes(32), -257)])
def test_build_cose_key_refuses_mismatched_key_types(public_key, algorithm):
    with pytest.raises(EncodingError):
        build_cose_key(public_key, algorithm)


def test_build_authenticator_data_contains_attestation(key):
    cose_key = build_cose_key(key.public_key)
    auth_data = build_authenticator_data(
        rp_id="example.com",
        sign_count=0,
        attested_credential=(key.credential_id, cose_key),
    )
    assert len(auth_data) == 37 + 16 + 2 + len(key.credential_id) + len(cose_key)
    assert auth_data[:32] == hashlib.sha256(b"example.com").digest()
    assert auth_data[32] == 0x41
    assert auth_data[33:37] == b"\x00\x00\x00\x00"
    assert auth_data[37:53] == bytes(16)
    assert int.from_bytes(auth_data[53:55], "big") == len(key.credential_id)

    parsed = AuthenticatorData(auth_data)
    assert parsed.rp_id_hash == hashlib.sha256(b"example.com").digest()
    assert parsed.counter == 0
    assert parsed.credential_data.credential_id == key.credential_id
    assert parsed.credential_data.public_key[-2] == key.public_key


def test_build_authenticator_data_for_assertion_is_37_bytes():
    auth_data = build_authenticator_data("example.com", 7)
    assert len(auth_data) == 37
    assert auth_data[32] == 0x05
    assert int.from_bytes(auth_data[33:37], "big") == 7


def test_build_authenticator_data_uses_custom_aaguid(key):
    aaguid = bytes(range(16))
    auth_data = build_authenticator_data(
        "example.com", 0, (key.credential_id, build_cose_key(key.public_key)), aaguid=aaguid
    )
    assert auth_data[37:53] == aaguid


def test_build_authenticator_data_rejects_bad_counter():
    with pytest.raises(EncodingError):
        build_authenticator_data("example.com", -1)
    with pytest.raises(EncodingError):
        build_authenticator_data("example.com", 2**32)


def test_build_attestation_object_wraps_data(key):
    auth_data = build_authenticator_data(
        "example.com", 0, (key.credential_id, build_cose_key(key.public_key))
    )
    obj = build_attestation_object(auth_data)
    decoded = cbor2.loads(obj)
    assert decoded == {"fmt": "none", "attStmt": {}, "authData": auth_data}

    attestation = AttestationObject(obj)
    assert attestation.fmt == "none"
    assert attestation.att_stmt == {}
    assert attestation.auth_data == auth_data


def test_build_client_data_layout():
    client_data = build_client_data("webauthn.create", bytes([1, 2, 3]), "https://example.com")
    assert client_data == (
        b'{"type":"webauthn.create","challenge":"AQID",'
        b'"origin":"https://example.com","crossOrigin":false}'
    )
    assert json.loads(client_data)["crossOrigin"] is False


def test_assertion_signature_verifies_with_cose_key(key):
    auth_data = build_authenticator_data("example.com", 0)
    client_data = build_client_data("webauthn.get", b"challenge", "https://example.com")
    signature = sign_assertion(key, auth_data, client_data)

    cose = CoseKey.parse(cbor2.loads(build_cose_key(key.public_key)))
    cose.verify(signed_payload(auth_data, client_data), signature)
    assert signed_payload(auth_data, client_data)[37:] == hashlib.sha256(client_data).digest()
