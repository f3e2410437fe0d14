"""Utilities for constructing WebAuthn-compliant binary structures."""

from __future__ import annotations

import hashlib
import json
from typing import Optional, Tuple

from . import cbor
from .errors import EncodingError
from .models import b64url_encode

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40
REGISTRATION_FLAGS = FLAG_UP | FLAG_AT
ASSERTION_FLAGS = FLAG_UP | FLAG_UV
AAGUID = bytes(16)

COSE_KTY_OKP = 1
COSE_KTY_EC2 = 2
COSE_ALG_EDDSA = -8
COSE_ALG_ES256 = -7
COSE_CRV_ED25519 = 6
COSE_CRV_P256 = 1

AUTH_DATA_PREFIX_LENGTH = 37

AttestedCredential = Tuple[bytes, bytes]


def build_cose_key(public_key: bytes, algorithm: int = COSE_ALG_EDDSA) -> bytes:
    """Encode a raw public key as a COSE_Key structure."""
    if algorithm == COSE_ALG_EDDSA:
        if len(public_key) != 32:
            raise EncodingError("EdDSA COSE keys need a 32-byte Ed25519 key")
        cose_key = {
            1: COSE_KTY_OKP,
            3: COSE_ALG_EDDSA,
            -1: COSE_CRV_ED25519,
            -2: public_key,
        }
    elif algorithm == COSE_ALG_ES256:
        if len(public_key) != 64:
            raise EncodingError("ES256 COSE keys need a 64-byte P-256 point")
        cose_key = {
            1: COSE_KTY_EC2,
            3: COSE_ALG_ES256,
            -1: COSE_CRV_P256,
            -2: public_key[:32],
            -3: public_key[32:],
        }
    else:
        raise EncodingError(f"Unsupported COSE algorithm: {algorithm}")
    return cbor.encode(cose_key)


def rp_id_hash(rp_id: str) -> bytes:
    return hashlib.sha256(rp_id.encode("utf-8")).digest()


def build_authenticator_data(
    rp_id: str,
    sign_count: int,
    attested_credential: Optional[AttestedCredential] = None,
    aaguid: bytes = AAGUID,
) -> bytes:
    """Build authenticator data.

    ``attested_credential`` is a ``(credential_id, cose_key)`` pair and is
    only given at registration; assertions produce the bare 37-byte form.
    """
    if not 0 <= sign_count < 2**32:
        raise EncodingError(f"Sign counter out of range: {sign_count}")
    flags = REGISTRATION_FLAGS if attested_credential is not None else ASSERTION_FLAGS

    data = bytearray()
    data.extend(rp_id_hash(rp_id))
    data.append(flags)
    data.extend(sign_count.to_bytes(4, "big"))

    if attested_credential is not None:
        credential_id, cose_key = attested_credential
        if len(aaguid) != 16:
            raise EncodingError("AAGUID must be 16 bytes")
        if len(credential_id) > 0xFFFF:
            raise EncodingError("Credential id too long")
        data.extend(aaguid)
        data.extend(len(credential_id).to_bytes(2, "big"))
        data.extend(credential_id)
        data.extend(cose_key)

    return bytes(data)


def build_attestation_object(auth_data: bytes) -> bytes:
    return cbor.encode({"fmt": "none", "attStmt": {}, "authData": auth_data})


def build_client_data(ceremony: str, challenge: bytes, origin: str) -> bytes:
    payload = {
        "type": ceremony,
        "challenge": b64url_encode(challenge),
        "origin": origin,
        "crossOrigin": False,
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def signed_payload(auth_data: bytes, client_data_json: bytes) -> bytes:
    return auth_data + hashlib.sha256(client_data_json).digest()


def sign_assertion(key, auth_data: bytes, client_data_json: bytes) -> bytes:
    """Sign authData || SHA-256(clientDataJSON) with the derived key."""
    return key.sign(signed_payload(auth_data, client_data_json))
