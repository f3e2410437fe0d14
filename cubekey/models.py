"""Pydantic models shared across authenticator modules."""

from __future__ import annotations

import base64
import time
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from .errors import ErrorKind

COSE_ALG_EDDSA = -8


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def to_byte_list(data: bytes) -> List[int]:
    """Binary fields cross the serialization boundary as plain int lists."""
    return list(data)


def _coerce_bytes(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, list):
        return bytes(value)
    if isinstance(value, str):
        return b64url_decode(value)
    return value


BinaryData = Annotated[bytes, BeforeValidator(_coerce_bytes)]


class RelyingPartyEntity(BaseModel):
    id: Optional[str] = None
    name: str = ""


class UserEntity(BaseModel):
    id: BinaryData = Field(min_length=1)
    name: str = ""
    displayName: str = ""


class PubKeyCredParam(BaseModel):
    type: Literal["public-key"] = "public-key"
    alg: int


class PublicKeyCredentialDescriptor(BaseModel):
    id: BinaryData
    type: Literal["public-key"] = "public-key"
    transports: List[str] = Field(default_factory=list)


class PublicKeyCredentialCreationOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    challenge: Optional[BinaryData] = None
    rp: RelyingPartyEntity = Field(default_factory=RelyingPartyEntity)
    user: Optional[UserEntity] = None
    pubKeyCredParams: List[PubKeyCredParam] = Field(default_factory=list)
    timeout: Optional[int] = None
    attestation: str = "none"
    excludeCredentials: List[PublicKeyCredentialDescriptor] = Field(
        default_factory=list
    )


class PublicKeyCredentialRequestOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    challenge: Optional[BinaryData] = None
    rpId: Optional[str] = None
    timeout: Optional[int] = None
    userVerification: str = "preferred"
    allowCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)


class StoredUser(BaseModel):
    id: str
    name: str = ""
    displayName: str = ""


class StoredCredential(BaseModel):
    """A credential issued by this authenticator. Holds no private material."""

    id: str
    siteUrl: str
    origin: str
    rpId: str
    publicKey: str
    user: StoredUser
    createdAt: int

    def encode(self) -> str:
        return self.model_dump_json()

    @classmethod
    def decode(cls, data: str) -> "StoredCredential":
        return cls.model_validate_json(data)

    @property
    def raw_id(self) -> bytes:
        return b64url_decode(self.id)

    @property
    def user_handle(self) -> bytes:
        return b64url_decode(self.user.id)

    @classmethod
    def new(
        cls,
        credential_id: bytes,
        site_url: str,
        origin: str,
        rp_id: str,
        public_key: bytes,
        user: UserEntity,
    ) -> "StoredCredential":
        return cls(
            id=b64url_encode(credential_id),
            siteUrl=site_url,
            origin=origin,
            rpId=rp_id,
            publicKey=b64url_encode(public_key),
            user=StoredUser(
                id=b64url_encode(user.id),
                name=user.name,
                displayName=user.displayName,
            ),
            createdAt=int(time.time() * 1000),
        )


class AuthenticatorAttestationResponse(BaseModel):
    clientDataJSON: List[int]
    attestationObject: List[int]
    authenticatorData: List[int]
    publicKey: List[int]
    publicKeyAlgorithm: int = COSE_ALG_EDDSA
    transports: List[str] = Field(default_factory=lambda: ["internal"])


class AuthenticatorAssertionResponse(BaseModel):
    clientDataJSON: List[int]
    authenticatorData: List[int]
    signature: List[int]
    userHandle: Optional[List[int]] = None


class WireCredential(BaseModel):
    type: Literal["public-key"] = "public-key"
    id: str
    rawId: List[int]
    transports: List[str] = Field(default_factory=lambda: ["internal"])
    authenticatorAttachment: str = "platform"
    response: Union[AuthenticatorAttestationResponse, AuthenticatorAssertionResponse]
    clientExtensionResults: Dict[str, Any] = Field(default_factory=dict)


class AuthenticatorResult(BaseModel):
    success: bool
    credential: Optional[Dict[str, Any]] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None


class ScrambleHash(BaseModel):
    """PBKDF2 verifier for the fixed cube scramble."""

    iterations: int = Field(ge=1)
    salt: str
    hash: str
