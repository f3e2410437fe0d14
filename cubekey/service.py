"""Core authenticator engine: registration and assertion ceremonies."""

from __future__ import annotations

import json
import logging
import secrets
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar
from urllib.parse import urlsplit

from pydantic import BaseModel, ValidationError

from .config import AuthenticatorSettings
from .derivation import DerivedKey, check_physical_state, derive
from .errors import (
    AuthenticatorError,
    EncodingError,
    ErrorKind,
    InvalidChallenge,
    InvalidOptions,
    InvalidRpId,
    NoCredentialsAvailable,
    PhysicalStateRejected,
    UserCancelled,
)
from .models import (
    COSE_ALG_EDDSA,
    AuthenticatorAssertionResponse,
    AuthenticatorAttestationResponse,
    AuthenticatorResult,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRequestOptions,
    PubKeyCredParam,
    StoredCredential,
    WireCredential,
    b64url_encode,
    to_byte_list,
)
from .physical import PhysicalStateProvider, PromptStateProvider
from .scramble import verify_scramble_hash
from .storage import CredentialStore, normalize_origin
from .vault import SecretVault
from .webauthn import (
    build_attestation_object,
    build_authenticator_data,
    build_client_data,
    build_cose_key,
    sign_assertion,
)

LOGGER = logging.getLogger(__name__)

STAGE_LABELS = {"register": "Register", "authn": "Authenticate"}
EVENT_LABELS = {
    ("register", "start"): "Processing credential creation",
    ("register", "exclude.hit"): "Credential excluded by RP",
    ("register", "success"): "Credential creation completed",
    ("register", "failed"): "Credential creation failed",
    ("authn", "start"): "Processing assertion",
    ("authn", "no_credential"): "No credential available",
    ("authn", "rp_id_mismatch"): "Credential registered under another RP id",
    ("authn", "key_mismatch"): "Derived key differs from the stored credential",
    ("authn", "success"): "Assertion completed",
    ("authn", "failed"): "Assertion failed",
}

SIGN_COUNT = 0
REGISTRATION_EXTENSIONS = {"credProps": {"rk": True}}

OptionsT = TypeVar("OptionsT", bound=BaseModel)


def _truncate(value: str, limit: int = 64) -> str:
    if len(value) <= limit:
        return value
    half = limit // 2
    return f"{value[:half]}…{value[-half:]}"


def _build_payload(req: str, **fields: object) -> dict[str, object]:
    payload: dict[str, object] = {"request_id": req}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str):
            payload[key] = _truncate(value)
        else:
            payload[key] = value
    return payload


def _log(stage: str, event: str, req: str, level: int = logging.INFO, **fields: object) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(req, **fields), indent=2, sort_keys=True)
    message = f"[Authenticator: {stage_label}]: {event_label}\n{payload}"
    LOGGER.log(level, message)


class CeremonyState(str, Enum):
    IDLE = "Idle"
    AWAITING_PHYSICAL_INPUT = "AwaitingPhysicalInput"
    DERIVING = "Deriving"
    BUILDING_ARTIFACT = "BuildingArtifact"
    DONE = "Done"
    FAILED = "Failed"


_TRANSITIONS = {
    CeremonyState.IDLE: {CeremonyState.AWAITING_PHYSICAL_INPUT, CeremonyState.FAILED},
    CeremonyState.AWAITING_PHYSICAL_INPUT: {CeremonyState.DERIVING, CeremonyState.FAILED},
    CeremonyState.DERIVING: {CeremonyState.BUILDING_ARTIFACT, CeremonyState.FAILED},
    CeremonyState.BUILDING_ARTIFACT: {CeremonyState.DONE, CeremonyState.FAILED},
    CeremonyState.DONE: set(),
    CeremonyState.FAILED: set(),
}


@dataclass
class Ceremony:
    """Progress of a single register or authenticate call."""

    kind: str
    request_id: str
    state: CeremonyState = CeremonyState.IDLE
    history: List[CeremonyState] = field(default_factory=lambda: [CeremonyState.IDLE])
    error: Optional[ErrorKind] = None

    def advance(self, new_state: CeremonyState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise EncodingError(
                f"Illegal ceremony transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: AuthenticatorError) -> None:
        self.error = error.kind
        if self.state is not CeremonyState.FAILED:
            self.state = CeremonyState.FAILED
            self.history.append(CeremonyState.FAILED)

    @property
    def finished(self) -> bool:
        return self.state in (CeremonyState.DONE, CeremonyState.FAILED)


class AuthenticatorEngine:
    """Software authenticator whose keys come from a physical cube state."""

    def __init__(
        self,
        settings: Optional[AuthenticatorSettings] = None,
        credential_store: Optional[CredentialStore] = None,
        vault: Optional[SecretVault] = None,
        state_provider: Optional[PhysicalStateProvider] = None,
    ) -> None:
        self.settings = settings or AuthenticatorSettings()
        self.store = credential_store or CredentialStore(self.settings)
        self.vault = vault or SecretVault(self.settings)
        self.state_provider = state_provider or PromptStateProvider()
        self.last_ceremony: Optional[Ceremony] = None
        self._lock = threading.Lock()
        self._closed = False

    def close(self) -> None:
        self._closed = True
        cancel_all = getattr(self.state_provider, "cancel_all", None)
        if cancel_all is not None:
            cancel_all()

    def __enter__(self) -> "AuthenticatorEngine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    def make_credential(
        self,
        options_data: Dict[str, Any],
        origin: str,
        site_url: Optional[str] = None,
        state_provider: Optional[PhysicalStateProvider] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        ceremony = Ceremony("register", request_id or secrets.token_hex(4))
        with self._lock:
            self.last_ceremony = ceremony
            return self._run(
                ceremony,
                self._register,
                options_data,
                origin,
                site_url,
                state_provider or self.state_provider,
            )

    def get_assertion(
        self,
        options_data: Dict[str, Any],
        origin: str,
        credential_id: Optional[str] = None,
        state_provider: Optional[PhysicalStateProvider] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        ceremony = Ceremony("authn", request_id or secrets.token_hex(4))
        with self._lock:
            self.last_ceremony = ceremony
            return self._run(
                ceremony,
                self._authenticate,
                options_data,
                origin,
                credential_id,
                state_provider or self.state_provider,
            )

    def register(self, options_data: Dict[str, Any], origin: str, **kwargs: Any) -> Dict[str, Any]:
        """Like :meth:`make_credential` but reports failures as a result."""
        try:
            credential = self.make_credential(options_data, origin, **kwargs)
        except AuthenticatorError as exc:
            return _failure(exc)
        return AuthenticatorResult(success=True, credential=credential).model_dump(mode="json")

    def authenticate(self, options_data: Dict[str, Any], origin: str, **kwargs: Any) -> Dict[str, Any]:
        """Like :meth:`get_assertion` but reports failures as a result."""
        try:
            credential = self.get_assertion(options_data, origin, **kwargs)
        except AuthenticatorError as exc:
            return _failure(exc)
        return AuthenticatorResult(success=True, credential=credential).model_dump(mode="json")

    def list_credentials(self, site: Optional[str] = None) -> List[Dict[str, Any]]:
        records = self.store.find_by_site(site) if site else self.store.list_all()
        return [record.model_dump() for record in sorted(records, key=lambda r: r.createdAt)]

    def delete_credential(self, credential_id: str) -> None:
        with self._lock:
            self.store.delete(credential_id)

    # Ceremonies --------------------------------------------------------
    def _run(self, ceremony: Ceremony, flow, *args: Any) -> Dict[str, Any]:
        try:
            if self._closed:
                raise UserCancelled("Authenticator is closed")
            return flow(ceremony, *args)
        except AuthenticatorError as exc:
            self._fail(ceremony, exc)
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected failure in %s ceremony", ceremony.kind)
            error = EncodingError(f"Internal error: {exc}")
            self._fail(ceremony, error)
            raise error from exc

    def _register(
        self,
        ceremony: Ceremony,
        options_data: Dict[str, Any],
        origin: str,
        site_url: Optional[str],
        provider: PhysicalStateProvider,
    ) -> Dict[str, Any]:
        req_id = ceremony.request_id
        options = _parse(PublicKeyCredentialCreationOptions, options_data)
        origin = _check_origin(origin)
        challenge = _require_challenge(options.challenge)
        rp_id = options.rp.id
        if not rp_id:
            raise InvalidRpId("rp.id is required for registration")
        _check_rp_id(rp_id, origin)
        if options.user is None:
            raise InvalidOptions("user is required for registration")
        self._select_algorithm(options.pubKeyCredParams)
        _log(
            "register",
            "start",
            req_id,
            rp_id=rp_id,
            user=options.user.name,
            origin=origin,
        )

        ceremony.advance(CeremonyState.AWAITING_PHYSICAL_INPUT)
        state = self._read_state(provider, req_id, f"Set the cube to register with {rp_id}")

        ceremony.advance(CeremonyState.DERIVING)
        key = self._derive(state, rp_id)

        ceremony.advance(CeremonyState.BUILDING_ARTIFACT)
        self._enforce_exclude_list(req_id, key, options.excludeCredentials)
        cose_key = build_cose_key(key.public_key, COSE_ALG_EDDSA)
        auth_data = build_authenticator_data(
            rp_id,
            SIGN_COUNT,
            (key.credential_id, cose_key),
            aaguid=self.settings.aaguid_bytes,
        )
        attestation_object = build_attestation_object(auth_data)
        client_data = build_client_data("webauthn.create", challenge, origin)

        record = StoredCredential.new(
            credential_id=key.credential_id,
            site_url=site_url or origin,
            origin=origin,
            rp_id=rp_id,
            public_key=key.public_key,
            user=options.user,
        )
        self.store.insert(record)

        response = AuthenticatorAttestationResponse(
            clientDataJSON=to_byte_list(client_data),
            attestationObject=to_byte_list(attestation_object),
            authenticatorData=to_byte_list(auth_data),
            publicKey=to_byte_list(key.public_key_der()),
            publicKeyAlgorithm=COSE_ALG_EDDSA,
        )
        credential = WireCredential(
            id=record.id,
            rawId=to_byte_list(key.credential_id),
            response=response,
            clientExtensionResults=REGISTRATION_EXTENSIONS,
        )
        ceremony.advance(CeremonyState.DONE)
        _log(
            "register",
            "success",
            req_id,
            rp_id=rp_id,
            user=options.user.name,
            credential_id=record.id,
            algorithm=COSE_ALG_EDDSA,
        )
        return credential.model_dump()

    def _authenticate(
        self,
        ceremony: Ceremony,
        options_data: Dict[str, Any],
        origin: str,
        credential_id: Optional[str],
        provider: PhysicalStateProvider,
    ) -> Dict[str, Any]:
        req_id = ceremony.request_id
        options = _parse(PublicKeyCredentialRequestOptions, options_data)
        origin = _check_origin(origin)
        challenge = _require_challenge(options.challenge)
        rp_id = options.rpId
        if not rp_id:
            raise InvalidRpId("rpId is required for authentication")
        _check_rp_id(rp_id, origin)
        _log(
            "authn",
            "start",
            req_id,
            rp_id=rp_id,
            allowed=len(options.allowCredentials),
            origin=origin,
        )

        record = self._locate_credential(
            req_id, origin, rp_id, options.allowCredentials, credential_id
        )
        if record is None:
            _log("authn", "no_credential", req_id, origin=origin, level=logging.WARNING)
            raise NoCredentialsAvailable(f"No credential available for {origin}")

        ceremony.advance(CeremonyState.AWAITING_PHYSICAL_INPUT)
        state = self._read_state(provider, req_id, f"Set the cube to sign in to {rp_id}")

        ceremony.advance(CeremonyState.DERIVING)
        key = self._derive(state, record.rpId)

        ceremony.advance(CeremonyState.BUILDING_ARTIFACT)
        if b64url_encode(key.credential_id) != record.id:
            _log(
                "authn",
                "key_mismatch",
                req_id,
                credential_id=record.id,
                level=logging.WARNING,
            )
        auth_data = build_authenticator_data(rp_id, SIGN_COUNT)
        client_data = build_client_data("webauthn.get", challenge, origin)
        signature = sign_assertion(key, auth_data, client_data)

        response = AuthenticatorAssertionResponse(
            clientDataJSON=to_byte_list(client_data),
            authenticatorData=to_byte_list(auth_data),
            signature=to_byte_list(signature),
            userHandle=to_byte_list(record.user_handle),
        )
        credential = WireCredential(
            id=record.id,
            rawId=to_byte_list(record.raw_id),
            response=response,
        )
        ceremony.advance(CeremonyState.DONE)
        _log("authn", "success", req_id, credential_id=record.id, rp_id=rp_id)
        return credential.model_dump()

    # Helpers -----------------------------------------------------------
    def _fail(self, ceremony: Ceremony, exc: AuthenticatorError) -> None:
        ceremony.fail(exc)
        if isinstance(exc, EncodingError):
            level = logging.ERROR
        elif isinstance(exc, NoCredentialsAvailable):
            level = logging.INFO
        else:
            level = logging.WARNING
        _log(
            ceremony.kind,
            "failed",
            ceremony.request_id,
            level=level,
            error=exc.kind.value,
            reason=str(exc),
        )

    def _read_state(self, provider: PhysicalStateProvider, req_id: str, prompt: str) -> str:
        state = provider.read_state(req_id, prompt)
        if state is None:
            raise UserCancelled("No cube state provided")
        return state.strip()

    def _derive(self, state: str, rp_id: str) -> DerivedKey:
        check_physical_state(state, self.settings.expected_state_length)
        if self.settings.verify_fixed_state:
            record = self.vault.scramble_hash()
            if record is not None and not verify_scramble_hash(state, record):
                raise PhysicalStateRejected("Cube state does not match the stored scramble")
        secret = self.vault.get_secret()
        return derive(state, secret, seed=rp_id, iterations=self.vault.iterations())

    @staticmethod
    def _select_algorithm(params: List[PubKeyCredParam]) -> int:
        if not params or any(param.alg == COSE_ALG_EDDSA for param in params):
            return COSE_ALG_EDDSA
        raise InvalidOptions("EdDSA (-8) is not among the requested algorithms")

    def _locate_credential(
        self,
        req_id: str,
        origin: str,
        rp_id: str,
        allow_credentials: List[PublicKeyCredentialDescriptor],
        credential_id: Optional[str],
    ) -> Optional[StoredCredential]:
        allowed = [b64url_encode(descriptor.id) for descriptor in allow_credentials]
        candidates = []
        for record in self.store.match(origin, allowed):
            # keys are salted with the rp id they were registered under
            if record.rpId.lower() != rp_id.lower():
                _log(
                    "authn",
                    "rp_id_mismatch",
                    req_id,
                    credential_id=record.id,
                    registered_rp_id=record.rpId,
                    rp_id=rp_id,
                    level=logging.WARNING,
                )
                continue
            candidates.append(record)
        if credential_id is not None:
            chosen = self.store.find_by_id(origin, credential_id)
            if chosen is None or chosen.id not in {c.id for c in candidates}:
                return None
            return chosen
        if not candidates:
            return None
        return max(candidates, key=lambda candidate: candidate.createdAt)

    @staticmethod
    def _enforce_exclude_list(
        req_id: str,
        key: DerivedKey,
        exclude_credentials: List[PublicKeyCredentialDescriptor],
    ) -> None:
        for descriptor in exclude_credentials:
            if descriptor.id == key.credential_id:
                _log(
                    "register",
                    "exclude.hit",
                    req_id,
                    credential_id=b64url_encode(key.credential_id),
                    level=logging.WARNING,
                )
                raise InvalidOptions("Credential creation excluded by RP")


def _failure(exc: AuthenticatorError) -> Dict[str, Any]:
    return AuthenticatorResult(success=False, error=exc.kind, message=str(exc)).model_dump(
        mode="json"
    )


def _parse(model: Type[OptionsT], data: Any) -> OptionsT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InvalidOptions(f"Malformed options: {exc.error_count()} error(s)") from exc


def _require_challenge(challenge: Optional[bytes]) -> bytes:
    if not challenge:
        raise InvalidChallenge("challenge is required")
    return challenge


def _check_origin(origin: Optional[str]) -> str:
    if not origin:
        raise InvalidOptions("origin is required")
    parts = urlsplit(origin)
    if not parts.scheme or not parts.hostname:
        raise InvalidOptions(f"Invalid origin: {origin}")
    return normalize_origin(origin)


def _check_rp_id(rp_id: str, origin: str) -> None:
    host = urlsplit(origin).hostname or ""
    rp_id = rp_id.lower()
    if host != rp_id and not host.endswith("." + rp_id):
        raise InvalidOptions(f"rpId {rp_id} is not valid for origin {origin}")
