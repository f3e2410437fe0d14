"""Credential storage backed by the system keyring via keyring."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

import keyring

from .config import AuthenticatorSettings
from .errors import OriginMismatch
from .models import StoredCredential

LOGGER = logging.getLogger(__name__)


class CredentialStoreError(RuntimeError):
    pass


def normalize_origin(origin: str) -> str:
    """Drop one trailing slash; everything else must match exactly."""
    if origin.endswith("/"):
        return origin[:-1]
    return origin


def origins_match(left: str, right: str) -> bool:
    return normalize_origin(left) == normalize_origin(right)


class CredentialStore:
    def __init__(self, settings: AuthenticatorSettings):
        self.settings = settings
        self.service = settings.keyring_service
        self.index_path = Path(settings.credential_index_path).expanduser()
        self._lock = threading.Lock()
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.index_path.exists():
            self._write_index({})

    # Index helpers -----------------------------------------------------
    def _read_index(self) -> Dict[str, Dict[str, Any]]:
        if not self.index_path.exists():
            return {}
        return json.loads(self.index_path.read_text())

    def _write_index(self, data: Dict[str, Dict[str, Any]]) -> None:
        self.index_path.write_text(json.dumps(data, indent=2))

    # CRUD --------------------------------------------------------------
    def insert(self, record: StoredCredential) -> StoredCredential:
        with self._lock:
            index = self._read_index()
            if record.id in index:
                LOGGER.info("Replacing stored credential %s", record.id)
            keyring.set_password(self.service, record.id, record.encode())
            index[record.id] = {
                "origin": normalize_origin(record.origin),
                "rp_id": record.rpId,
                "created_at": record.createdAt,
            }
            self._write_index(index)
        return record

    def delete(self, credential_id: str) -> None:
        with self._lock:
            index = self._read_index()
            if credential_id not in index:
                raise CredentialStoreError(f"Credential {credential_id} not found")
            keyring.delete_password(self.service, credential_id)
            index.pop(credential_id)
            self._write_index(index)

    def load(self, credential_id: str) -> StoredCredential:
        serialized = keyring.get_password(self.service, credential_id)
        if serialized is None:
            raise CredentialStoreError(f"Credential {credential_id} not found")
        return StoredCredential.decode(serialized)

    def list_all(self) -> List[StoredCredential]:
        index = self._read_index()
        return self._load_many(index.keys())

    def _load_many(self, credential_ids: Iterable[str]) -> List[StoredCredential]:
        records: List[StoredCredential] = []
        missing: List[str] = []
        for credential_id in credential_ids:
            try:
                records.append(self.load(credential_id))
            except CredentialStoreError:
                LOGGER.warning(
                    "Credential %s is indexed but missing from the keyring", credential_id
                )
                missing.append(credential_id)
        if missing:
            self._prune(missing)
        return records

    def _prune(self, credential_ids: Iterable[str]) -> None:
        with self._lock:
            index = self._read_index()
            for credential_id in credential_ids:
                index.pop(credential_id, None)
            self._write_index(index)

    # Lookups -----------------------------------------------------------
    def find_by_origin(self, origin: str) -> List[StoredCredential]:
        wanted = normalize_origin(origin)
        index = self._read_index()
        indexed = [
            credential_id
            for credential_id, metadata in index.items()
            if metadata.get("origin") == wanted
        ]
        # the index is only a hint; the record itself is authoritative
        return [
            record
            for record in self._load_many(indexed)
            if origins_match(record.origin, origin)
        ]

    def find_by_id(self, origin: str, credential_id: str) -> Optional[StoredCredential]:
        try:
            record = self.load(credential_id)
        except CredentialStoreError:
            return None
        try:
            self._check_origin(record, origin)
        except OriginMismatch as exc:
            LOGGER.warning("%s", exc)
            return None
        return record

    def find_by_site(self, hostname: str) -> List[StoredCredential]:
        wanted = hostname.lower()
        return [
            record
            for record in self.list_all()
            if (urlsplit(record.siteUrl).hostname or "") == wanted
        ]

    def match(
        self, origin: str, allow_credentials: Iterable[str] = ()
    ) -> List[StoredCredential]:
        """Credentials usable for an assertion from ``origin``."""
        candidates = self.find_by_origin(origin)
        allowed = set(allow_credentials)
        if allowed:
            candidates = [record for record in candidates if record.id in allowed]
        return candidates

    @staticmethod
    def _check_origin(record: StoredCredential, origin: str) -> None:
        if not origins_match(record.origin, origin):
            raise OriginMismatch(
                f"Credential {record.id} is bound to {record.origin}, not {origin}"
            )
