from __future__ import annotations

from pathlib import Path
from typing import Dict, Tuple
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cubekey.config import AuthenticatorSettings
from cubekey.physical import StaticStateProvider
from cubekey.service import AuthenticatorEngine
from cubekey.vault import SecretVault

FAST_ITERATIONS = 1_000


@pytest.fixture(autouse=True)
def fake_keyring(monkeypatch):
    storage: Dict[Tuple[str, str], str] = {}

    def set_password(service: str, username: str, password: str) -> None:
        storage[(service, username)] = password

    def get_password(service: str, username: str) -> str | None:
        return storage.get((service, username))

    def delete_password(service: str, username: str) -> None:
        storage.pop((service, username), None)

    # storage and vault share the same keyring module
    monkeypatch.setattr("cubekey.storage.keyring.set_password", set_password)
    monkeypatch.setattr("cubekey.storage.keyring.get_password", get_password)
    monkeypatch.setattr("cubekey.storage.keyring.delete_password", delete_password)
    yield storage


@pytest.fixture
def temp_settings(tmp_path: Path) -> AuthenticatorSettings:
    return AuthenticatorSettings(
        keyring_service="test-service",
        credential_index_path=str(tmp_path / "index.json"),
        default_iterations=FAST_ITERATIONS,
    )


@pytest.fixture
def vault(temp_settings) -> SecretVault:
    vault = SecretVault(temp_settings)
    vault.set_secret("s")
    return vault


@pytest.fixture
def engine(temp_settings, vault) -> AuthenticatorEngine:
    return AuthenticatorEngine(
        settings=temp_settings,
        vault=vault,
        state_provider=StaticStateProvider("00112233"),
    )
