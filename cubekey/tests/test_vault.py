from __future__ import annotations

import pytest
from keyring.errors import KeyringError

from cubekey.errors import DerivationUnavailable
from cubekey.vault import ITERATIONS_ENTRY, SECRET_ENTRY, SecretVault


def test_secret_is_created_once(temp_settings, fake_keyring):
    vault = SecretVault(temp_settings)
    secret = vault.get_secret()
    assert len(secret) >= 43
    assert vault.get_secret() == secret
    assert fake_keyring[("test-service", SECRET_ENTRY)] == secret


def test_disabled_secret_derives_with_empty_string(temp_settings, fake_keyring):
    settings = temp_settings.model_copy(update={"use_entropy_secret": False})
    vault = SecretVault(settings)
    assert vault.get_secret() == ""
    assert ("test-service", SECRET_ENTRY) not in fake_keyring


def test_missing_required_secret_is_unavailable(temp_settings):
    settings = temp_settings.model_copy(update={"auto_create_secret": False})
    vault = SecretVault(settings)
    with pytest.raises(DerivationUnavailable):
        vault.get_secret()
    vault.set_secret("imported")
    assert vault.get_secret() == "imported"


def test_keyring_failure_is_unavailable(temp_settings, monkeypatch):
    def broken(service, username):
        raise KeyringError("locked")

    monkeypatch.setattr("cubekey.vault.keyring.get_password", broken)
    with pytest.raises(DerivationUnavailable):
        SecretVault(temp_settings).get_secret()


def test_iterations_are_pinned_on_first_use(temp_settings, fake_keyring):
    vault = SecretVault(temp_settings)
    assert not vault.has_iterations()
    assert vault.iterations() == temp_settings.default_iterations
    assert fake_keyring[("test-service", ITERATIONS_ENTRY)] == str(temp_settings.default_iterations)

    other = SecretVault(temp_settings.model_copy(update={"default_iterations": 5}))
    assert other.iterations() == temp_settings.default_iterations


def test_set_iterations_validates(temp_settings):
    vault = SecretVault(temp_settings)
    vault.set_iterations(42)
    assert vault.iterations() == 42
    with pytest.raises(ValueError):
        vault.set_iterations(0)


def test_clear_secret(temp_settings):
    vault = SecretVault(temp_settings)
    vault.set_secret("x")
    vault.clear_secret()
    assert not vault.has_secret()
