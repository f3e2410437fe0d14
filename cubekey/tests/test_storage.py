from __future__ import annotations

import json

import pytest

from cubekey.models import StoredCredential, UserEntity
from cubekey.storage import (
    CredentialStore,
    CredentialStoreError,
    normalize_origin,
    origins_match,
)


def make_record(
    credential_id: bytes = b"cred-1",
    origin: str = "https://a.example",
    site_url: str = "https://a.example/login",
    rp_id: str = "a.example",
) -> StoredCredential:
    return StoredCredential.new(
        credential_id=credential_id,
        site_url=site_url,
        origin=origin,
        rp_id=rp_id,
        public_key=b"public-key",
        user=UserEntity(id=b"user-1", name="alice", displayName="Alice"),
    )


def test_store_round_trip(temp_settings):
    store = CredentialStore(temp_settings)
    record = make_record()
    store.insert(record)

    loaded = store.load(record.id)
    assert loaded == record
    assert loaded.user_handle == b"user-1"
    assert loaded.raw_id == b"cred-1"

    all_records = store.list_all()
    assert [r.id for r in all_records] == [record.id]

    store.delete(record.id)
    with pytest.raises(CredentialStoreError):
        store.load(record.id)
    with pytest.raises(CredentialStoreError):
        store.delete(record.id)


def test_index_holds_no_key_material(temp_settings):
    store = CredentialStore(temp_settings)
    record = make_record()
    store.insert(record)
    index = json.loads(store.index_path.read_text())
    assert index == {
        record.id: {
            "origin": "https://a.example",
            "rp_id": "a.example",
            "created_at": record.createdAt,
        }
    }


def test_find_by_origin_is_origin_scoped(temp_settings):
    store = CredentialStore(temp_settings)
    store.insert(make_record(b"a", origin="https://a.example"))
    store.insert(make_record(b"b", origin="https://b.example", rp_id="b.example"))

    assert [r.raw_id for r in store.find_by_origin("https://a.example")] == [b"a"]
    assert [r.raw_id for r in store.find_by_origin("https://b.example/")] == [b"b"]
    assert store.find_by_origin("https://c.example") == []


@pytest.mark.parametrize(
    "origin",
    [
        "https://a.example.evil",
        "https://sub.a.example",
        "http://a.example",
        "https://a.example:8443",
        "https://a.example//",
    ],
)
def test_find_by_origin_requires_exact_match(temp_settings, origin):
    store = CredentialStore(temp_settings)
    store.insert(make_record())
    assert store.find_by_origin(origin) == []


def test_find_by_id_treats_origin_mismatch_as_no_match(temp_settings):
    store = CredentialStore(temp_settings)
    record = store.insert(make_record())
    assert store.find_by_id("https://a.example/", record.id) == record
    assert store.find_by_id("https://b.example", record.id) is None
    assert store.find_by_id("https://a.example", "unknown") is None


def test_match_filters_by_allow_list(temp_settings):
    store = CredentialStore(temp_settings)
    first = store.insert(make_record(b"a"))
    second = store.insert(make_record(b"b"))
    assert {r.id for r in store.match("https://a.example")} == {first.id, second.id}
    assert [r.id for r in store.match("https://a.example", [second.id])] == [second.id]
    assert store.match("https://a.example", ["other"]) == []


def test_insert_replaces_existing_id(temp_settings):
    store = CredentialStore(temp_settings)
    store.insert(make_record())
    replacement = make_record(site_url="https://a.example/signup")
    store.insert(replacement)
    assert [r.siteUrl for r in store.list_all()] == ["https://a.example/signup"]


def test_find_by_site_uses_hostname(temp_settings):
    store = CredentialStore(temp_settings)
    store.insert(make_record(b"a"))
    store.insert(make_record(b"b", origin="https://b.example", site_url="https://b.example/x"))
    assert [r.raw_id for r in store.find_by_site("A.EXAMPLE")] == [b"a"]


def test_origin_normalization_strips_one_slash():
    assert normalize_origin("https://a.example/") == "https://a.example"
    assert normalize_origin("https://a.example") == "https://a.example"
    assert normalize_origin("https://a.example//") == "https://a.example/"
    assert origins_match("https://a.example/", "https://a.example")
    assert not origins_match("https://a.example", "https://a.example.com")


def test_records_missing_from_keyring_are_skipped_and_pruned(temp_settings, fake_keyring):
    store = CredentialStore(temp_settings)
    kept = store.insert(make_record(b"a"))
    lost = store.insert(make_record(b"b"))
    fake_keyring.pop(("test-service", lost.id))

    assert [r.id for r in store.find_by_origin("https://a.example")] == [kept.id]
    assert list(json.loads(store.index_path.read_text())) == [kept.id]
    assert [r.id for r in store.list_all()] == [kept.id]
