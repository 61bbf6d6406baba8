"""
Credential store: envelope, encryption at rest, migration and atomic writes.
"""

import json
import os
import stat
import sys

import pytest

from cookiebridge.models import AuthDataV1, AuthDataV2, parse_auth_document
from cookiebridge.storage import (
    AuthFileWrapper, AuthStore, DecryptionFailed, MalformedStore, migrate, upsert_site,
)

from conftest import TEST_KEY_MATERIAL, make_cookie, make_site


def write_envelope(store, data, encrypted=True):
    os.makedirs(os.path.dirname(store.filepath), exist_ok=True)
    if encrypted:
        data = store.crypto.encrypt_payload(json.dumps(data), store.key_material)
    elif not isinstance(data, str):
        data = json.dumps(data)
    with open(store.filepath, "w", encoding="utf-8") as f:
        json.dump({"encrypted": encrypted, "data": data}, f)


class TestMigrate:

    def test_v1_becomes_single_entry(self, sample_cookies):
        v1 = make_site("Example.COM", cookies=sample_cookies)
        result = migrate(AuthDataV1(v1))
        assert list(result.sites) == ["example.com"]
        site = result.sites["example.com"]
        assert site.domain == "example.com"
        assert site.timestamp == v1.timestamp
        assert site.synced_at == v1.synced_at
        assert site.cookies == sample_cookies

    def test_v1_dict_is_accepted(self):
        result = migrate(make_site().to_dict())
        assert isinstance(result, AuthDataV2)

    def test_v2_rekeyed_by_own_domain(self):
        doc = AuthDataV2({"Wrong-Key": make_site(".Foo.Example.com")})
        result = migrate(doc)
        assert list(result.sites) == ["foo.example.com"]
        assert result.sites["foo.example.com"].domain == "foo.example.com"

    def test_collision_keeps_newer_capture(self):
        older = make_site("example.com", timestamp=1, cookies=[make_cookie(value="old")])
        newer = make_site("EXAMPLE.com", timestamp=2, cookies=[make_cookie(value="new")])
        result = migrate(AuthDataV2({"a": newer, "b": older}))
        assert result.sites["example.com"].cookies[0].value == "new"

    def test_canonical_store_unchanged(self):
        doc = AuthDataV2({"a.com": make_site("a.com"), "b.org": make_site("b.org")})
        assert migrate(doc).to_dict() == doc.to_dict()


class TestUpsert:

    def test_replaces_snapshot_without_merging(self):
        store = AuthDataV2({"example.com": make_site(cookies=[make_cookie("A"), make_cookie("B")])})
        updated = upsert_site(store, "Example.com", [make_cookie("C")], 5)
        assert [c.name for c in updated.sites["example.com"].cookies] == ["C"]
        assert updated.sites["example.com"].timestamp == 5

    def test_other_sites_untouched_and_input_not_mutated(self):
        store = AuthDataV2({"a.com": make_site("a.com")})
        updated = upsert_site(store, "b.com", [], 1, synced_at="2024-01-01T00:00:00.000Z")
        assert set(updated.sites) == {"a.com", "b.com"}
        assert set(store.sites) == {"a.com"}
        assert updated.sites["b.com"].synced_at == "2024-01-01T00:00:00.000Z"

    @pytest.mark.parametrize("domain", ["", "   ", "."])
    def test_unusable_domain(self, domain):
        with pytest.raises(ValueError):
            upsert_site(AuthDataV2(), domain, [], 1)


class TestAuthStore:

    def test_missing_file(self, store):
        assert not store.exists()
        assert store.read_wrapper() is None
        assert store.load_sites() is None

    def test_save_writes_encrypted_envelope(self, store, sample_cookies):
        store.save(AuthDataV2({"example.com": make_site(cookies=sample_cookies)}))
        with open(store.filepath, encoding="utf-8") as f:
            envelope = json.load(f)
        assert set(envelope) == {"encrypted", "data"}
        assert envelope["encrypted"] is True
        assert "s3cr3t" not in envelope["data"]
        assert len(envelope["data"].split(":")) == 2

    def test_round_trip(self, store, sample_cookies):
        doc = AuthDataV2({"example.com": make_site(cookies=sample_cookies), "b.org": make_site("b.org")})
        store.save(doc)
        assert store.load_sites().to_dict() == doc.to_dict()

    def test_every_write_uses_fresh_iv(self, store):
        doc = AuthDataV2({"example.com": make_site()})
        payloads = []
        for _ in range(3):
            store.save(doc)
            payloads.append(store.read_wrapper().data.split(":")[0])
        assert len(set(payloads)) == 3

    def test_no_temp_files_left(self, store):
        store.save(AuthDataV2({"example.com": make_site()}))
        store.save(AuthDataV2({"example.com": make_site()}))
        assert os.listdir(os.path.dirname(store.filepath)) == ["site-auth.json"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_owner_only_permissions(self, store):
        store.save(AuthDataV2())
        assert stat.S_IMODE(os.stat(store.filepath).st_mode) == 0o600

    def test_reads_v1_store_and_migrates(self, store, sample_cookies):
        site = make_site("Example.com", cookies=sample_cookies)
        write_envelope(store, site.to_dict())
        assert isinstance(store.load(), AuthDataV1)
        migrated = store.load_sites()
        assert list(migrated.sites) == ["example.com"]
        assert migrated.sites["example.com"].cookies == sample_cookies

    def test_reads_unencrypted_envelope(self, store):
        doc = AuthDataV2({"example.com": make_site()})
        write_envelope(store, doc.to_dict(), encrypted=False)
        assert store.load_sites().to_dict() == doc.to_dict()

    def test_wrong_key_fails_cleanly(self, store, crypto):
        store.save(AuthDataV2({"example.com": make_site()}))
        other = AuthStore(store.filepath, TEST_KEY_MATERIAL + "-other", crypto)
        with pytest.raises((DecryptionFailed, MalformedStore)):
            other.load()

    @pytest.mark.parametrize("content", ["not json", "[]", '{"encrypted": true}',
                                         '{"encrypted": "yes", "data": ""}'])
    def test_malformed_envelope(self, store, content):
        os.makedirs(os.path.dirname(store.filepath), exist_ok=True)
        with open(store.filepath, "w", encoding="utf-8") as f:
            f.write(content)
        with pytest.raises(MalformedStore):
            store.load()

    def test_corrupt_payload(self, store):
        os.makedirs(os.path.dirname(store.filepath), exist_ok=True)
        with open(store.filepath, "w", encoding="utf-8") as f:
            json.dump(AuthFileWrapper("deadbeef", encrypted=True).to_dict(), f)
        with pytest.raises(DecryptionFailed):
            store.load()

    def test_bad_document_shape(self, store):
        write_envelope(store, {"version": 2, "sites": {"a.com": {"domain": "a.com"}}})
        with pytest.raises(MalformedStore):
            store.load()


class TestSyncSite:

    def test_creates_store(self, store, sample_cookies):
        site = store.sync_site("Foo.Example.com", sample_cookies, 1234)
        assert site.domain == "foo.example.com"
        loaded = store.load_sites()
        assert loaded.sites["foo.example.com"].cookies == sample_cookies
        assert loaded.sites["foo.example.com"].timestamp == 1234
        assert loaded.sites["foo.example.com"].synced_at.endswith("Z")

    def test_upgrades_v1_store_on_write(self, store):
        write_envelope(store, make_site("old.org").to_dict())
        store.sync_site("example.com", [make_cookie()], 1)
        raw = parse_auth_document(json.loads(
            store.crypto.decrypt_payload(store.read_wrapper().data, store.key_material)))
        assert isinstance(raw, AuthDataV2)
        assert set(raw.sites) == {"old.org", "example.com"}

    def test_replaces_corrupt_store(self, store):
        os.makedirs(os.path.dirname(store.filepath), exist_ok=True)
        with open(store.filepath, "w", encoding="utf-8") as f:
            f.write("garbage")
        store.sync_site("example.com", [make_cookie()], 1)
        assert list(store.load_sites().sites) == ["example.com"]

    def test_rejects_unusable_domain_without_writing(self, store):
        with pytest.raises(ValueError):
            store.sync_site("", [make_cookie()], 1)
        assert not store.exists()
