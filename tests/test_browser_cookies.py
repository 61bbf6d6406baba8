"""
Chromium cookie source against a generated cookie database.
"""

import os
import sqlite3
import threading

import pytest
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from cookiebridge import browser_cookies, config
from cookiebridge.browser_cookies import ChromiumCookieSource, applies_to

from conftest import make_cookie

SCHEMA = """
CREATE TABLE meta (key TEXT NOT NULL UNIQUE PRIMARY KEY, value TEXT);
CREATE TABLE cookies (
    host_key TEXT NOT NULL, name TEXT NOT NULL, value TEXT NOT NULL, encrypted_value BLOB,
    path TEXT NOT NULL, expires_utc INTEGER NOT NULL, is_secure INTEGER NOT NULL,
    is_httponly INTEGER NOT NULL, is_persistent INTEGER NOT NULL, samesite INTEGER NOT NULL,
    priority INTEGER NOT NULL, top_frame_site_key TEXT NOT NULL
);
"""

EXPIRES_UNIX = 1893456000


def linux_encrypt(value, password=b"peanuts", prefix=b"v10", domain_hash=b""):
    key = PBKDF2HMAC(algorithm=hashes.SHA1(), length=16, salt=b"saltysalt", iterations=1).derive(password)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(domain_hash + value.encode()) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(b" " * 16)).encryptor()
    return prefix + encryptor.update(padded) + encryptor.finalize()


class Profile:
    """A throwaway Chromium profile directory."""

    def __init__(self, path, db_version=20):
        self.path = path
        self.db_path = os.path.join(path, "Cookies")
        os.makedirs(path, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript(SCHEMA)
            conn.execute("INSERT INTO meta VALUES ('version', ?)", (str(db_version),))

    def add(self, host_key, name, value="", encrypted_value=b"", path="/", secure=1, httponly=0,
            persistent=1, samesite=1, priority=1, partition=""):
        expires = (EXPIRES_UNIX + config.CHROMIUM_EPOCH_OFFSET_SECONDS) * 1_000_000 if persistent else 0
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("INSERT INTO cookies VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                         (host_key, name, value, encrypted_value, path, expires, secure, httponly,
                          persistent, samesite, priority, partition))

    def remove(self, name):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM cookies WHERE name = ?", (name,))


@pytest.fixture
def profile(tmp_path):
    p = Profile(str(tmp_path / "Default"))
    p.add(".example.com", "SID", "s1", httponly=1, samesite=2)
    p.add("foo.example.com", "enterpriseId", "42", persistent=0)
    p.add("other.org", "token", "t", partition="https://other.org")
    return p


@pytest.fixture
def source(profile, monkeypatch):
    monkeypatch.setattr(browser_cookies, "keyring", None)
    src = ChromiumCookieSource(profile_path=profile.path, poll_interval=0.05)
    src.system = "Linux"
    yield src
    src.stop_watching()


class TestAppliesTo:

    def test_domain_cookie_matches_subdomains(self):
        cookie = make_cookie(domain=".example.com")
        assert applies_to(cookie, "example.com")
        assert applies_to(cookie, "foo.example.com")
        assert not applies_to(cookie, "notexample.com")

    def test_host_only_cookie_matches_exactly(self):
        cookie = make_cookie(domain="foo.example.com")
        assert applies_to(cookie, "foo.example.com")
        assert not applies_to(cookie, "bar.foo.example.com")
        assert not applies_to(cookie, "example.com")


class TestReadCookies:

    def test_read_all_maps_attributes(self, source):
        cookies = {c.name: c for c in source.read_all()}
        sid = cookies["SID"]
        assert sid.value == "s1"
        assert sid.domain == ".example.com"
        assert sid.secure is True and sid.http_only is True
        assert sid.same_site == "strict"
        assert sid.host_only is False
        assert sid.session is False
        assert sid.expiration_date == pytest.approx(EXPIRES_UNIX)
        assert sid.priority == "medium"

        enterprise = cookies["enterpriseId"]
        assert enterprise.host_only is True
        assert enterprise.session is True
        assert enterprise.expiration_date is None
        assert cookies["token"].partition_key == {"topLevelSite": "https://other.org"}

    def test_get_cookies_for_domain(self, source):
        assert [c.name for c in source.get_cookies("example.com")] == ["SID"]
        assert sorted(c.name for c in source.get_cookies("https://Foo.Example.com/")) == ["SID", "enterpriseId"]
        assert source.get_cookies("") == []

    def test_prefers_network_directory(self, tmp_path):
        legacy = Profile(str(tmp_path / "P"))
        network = Profile(str(tmp_path / "P" / "Network"))
        network.add("example.com", "new", "1")
        src = ChromiumCookieSource(profile_path=legacy.path)
        assert src.cookies_db_path == network.db_path
        assert [c.name for c in src.read_all()] == ["new"]

    def test_missing_database(self, tmp_path):
        src = ChromiumCookieSource(profile_path=str(tmp_path / "none"))
        with pytest.raises(FileNotFoundError):
            src.read_all()

    def test_unknown_browser(self):
        with pytest.raises(ValueError):
            ChromiumCookieSource(browser="netscape")

    def test_decrypts_v10_values(self, source, profile):
        profile.add("example.com", "enc", encrypted_value=linux_encrypt("secret-value"))
        cookies = {c.name: c for c in source.read_all()}
        assert cookies["enc"].value == "secret-value"

    def test_decrypts_v11_without_keyring(self, source, profile):
        profile.add("example.com", "enc11", encrypted_value=linux_encrypt("other", password=b"", prefix=b"v11"))
        assert {c.name: c.value for c in source.read_all()}["enc11"] == "other"

    def test_strips_domain_hash(self, tmp_path, monkeypatch):
        monkeypatch.setattr(browser_cookies, "keyring", None)
        p = Profile(str(tmp_path / "Hashed"), db_version=24)
        p.add("example.com", "enc", encrypted_value=linux_encrypt("v", domain_hash=b"h" * 32))
        src = ChromiumCookieSource(profile_path=p.path)
        src.system = "Linux"
        assert [c.value for c in src.read_all()] == ["v"]

    def test_undecryptable_value_is_skipped(self, source, profile):
        profile.add("example.com", "bad", encrypted_value=b"v10" + b"\x00" * 15)
        profile.add("example.com", "unknown", encrypted_value=b"v99" + b"\x00" * 16)
        names = {c.name for c in source.read_all()}
        assert "bad" not in names and "unknown" not in names
        assert "SID" in names


class TestChanges:

    def test_poll_reports_added_changed_removed(self, source, profile):
        source.start_watching()
        source.stop_watching()
        profile.add("example.com", "new", "1")
        profile.remove("token")
        with sqlite3.connect(profile.db_path) as conn:
            conn.execute("UPDATE cookies SET value = 's2' WHERE name = 'SID'")

        changes = source.poll_changes()
        summary = sorted((c.cookie.name, c.removed) for c in changes)
        assert summary == [("SID", False), ("new", False), ("token", True)]
        assert source.poll_changes() == []

    def test_failed_read_is_not_a_mass_removal(self, source, profile, monkeypatch):
        source.start_watching()
        source.stop_watching()
        read_all = source.read_all
        calls = []

        def flaky_read_all():
            calls.append(1)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return read_all()

        monkeypatch.setattr(source, "read_all", flaky_read_all)
        assert source.poll_changes() == []
        assert source.poll_changes() == []

        profile.add("example.com", "new", "1")
        assert [(c.cookie.name, c.removed) for c in source.poll_changes()] == [("new", False)]

    def test_first_read_sets_baseline(self, source):
        assert source.poll_changes() == []
        assert source.poll_changes() == []

    def test_watcher_notifies_listeners(self, source, profile):
        received = []
        event = threading.Event()

        def listener(changes):
            received.extend(changes)
            event.set()

        source.subscribe(listener)
        source.start_watching()
        profile.add("example.com", "late", "1")
        stat = os.stat(profile.db_path)
        os.utime(profile.db_path, (stat.st_atime, stat.st_mtime + 10))

        assert event.wait(5)
        assert [c.cookie.name for c in received] == ["late"]

    def test_unsubscribe(self, source):
        def listener(changes):
            pass
        source.subscribe(listener)
        source.unsubscribe(listener)
        source.unsubscribe(listener)
        assert source._listeners == []
