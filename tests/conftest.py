"""
Shared pytest fixtures for the CookieBridge test suite.

Every test gets its own state directory and key material through the
environment, so nothing touches the real home directory.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from cookiebridge.crypto import CryptoManager
from cookiebridge.models import Cookie, SiteAuthData
from cookiebridge.storage import AuthStore

TEST_KEY_MATERIAL = "cookiebridge-test-key"


# ---------------------------------------------------------------------------
# Environment fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def state_dir(tmp_path, monkeypatch):
    """Point the state directory and key material at test values."""
    directory = tmp_path / "state"
    monkeypatch.setenv("COOKIEBRIDGE_HOME", str(directory))
    monkeypatch.setenv("COOKIEBRIDGE_KEY_MATERIAL", TEST_KEY_MATERIAL)
    return directory


@pytest.fixture(scope="session")
def crypto():
    """One CryptoManager per run; scrypt derivation is cached inside it."""
    return CryptoManager()


@pytest.fixture
def store(state_dir, crypto):
    return AuthStore(str(state_dir / "site-auth.json"), TEST_KEY_MATERIAL, crypto)


# ---------------------------------------------------------------------------
# Data fixtures
# ---------------------------------------------------------------------------

def make_cookie(name="SID", value="abc123", domain=".example.com", **kwargs):
    return Cookie(name=name, value=value, domain=domain, **kwargs)


def make_site(domain="example.com", timestamp=1_700_000_000_000, cookies=None):
    return SiteAuthData(
        domain=domain,
        timestamp=timestamp,
        synced_at="2023-11-14T22:13:20.000Z",
        cookies=cookies if cookies is not None else [make_cookie()],
    )


@pytest.fixture
def sample_cookies():
    return [
        make_cookie("SID", "s3cr3t", ".example.com", path="/", secure=True, http_only=True,
                    expiration_date=1893456000.5, same_site="lax", host_only=False, session=False,
                    store_id="0", priority="medium"),
        make_cookie("enterpriseId", "42", "foo.example.com", host_only=True, session=True),
        make_cookie("pref", "dark", ".example.com", partition_key={"topLevelSite": "https://example.com"}),
    ]
