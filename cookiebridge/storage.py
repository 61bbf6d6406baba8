"""
Encrypted, versioned multi-site credential store.

LEGAL NOTICE:
This module stores browser session cookies. All data is encrypted locally
and never transmitted. Use only on devices you own or administer.

On disk the store is a JSON envelope {"encrypted": bool, "data": str} where
data is either the JSON document itself or "iv_hex:ciphertext_hex". Only the
native host writes the file; consumers read it.
"""

import os
import json
import tempfile
import threading
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from cookiebridge.crypto import CryptoManager, DecryptionError
from cookiebridge.domains import normalize_domain
from cookiebridge.models import (
    AuthData, AuthDataV1, AuthDataV2, Cookie, InvalidShape, SiteAuthData, parse_auth_document,
)
from cookiebridge.utils import get_default_key_material, get_state_path, set_owner_only_permissions, utc_now_iso
from . import config

logger = logging.getLogger(__name__)


class StoreReadError(Exception):
    """The store file exists but could not be read."""


class MalformedStore(StoreReadError):
    """The envelope or the document inside it has the wrong shape."""


class DecryptionFailed(StoreReadError):
    """The encrypted payload is malformed or does not decrypt with this key."""


@dataclass
class AuthFileWrapper:
    """The on-disk envelope."""
    data: str
    encrypted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'encrypted': self.encrypted, 'data': self.data}

    @classmethod
    def from_dict(cls, data: Any) -> 'AuthFileWrapper':
        if not isinstance(data, dict) or not isinstance(data.get('data'), str):
            raise MalformedStore("Invalid auth file format")
        encrypted = data.get('encrypted', False)
        if not isinstance(encrypted, bool):
            raise MalformedStore("Invalid auth file format: 'encrypted' must be a boolean")
        return cls(data=data['data'], encrypted=encrypted)


def migrate(raw) -> AuthDataV2:
    """
    Bring any store document to version 2.

    A version 1 document becomes the sole entry of a new sites map. A version 2
    document is re-keyed so every key is the canonical form of its entry's own
    domain; if two entries collapse onto one key the newer capture wins.
    """
    if isinstance(raw, dict):
        raw = parse_auth_document(raw)

    if isinstance(raw, AuthDataV1):
        site = raw.site
        domain = normalize_domain(site.domain)
        return AuthDataV2({domain: SiteAuthData(domain, site.timestamp, site.synced_at, list(site.cookies))})

    sites: Dict[str, SiteAuthData] = {}
    for key, site in raw.sites.items():
        domain = normalize_domain(site.domain) or normalize_domain(key)
        if not domain:
            logger.warning(f"Dropping site entry '{key}' without a usable domain")
            continue
        if domain != key:
            logger.info(f"Re-keying site entry '{key}' as '{domain}'")
        existing = sites.get(domain)
        if existing is not None and existing.timestamp >= site.timestamp:
            continue
        sites[domain] = SiteAuthData(domain, site.timestamp, site.synced_at, list(site.cookies))
    return AuthDataV2(sites)


def upsert_site(store: AuthDataV2, domain: str, cookies: Iterable[Cookie], captured_at_ms: float,
                synced_at: Optional[str] = None) -> AuthDataV2:
    """
    Return a copy of store with the entry for domain replaced by a fresh snapshot.

    Cookies are not merged with the previous snapshot of the domain.

    Raises:
        ValueError: If domain has no usable canonical form
    """
    key = normalize_domain(domain)
    if not key:
        raise ValueError(f"Unusable domain: {domain!r}")
    sites = dict(store.sites)
    sites[key] = SiteAuthData(
        domain=key,
        timestamp=captured_at_ms,
        synced_at=synced_at or utc_now_iso(),
        cookies=list(cookies),
    )
    return AuthDataV2(sites)


class AuthStore:
    """Reads and writes the encrypted credential store file."""

    def __init__(self, filepath: Optional[str] = None, key_material: Optional[str] = None,
                 crypto: Optional[CryptoManager] = None):
        """
        Initialize the store.
        Args:
            filepath: Path to the store file (defaults to the state directory)
            key_material: Key material for encryption (defaults to the local identity)
            crypto: Shared CryptoManager, so derived keys are cached across stores
        """
        self.filepath = filepath or get_state_path(config.AUTH_FILE_NAME)
        self.key_material = key_material or get_default_key_material()
        self.crypto = crypto or CryptoManager()
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return os.path.exists(self.filepath)

    def read_wrapper(self) -> Optional[AuthFileWrapper]:
        """
        Read the envelope.
        Returns:
            The envelope, or None if the file does not exist
        Raises:
            MalformedStore: If the file is not a valid envelope
            StoreReadError: If the file cannot be read
        """
        try:
            with open(self.filepath, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreReadError(f"Cannot read {self.filepath}: {e}") from e

        try:
            data = json.loads(content)
        except ValueError as e:
            raise MalformedStore(f"Invalid auth file format: {e}") from None
        return AuthFileWrapper.from_dict(data)

    def decrypt(self, wrapper: AuthFileWrapper) -> AuthData:
        """
        Decode the document inside an envelope and validate its shape.
        Raises:
            DecryptionFailed: If the encrypted payload cannot be decrypted
            MalformedStore: If the plaintext is not a valid store document
        """
        if wrapper.encrypted:
            try:
                text = self.crypto.decrypt_payload(wrapper.data, self.key_material)
            except DecryptionError as e:
                raise DecryptionFailed(str(e)) from None
        else:
            text = wrapper.data

        try:
            return parse_auth_document(json.loads(text))
        except ValueError as e:
            # InvalidShape is a ValueError as well
            kind = "structure" if isinstance(e, InvalidShape) else "JSON"
            raise MalformedStore(f"Invalid auth data {kind}: {e}") from None

    def load(self) -> Optional[AuthData]:
        """Read and decrypt the store as written, without migrating it."""
        wrapper = self.read_wrapper()
        if wrapper is None:
            return None
        return self.decrypt(wrapper)

    def load_sites(self) -> Optional[AuthDataV2]:
        """Read, decrypt and migrate the store to version 2."""
        auth_data = self.load()
        if auth_data is None:
            return None
        return migrate(auth_data)

    def save(self, auth_data: AuthDataV2) -> None:
        """
        Encrypt and write the store, replacing the previous file atomically.

        The data is flushed to disk before this returns. A fresh IV is
        generated for every write.
        """
        plaintext = json.dumps(auth_data.to_dict())
        wrapper = AuthFileWrapper(self.crypto.encrypt_payload(plaintext, self.key_material), encrypted=True)

        directory = os.path.dirname(os.path.abspath(self.filepath))
        os.makedirs(directory, mode=0o700, exist_ok=True)

        with self._lock:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.' + os.path.basename(self.filepath), suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(wrapper.to_dict(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())

                # Atomic replace; readers see either the old or the new file
                os.replace(tmp_path, self.filepath)

                if not set_owner_only_permissions(self.filepath):
                    logger.warning(f"Failed to set secure file permissions for store: {self.filepath}")
            except Exception as e:
                logger.error(f"Error saving store file {self.filepath}: {e}", exc_info=True)
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise

    def sync_site(self, domain: str, cookies: Iterable[Cookie], captured_at_ms: float) -> SiteAuthData:
        """
        Read, migrate, replace one site and write the store.

        An unreadable existing store is logged and replaced by a fresh one
        rather than failing the sync.
        """
        try:
            current = self.load_sites()
        except StoreReadError as e:
            logger.warning(f"Existing store unreadable, starting a new one: {e}")
            current = None

        updated = upsert_site(current or AuthDataV2(), domain, cookies, captured_at_ms)
        self.save(updated)
        site = updated.sites[normalize_domain(domain)]
        logger.info(f"Saved {len(site.cookies)} cookies for {site.domain} to {self.filepath}")
        return site
