"""
Cookie access for Chromium-based browsers.

LEGAL NOTICE:
This module reads session cookies from the browser profile of the current
user. It must only be used on devices you own or administer, for domains you
are authorised to access.

The source offers what the browser's cookie API offers an extension: the full
cookie set applicable to a domain, and notifications when cookies change.
Change notifications are produced by polling the profile's cookie database.
"""

import os
import json
import base64
import platform
import shutil
import sqlite3
import tempfile
import threading
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives import padding

from cookiebridge.domains import is_domain_match, normalize_domain
from cookiebridge.models import Cookie
from . import config

logger = logging.getLogger(__name__)

# Platform-specific imports
if platform.system() == "Windows":
    try:
        import win32crypt
        WIN32_AVAILABLE = True
    except ImportError:
        WIN32_AVAILABLE = False
    keyring = None
else:
    WIN32_AVAILABLE = False
    try:
        import keyring
    except ImportError:
        keyring = None

SAME_SITE_VALUES = {-1: "unspecified", 0: "no_restriction", 1: "lax", 2: "strict"}
PRIORITY_VALUES = {0: "low", 1: "medium", 2: "high"}


class CookieDecryptionError(Exception):
    """A cookie value could not be decrypted with the profile's key."""


@dataclass(frozen=True)
class CookieChange:
    """A cookie that was added, changed or removed."""
    cookie: Cookie
    removed: bool = False


def _cookie_identity(cookie: Cookie) -> Tuple[str, str, str]:
    return cookie.domain, cookie.name, cookie.path


def applies_to(cookie: Cookie, domain: str) -> bool:
    """True if the browser would send cookie to https://<domain>/."""
    host_key = cookie.domain
    canonical = normalize_domain(host_key)
    if not host_key.startswith('.'):
        return canonical == domain
    return is_domain_match(domain, canonical)


class ChromiumCookieSource:
    """Reads cookies from a Chromium profile and reports changes."""

    def __init__(self, profile_path: Optional[str] = None, browser: str = "chrome",
                 poll_interval: float = config.COOKIE_POLL_INTERVAL_SECONDS):
        """
        Initialize the cookie source.

        Args:
            profile_path: Profile directory (e.g. '.../User Data/Default');
                defaults to the browser's default profile on this platform
            browser: Browser name (chrome, chromium, edge, brave)
            poll_interval: Seconds between checks of the cookie database
        """
        self.system = platform.system()
        self.browser = browser.lower()
        if self.browser not in config.BROWSER_PROFILE_PATHS:
            raise ValueError(f"Unsupported browser: {browser}")
        self.profile_path = os.path.expanduser(profile_path or config.BROWSER_PROFILE_PATHS[self.browser].get(self.system, ""))
        self.poll_interval = poll_interval
        self._keys: Optional[Dict[str, List[bytes]]] = None
        self._listeners: List[Callable[[List[CookieChange]], None]] = []
        self._snapshot: Optional[Dict[Tuple[str, str, str], Cookie]] = None
        self._last_mtime: Optional[float] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def cookies_db_path(self) -> str:
        # Chromium 96+ keeps the database under 'Network'
        network_path = os.path.join(self.profile_path, "Network", config.CHROMIUM_COOKIES_FILE)
        if os.path.exists(network_path):
            return network_path
        return os.path.join(self.profile_path, config.CHROMIUM_COOKIES_FILE)

    def get_cookies(self, domain: str) -> List[Cookie]:
        """Return every cookie the browser would send to https://<domain>/."""
        target = normalize_domain(domain)
        if not target:
            return []
        return [c for c in self.read_all() if applies_to(c, target)]

    def read_all(self) -> List[Cookie]:
        """
        Read all cookies of the profile.

        Raises:
            FileNotFoundError: If the profile has no cookie database
        """
        db_path = self.cookies_db_path
        if not os.path.exists(db_path):
            raise FileNotFoundError(f"Browser cookie database not found: {db_path}")

        # The browser keeps the database locked; read from a copy
        with tempfile.TemporaryDirectory() as temp_dir:
            temp_db_path = os.path.join(temp_dir, config.CHROMIUM_COOKIES_FILE)
            shutil.copy2(db_path, temp_db_path)
            conn = sqlite3.connect(temp_db_path)
            try:
                conn.row_factory = sqlite3.Row
                strip_domain_hash = self._db_version(conn) >= config.CHROMIUM_DOMAIN_HASH_DB_VERSION
                rows = conn.execute("SELECT * FROM cookies").fetchall()
            finally:
                conn.close()

        cookies = []
        for row in rows:
            try:
                cookies.append(self._row_to_cookie(row, strip_domain_hash))
            except CookieDecryptionError as e:
                logger.debug(f"Skipping cookie {row['name']} for {row['host_key']}: {e}")
        return cookies

    @staticmethod
    def _db_version(conn: sqlite3.Connection) -> int:
        try:
            row = conn.execute("SELECT value FROM meta WHERE key = 'version'").fetchone()
        except sqlite3.OperationalError:
            return 0
        try:
            return int(row[0]) if row else 0
        except (TypeError, ValueError):
            return 0

    def _row_to_cookie(self, row: sqlite3.Row, strip_domain_hash: bool) -> Cookie:
        columns = row.keys()

        def column(name, default=None):
            return row[name] if name in columns else default

        host_key = row['host_key']
        value = column('value') or ""
        encrypted_value = column('encrypted_value') or b""
        if not value and encrypted_value:
            value = self._decrypt_value(bytes(encrypted_value), strip_domain_hash)

        persistent = bool(column('is_persistent', column('has_expires', 0)))
        expires_utc = column('expires_utc', 0) or 0
        expiration_date = None
        if persistent and expires_utc:
            expiration_date = expires_utc / 1_000_000 - config.CHROMIUM_EPOCH_OFFSET_SECONDS

        partition_site = column('top_frame_site_key') or ""
        return Cookie(
            name=row['name'],
            value=value,
            domain=host_key,
            path=column('path') or "/",
            secure=bool(column('is_secure', 0)),
            http_only=bool(column('is_httponly', 0)),
            expiration_date=expiration_date,
            same_site=SAME_SITE_VALUES.get(column('samesite', -1), "unspecified"),
            host_only=not host_key.startswith('.'),
            session=not persistent,
            store_id="0",
            priority=PRIORITY_VALUES.get(column('priority', 1), "medium"),
            partition_key={"topLevelSite": partition_site} if partition_site else None,
        )

    def _get_keys(self) -> Dict[str, List[bytes]]:
        """Candidate keys per value prefix (b'v10', b'v11'), resolved once."""
        if self._keys is None:
            if self.system == "Windows":
                self._keys = self._get_windows_keys()
            elif self.system in ("Darwin", "Linux"):
                self._keys = self._get_posix_keys()
            else:
                self._keys = {}
        return self._keys

    def _get_windows_keys(self) -> Dict[str, List[bytes]]:
        if not WIN32_AVAILABLE:
            logger.warning("pywin32 not available, encrypted cookies cannot be read.")
            return {}
        # 'Local State' sits in 'User Data', one level above the profile
        local_state_path = os.path.join(os.path.dirname(self.profile_path), config.CHROMIUM_LOCAL_STATE_FILE)
        try:
            with open(local_state_path, "r", encoding="utf-8") as f:
                local_state = json.load(f)
            encrypted_key = base64.b64decode(local_state["os_crypt"]["encrypted_key"])
            # Remove 'DPAPI' prefix
            key = win32crypt.CryptUnprotectData(encrypted_key[5:], None, None, None, 0)[1]
        except Exception as e:
            logger.warning(f"Could not retrieve browser encryption key: {e}")
            return {}
        return {"v10": [key]}

    def _get_posix_keys(self) -> Dict[str, List[bytes]]:
        iterations = config.CHROMIUM_PBKDF2_ITERATIONS[self.system]
        product = config.BROWSER_KEYRING_NAMES[self.browser]
        password = None
        if keyring is not None:
            try:
                if self.system == "Darwin":
                    password = keyring.get_password(f"{product} Safe Storage", product)
                else:
                    # KWallet layout: folder '<product> Keys', entry '<product> Safe Storage'
                    password = keyring.get_password(f"{product} Keys", f"{product} Safe Storage")
            except Exception as e:
                logger.warning(f"Keyring lookup failed: {e}")

        def derive(secret: bytes) -> bytes:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA1(),
                length=16,
                salt=config.CHROMIUM_SALT,
                iterations=iterations,
            )
            return kdf.derive(secret)

        if self.system == "Darwin":
            return {"v10": [derive(password.encode())]} if password else {}

        v11 = [derive(password.encode())] if password else []
        v11.append(derive(b""))
        return {"v10": [derive(config.CHROMIUM_DEFAULT_PASSWORD)], "v11": v11}

    def _decrypt_value(self, encrypted_value: bytes, strip_domain_hash: bool) -> str:
        prefix = encrypted_value[:3].decode("ascii", errors="replace")
        keys = self._get_keys().get(prefix)
        if not keys:
            raise CookieDecryptionError(f"No key for value format {prefix!r}")
        payload = encrypted_value[3:]

        for key in keys:
            try:
                if self.system == "Windows":
                    decrypted = AESGCM(key).decrypt(payload[:12], payload[12:], None)
                else:
                    cipher = Cipher(algorithms.AES(key), modes.CBC(b" " * 16))
                    decryptor = cipher.decryptor()
                    padded = decryptor.update(payload) + decryptor.finalize()
                    unpadder = padding.PKCS7(128).unpadder()
                    decrypted = unpadder.update(padded) + unpadder.finalize()
            except Exception:
                continue
            if strip_domain_hash:
                decrypted = decrypted[32:]
            try:
                return decrypted.decode("utf-8")
            except UnicodeDecodeError:
                continue
        raise CookieDecryptionError("Unable to decrypt cookie value")

    # Change notifications

    def subscribe(self, listener: Callable[[List[CookieChange]], None]) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[List[CookieChange]], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start_watching(self) -> None:
        """Start polling the cookie database for changes in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._snapshot = self._take_snapshot()
        # Without a baseline the loop keeps reading until one is taken
        self._last_mtime = self._db_mtime() if self._snapshot is not None else None
        self._stop.clear()
        self._thread = threading.Thread(target=self._watch_loop, name="cookie-watcher", daemon=True)
        self._thread.start()

    def stop_watching(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval + 1)
            self._thread = None

    def _db_mtime(self) -> Optional[float]:
        try:
            return os.path.getmtime(self.cookies_db_path)
        except OSError:
            return None

    def _take_snapshot(self) -> Optional[Dict[Tuple[str, str, str], Cookie]]:
        """Current cookies by identity, or None when the database cannot be read."""
        try:
            return {_cookie_identity(c): c for c in self.read_all()}
        except (OSError, sqlite3.Error) as e:
            logger.warning(f"Cannot read browser cookies: {e}")
            return None

    def _watch_loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            mtime = self._db_mtime()
            if mtime == self._last_mtime:
                continue
            current = self._take_snapshot()
            if current is None:
                # Keep the old mtime so the next poll reads again
                continue
            self._last_mtime = mtime
            changes = self._diff(current)
            if not changes:
                continue
            # One notification per poll, so listeners can batch the affected domains
            for listener in list(self._listeners):
                try:
                    listener(changes)
                except Exception as e:
                    logger.error(f"Cookie change listener failed: {e}", exc_info=True)

    def poll_changes(self) -> List[CookieChange]:
        """
        Diff the current cookies against the last snapshot.

        A failed read reports no changes and keeps the snapshot, so a
        transient lock on the database is not mistaken for a mass removal.
        """
        current = self._take_snapshot()
        if current is None:
            return []
        return self._diff(current)

    def _diff(self, current: Dict[Tuple[str, str, str], Cookie]) -> List[CookieChange]:
        previous_snapshot, self._snapshot = self._snapshot, current
        if previous_snapshot is None:
            # First successful read only sets the baseline
            return []
        changes = []
        for identity, cookie in current.items():
            previous = previous_snapshot.get(identity)
            if previous is None or previous != cookie:
                changes.append(CookieChange(cookie))
        for identity, cookie in previous_snapshot.items():
            if identity not in current:
                changes.append(CookieChange(cookie, removed=True))
        return changes
