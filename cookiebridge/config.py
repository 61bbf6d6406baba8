"""
Configuration constants for the CookieBridge application.
"""

import os

# Application Metadata
APP_VERSION = "2.0"  # Use: Current version of the application. Type: str. Range: Semantic versioning string (e.g., "1.0.0")
APP_NAME = "CookieBridge"  # Use: Full name of the application. Type: str. Range: Any valid string.
APP_DISCLAIMER = """  # Use: Legal disclaimer displayed by the CLI. Type: str (multi-line). Range: Any valid string.
This tool is for personal use only. It only reads cookies of the browser profile
on the device where it is installed, for domains the device owner configured,
and never transmits them anywhere except the local credential store.
"""

# File and Directory Names
CONFIG_DIR_NAME = ".cookiebridge"  # Use: Name of the hidden directory within the user's home directory where CookieBridge stores its state files. Type: str. Range: Any valid directory name.
CONFIG_DIR_ENV = "COOKIEBRIDGE_HOME"  # Use: Environment variable overriding the state directory location. Type: str. Range: Any valid environment variable name.
AUTH_FILE_NAME = "site-auth.json"  # Use: Filename of the encrypted multi-site credential store. Type: str. Range: Any valid filename.
HOST_LOG_FILE = "native-host.log"  # Use: Filename of the native host log. The host cannot log to stdout, which carries the protocol. Type: str. Range: Any valid filename.
MONITOR_CONFIG_FILE = "monitor.json"  # Use: Filename of the persisted browser monitor configuration. Type: str. Range: Any valid filename.

# Security Settings
KEY_MATERIAL_ENV = "COOKIEBRIDGE_KEY_MATERIAL"  # Use: Environment variable overriding the store key material. Type: str. Range: Any valid environment variable name.
KEY_MATERIAL_PREFIX = "cookiebridge-"  # Use: Prefix of the default key material, followed by the user's home directory. Type: str. Range: Any string.
KEY_SIZE = 32  # Use: Size of the encryption key in bytes. Corresponds to AES-256. Type: int. Range: 32 bytes (AES-256).
IV_SIZE = 16  # Use: Size of the AES-CBC initialisation vector in bytes. Type: int. Range: 16 bytes (the AES block size).
SCRYPT_SALT = b"salt"  # Use: Fixed scrypt salt. The key is bound to the local identity, not to a secret, so the salt is constant. Type: bytes. Range: Any byte string; changing it makes existing stores unreadable.
SCRYPT_N = 16384  # Use: scrypt CPU/memory cost parameter. Type: int. Range: Power of two, at least 16384.
SCRYPT_R = 8  # Use: scrypt block size parameter. Type: int. Range: Positive integer, typically 8.
SCRYPT_P = 1  # Use: scrypt parallelisation parameter. Type: int. Range: Positive integer, typically 1.
STORE_FILE_MODE = 0o600  # Use: POSIX permission bits applied to the credential store. Type: int. Range: Octal file mode; owner read/write only.

# Credential Store Settings
STORE_VERSION = 2  # Use: Version tag written into every store document. Documents without this tag are read as version 1. Type: int. Range: 2.
MAX_AUTH_AGE_MS = 12 * 60 * 60 * 1000  # Use: Age in milliseconds after which a captured site is reported stale. Type: int. Range: Positive integer; 12 hours.
READ_RETRY_DELAY_SECONDS = 0.2  # Use: Delay before the single retry of a failed store read (the file may be mid-write). Type: float. Range: 0.05 to 2.0 seconds.

# Native Messaging Settings
NATIVE_HOST_NAME = "com.cookiebridge.auth"  # Use: Native messaging host name registered with the browser. Type: str. Range: Reverse-DNS style name.
NATIVE_HOST_DESCRIPTION = "CookieBridge Auth Native Messaging Host"  # Use: Description written into the native host manifest. Type: str. Range: Any string.
MAX_MESSAGE_SIZE = 1024 * 1024  # Use: Largest accepted framed message body in bytes. Larger or zero lengths are protocol violations. Type: int. Range: 1048576 (1 MiB).
READ_CHUNK_SIZE = 65536  # Use: Maximum number of bytes requested from the stream per read event. Type: int. Range: Positive integer.
MESSAGE_TYPE_SYNC = "SYNC_COOKIES"  # Use: Type tag of the cookie sync message. Type: str. Range: "SYNC_COOKIES"
MESSAGE_TYPE_ACK = "ACK"  # Use: Type tag of the acknowledgement message. Type: str. Range: "ACK"
MESSAGE_TYPE_ERROR = "ERROR"  # Use: Type tag of the error message. Type: str. Range: "ERROR"

NATIVE_HOST_DIRS = {  # Use: Per-platform directories where Chromium browsers look up native messaging host manifests. Type: dict[str, list[str]]. Range: Dictionary with platform keys and lists of paths.
    "Darwin": [
        "~/Library/Application Support/Google/Chrome/NativeMessagingHosts",
        "~/Library/Application Support/Chromium/NativeMessagingHosts",
    ],
    "Linux": [
        "~/.config/google-chrome/NativeMessagingHosts",
        "~/.config/chromium/NativeMessagingHosts",
    ],
}

# Browser Monitor Settings
DEFAULT_SYNC_INTERVAL_MS = 60 * 60 * 1000  # Use: Default interval between periodic full syncs in milliseconds. Type: int. Range: MIN_SYNC_INTERVAL_MS and above; 1 hour.
MIN_SYNC_INTERVAL_MS = 60 * 1000  # Use: Smallest accepted periodic sync interval in milliseconds. Type: int. Range: Positive integer.
COOKIE_POLL_INTERVAL_SECONDS = 2.0  # Use: How often the cookie database is checked for modifications. Type: float. Range: 0.5 to 60 seconds.

BADGE_STATES = {  # Use: Badge text and colour shown for each monitor state. Type: dict[str, tuple[str, str]]. Range: State name to (text, hex colour).
    "idle": ("", "#9E9E9E"),
    "synced": ("✓", "#4CAF50"),
    "not_authenticated": ("!", "#FFA500"),
    "disconnected": ("✗", "#F44336"),
    "error": ("✗", "#F44336"),
    "disabled": ("off", "#9E9E9E"),
}

# Browser Cookie Database Settings
CHROMIUM_COOKIES_FILE = "Cookies"  # Use: Filename of the SQLite database holding cookies in Chromium-based browsers. Type: str. Range: "Cookies"
CHROMIUM_LOCAL_STATE_FILE = "Local State"  # Use: Filename of the JSON file holding the cookie encryption key on Windows. Type: str. Range: "Local State"
CHROMIUM_DEFAULT_PASSWORD = b"peanuts"  # Use: Password Chromium uses on Linux when no keyring is available (v10 values). Type: bytes. Range: b"peanuts"
CHROMIUM_SALT = b"saltysalt"  # Use: PBKDF2 salt for Chromium cookie keys on macOS and Linux. Type: bytes. Range: b"saltysalt"
CHROMIUM_PBKDF2_ITERATIONS = {"Darwin": 1003, "Linux": 1}  # Use: PBKDF2 iterations Chromium uses per platform. Type: dict[str, int]. Range: Fixed by Chromium.
CHROMIUM_DOMAIN_HASH_DB_VERSION = 24  # Use: Cookie database version from which decrypted values start with the SHA-256 of the host key. Type: int. Range: 24
CHROMIUM_EPOCH_OFFSET_SECONDS = 11644473600  # Use: Seconds between 1601-01-01 (Chromium timestamps) and the Unix epoch. Type: int. Range: Fixed.

BROWSER_PROFILE_PATHS = {  # Use: Default profile directories of supported browsers per platform. Type: dict[str, dict[str, str]]. Range: Browser name to per-platform path.
    "chrome": {
        "Windows": os.path.join(os.environ.get("LOCALAPPDATA", ""), "Google", "Chrome", "User Data", "Default"),
        "Darwin": "~/Library/Application Support/Google/Chrome/Default",
        "Linux": "~/.config/google-chrome/Default",
    },
    "chromium": {
        "Windows": os.path.join(os.environ.get("LOCALAPPDATA", ""), "Chromium", "User Data", "Default"),
        "Darwin": "~/Library/Application Support/Chromium/Default",
        "Linux": "~/.config/chromium/Default",
    },
    "edge": {
        "Windows": os.path.join(os.environ.get("LOCALAPPDATA", ""), "Microsoft", "Edge", "User Data", "Default"),
        "Darwin": "~/Library/Application Support/Microsoft Edge/Default",
        "Linux": "~/.config/microsoft-edge/Default",
    },
    "brave": {
        "Windows": os.path.join(os.environ.get("LOCALAPPDATA", ""), "BraveSoftware", "Brave-Browser", "User Data", "Default"),
        "Darwin": "~/Library/Application Support/BraveSoftware/Brave-Browser/Default",
        "Linux": "~/.config/BraveSoftware/Brave-Browser/Default",
    },
}

BROWSER_KEYRING_NAMES = {  # Use: Safe Storage keyring service names per browser (macOS Keychain service, KWallet folder prefix). Type: dict[str, str]. Range: Browser name to Chromium product name.
    "chrome": "Chrome",
    "chromium": "Chromium",
    "edge": "Microsoft Edge",
    "brave": "Brave",
}
