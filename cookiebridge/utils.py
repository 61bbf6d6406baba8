"""
Platform helpers: state directory, key material, file permissions and clocks.
"""
import datetime
import platform
import os
import stat
import time
import logging

from . import config

logger = logging.getLogger(__name__)

if platform.system() == "Windows":
    try:
        import win32security
        import win32api
        import win32con
        import win32file
        WINDOWS_SECURITY_AVAILABLE = True
    except ImportError:
        logger.warning("pywin32 not fully installed, cannot set Windows file permissions securely.")
        WINDOWS_SECURITY_AVAILABLE = False
else:
    WINDOWS_SECURITY_AVAILABLE = False


def get_state_dir() -> str:
    """Directory holding the store, logs and monitor configuration."""
    override = os.environ.get(config.CONFIG_DIR_ENV)
    if override:
        return os.path.expanduser(override)
    return os.path.join(os.path.expanduser("~"), config.CONFIG_DIR_NAME)


def get_state_path(filename: str) -> str:
    return os.path.join(get_state_dir(), filename)


def get_default_key_material() -> str:
    """
    Key material bound to the local identity (the user's home directory).

    The same value is computed by the host when writing and by the consumer
    when reading, without either of them storing a secret.
    """
    override = os.environ.get(config.KEY_MATERIAL_ENV)
    if override:
        return override
    return f"{config.KEY_MATERIAL_PREFIX}{os.path.expanduser('~')}"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def utc_now_iso() -> str:
    """Current UTC time in ISO-8601 with millisecond precision and a 'Z' suffix."""
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def set_owner_only_permissions(filepath: str) -> bool:
    """
    Restrict a file to its owner. Best effort: returns False instead of raising.
    """
    if platform.system() == 'Windows':
        return _set_windows_file_permissions(filepath)
    try:
        os.chmod(filepath, stat.S_IRUSR | stat.S_IWUSR)  # 600
        return True
    except OSError as e:
        logger.warning(f"Failed to chmod {filepath}: {e}")
        return False


def _set_windows_file_permissions(filepath: str) -> bool:
    """
    Sets restrictive permissions on a file for Windows, granting full control
    only to the current user/owner and removing access for others.
    """
    if not WINDOWS_SECURITY_AVAILABLE:
        logger.warning(f"Skipping Windows file permission setting for {filepath}: pywin32 not available.")
        return False

    try:
        # Get the SID of the current user
        current_user_name = win32api.GetUserName()
        current_user_sid, _, _ = win32security.LookupAccountName(None, current_user_name)

        dacl = win32security.ACL()
        dacl.AddAccessAllowedAce(
            win32security.ACL_REVISION,
            win32con.GENERIC_READ | win32con.GENERIC_WRITE,
            current_user_sid
        )

        file_handle = win32file.CreateFile(
            filepath,
            win32con.WRITE_DAC,
            win32file.FILE_SHARE_READ | win32file.FILE_SHARE_WRITE | win32file.FILE_SHARE_DELETE,
            None,
            win32con.OPEN_EXISTING,
            win32con.FILE_ATTRIBUTE_NORMAL,
            None
        )

        try:
            # Protected DACL: inherited entries from the state directory are dropped
            win32security.SetSecurityInfo(
                file_handle,
                win32security.SE_FILE_OBJECT,
                win32security.DACL_SECURITY_INFORMATION | win32security.PROTECTED_DACL_SECURITY_INFORMATION,
                None,
                None,
                dacl,
                None
            )
            logger.info(f"Set restrictive permissions for {filepath} on Windows.")
        finally:
            win32file.CloseHandle(file_handle)
    except Exception as e:
        if isinstance(e, win32api.error) and e.winerror == 5:  # Access is denied
            logger.warning(f"Could not harden Windows permissions for {filepath}: Access is denied. The file was written.")
            return True
        logger.error(f"Failed to set Windows file permissions for {filepath}: {e}")
        return False
    return True
