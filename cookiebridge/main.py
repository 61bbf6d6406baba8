"""
Main entry point for CookieBridge.

LEGAL NOTICE:
This tool is for personal use only. It must operate only on the device where
it is installed and only with the explicit consent of the device owner.

Usage:
    cookiebridge status [--json] [--host HOST]
    cookiebridge monitor [--browser chrome] [--domain example.com ...]
    cookiebridge install-host --extension-id ID
    cookiebridge host                      # started by the browser
"""

import os
import sys
import json
import shutil
import signal
import argparse
import platform
import threading
import logging
from typing import List, Optional

from cookiebridge.browser_cookies import ChromiumCookieSource
from cookiebridge.channel import NativeHostChannel
from cookiebridge.consumer import AuthConsumer
from cookiebridge.host import NativeHost
from cookiebridge.monitor import CookieMonitor
from cookiebridge.settings import load_monitor_config
from cookiebridge.storage import AuthStore
from cookiebridge.utils import get_state_dir, get_state_path
from . import config

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def run_host(args: argparse.Namespace) -> int:
    """Serve one native messaging session on stdin/stdout."""
    os.makedirs(get_state_dir(), exist_ok=True)
    logging.basicConfig(
        filename=get_state_path(config.HOST_LOG_FILE),
        level=logging.DEBUG if getattr(args, 'verbose', False) else logging.INFO,
        format=LOG_FORMAT,
    )
    host = NativeHost(AuthStore())
    try:
        return host.run()
    except Exception as e:
        logger.error(f"Native host failed: {e}", exc_info=True)
        return 1


def run_status(args: argparse.Namespace) -> int:
    status = AuthConsumer().get_auth_status(host=args.host, domain=args.domain)

    if args.json:
        print(json.dumps(status, indent=2))
        return 0 if status['authenticated'] else 1

    if not status['authenticated']:
        print(f"Auth not available: {status['error']}")
        return 1

    print("Authentication Status:")
    print(f"  Domain: {status['domain']}")
    print(f"  Cookies: {status['cookieCount']}")
    print(f"  Synced: {status['syncedAt']}")
    print(f"  Status: {'Stale (refresh recommended)' if status['isStale'] else 'Valid'}")
    return 0


def run_monitor(args: argparse.Namespace) -> int:
    monitor_config = load_monitor_config()
    source = ChromiumCookieSource(profile_path=args.profile, browser=args.browser)
    monitor = CookieMonitor(monitor_config, NativeHostChannel(), source)

    changes = {}
    if args.domain:
        changes['domains'] = args.domain
    if args.interval_minutes:
        changes['sync_interval_ms'] = int(args.interval_minutes * 60 * 1000)
    if changes:
        monitor.update_config(**changes)

    if not monitor.monitor_config.domains:
        print("No target domains configured. Use --domain example.com")
        return 1

    stopped = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stopped.set())
    monitor.start()
    print(f"Monitoring cookies for {', '.join(monitor.monitor_config.domains)}. Press Ctrl+C to stop.")
    try:
        while not stopped.wait(1.0):
            pass
    finally:
        monitor.stop()
    return 0


def _find_host_executable() -> Optional[str]:
    return shutil.which("cookiebridge-host")


def run_install_host(args: argparse.Namespace) -> int:
    """Register the native host with Chromium browsers."""
    host_path = args.host_path or _find_host_executable()
    if not host_path:
        print("Cannot find the 'cookiebridge-host' executable; pass --host-path.")
        return 1

    if args.dir:
        directories = [args.dir]
    else:
        directories = config.NATIVE_HOST_DIRS.get(platform.system())
        if not directories:
            print(f"Unsupported platform for automatic install: {platform.system()}. Use --dir.")
            return 1

    manifest = {
        "name": config.NATIVE_HOST_NAME,
        "description": config.NATIVE_HOST_DESCRIPTION,
        "path": os.path.abspath(host_path),
        "type": "stdio",
        "allowed_origins": [f"chrome-extension://{args.extension_id}/"],
    }
    for directory in directories:
        directory = os.path.expanduser(directory)
        os.makedirs(directory, exist_ok=True)
        manifest_path = os.path.join(directory, f"{config.NATIVE_HOST_NAME}.json")
        with open(manifest_path, 'w', encoding='utf-8') as f:
            json.dump(manifest, f, indent=2)
        print(f"Installed native host manifest: {manifest_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cookiebridge", description=f"{config.APP_NAME} v{config.APP_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    host = subparsers.add_parser("host", help="Run the native messaging host (started by the browser)")
    host.set_defaults(func=run_host)

    status = subparsers.add_parser("status", help="Show the stored authentication status")
    status.add_argument("--json", action="store_true", help="Output in JSON format")
    status.add_argument("--host", help="Select the site used for this host or URL")
    status.add_argument("--domain", help="Select the site for this domain")
    status.set_defaults(func=run_status)

    monitor = subparsers.add_parser("monitor", help="Watch browser cookies and sync them")
    monitor.add_argument("--browser", default="chrome", choices=sorted(config.BROWSER_PROFILE_PATHS))
    monitor.add_argument("--profile", help="Browser profile directory")
    monitor.add_argument("--domain", action="append", help="Target domain (repeatable); saved to the monitor config")
    monitor.add_argument("--interval-minutes", type=float, help="Periodic sync interval; saved to the monitor config")
    monitor.set_defaults(func=run_monitor)

    install = subparsers.add_parser("install-host", help="Install the native messaging host manifest")
    install.add_argument("--extension-id", required=True, help="ID of the browser extension allowed to connect")
    install.add_argument("--host-path", help="Path of the host executable")
    install.add_argument("--dir", help="Manifest directory (default: Chrome and Chromium locations)")
    install.set_defaults(func=run_install_host)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    # The browser appends the caller's origin to the host command line
    args, _ = parser.parse_known_args(argv)
    if args.command != "host":
        default_level = logging.INFO if args.command == "monitor" else logging.WARNING
        logging.basicConfig(level=logging.DEBUG if args.verbose else default_level, format=LOG_FORMAT)
    return args.func(args)


def host_main() -> int:
    """Entry point registered in the native host manifest."""
    return run_host(argparse.Namespace(verbose=False))


if __name__ == "__main__":
    sys.exit(main())
