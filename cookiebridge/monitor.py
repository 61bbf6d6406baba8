"""
Browser monitor: keeps the credential store in step with the browser.

Syncs on a periodic timer and whenever a cookie of a target domain changes.
A change only resyncs the domain of the changed cookie, and only when that
domain is a target or a subdomain of one. Each sync sends the full
current cookie set of a domain, because the store replaces a domain's
snapshot wholesale.
"""

import datetime
import threading
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from cookiebridge.channel import ChannelDisconnected, NativeHostChannel
from cookiebridge.domains import matches_any, normalize_domain
from cookiebridge.models import SyncMessage
from cookiebridge.settings import MonitorConfig, save_monitor_config
from cookiebridge.utils import now_ms
from . import config

logger = logging.getLogger(__name__)


class MonitorState(Enum):
    IDLE = "idle"
    SYNCED = "synced"
    NOT_AUTHENTICATED = "not_authenticated"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    DISABLED = "disabled"

    @property
    def badge(self):
        """(text, colour) shown for this state."""
        return config.BADGE_STATES[self.value]


def log_indicator(state: MonitorState) -> None:
    text, color = state.badge
    logger.info(f"Monitor state: {state.value} [{text or '-'} {color}]")


@dataclass
class SyncReport:
    """Outcome of one sync round."""
    domains: List[str]
    sent: Dict[str, int] = field(default_factory=dict)
    acked: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    disconnected: bool = False

    @property
    def cookie_count(self) -> int:
        return sum(self.sent.values())


@dataclass
class MonitorSession:
    """Everything a running monitor owns, passed to each handler."""
    config: MonitorConfig
    channel: NativeHostChannel
    cookie_source: Any
    state: MonitorState = MonitorState.IDLE
    last_sync: Optional[datetime.datetime] = None
    timer: Optional[threading.Timer] = None
    lock: threading.RLock = field(default_factory=threading.RLock)
    running: bool = True


class CookieMonitor:
    """Watches browser cookies and forwards them to the native host."""

    def __init__(self, monitor_config: MonitorConfig, channel: NativeHostChannel, cookie_source,
                 indicator: Optional[Callable[[MonitorState], None]] = None,
                 config_path: Optional[str] = None, clock: Callable[[], int] = now_ms):
        """
        Args:
            monitor_config: Initial configuration
            channel: Channel to the native host
            cookie_source: Object with get_cookies(domain) and subscribe(listener);
                start_watching()/stop_watching() are used when present
            indicator: Called with the new state whenever it changes
            config_path: Where update_config() persists changes (None: default path)
            clock: Capture time source in epoch milliseconds
        """
        self.monitor_config = monitor_config
        self.channel = channel
        self.cookie_source = cookie_source
        self.indicator = indicator or log_indicator
        self.config_path = config_path
        self.clock = clock
        self.session: Optional[MonitorSession] = None

    def start(self) -> MonitorSession:
        """Subscribe to cookie changes, run an initial sync and start the timer."""
        if self.session is not None:
            return self.session
        session = MonitorSession(self.monitor_config, self.channel, self.cookie_source)
        self.session = session
        logger.info(f"Starting cookie monitor for {', '.join(session.config.domains) or 'no domains'}")

        self.cookie_source.subscribe(self._on_cookie_changes)
        if hasattr(self.cookie_source, 'start_watching'):
            self.cookie_source.start_watching()

        self.sync_cookies(session)
        self.restart_timer(session)
        return session

    def stop(self) -> None:
        session, self.session = self.session, None
        if session is None:
            return
        with session.lock:
            session.running = False
            if session.timer is not None:
                session.timer.cancel()
                session.timer = None
        if hasattr(self.cookie_source, 'unsubscribe'):
            self.cookie_source.unsubscribe(self._on_cookie_changes)
        if hasattr(self.cookie_source, 'stop_watching'):
            self.cookie_source.stop_watching()
        session.channel.close()
        logger.info("Cookie monitor stopped")

    def restart_timer(self, session: MonitorSession) -> None:
        """Replace the periodic sync timer; there is never more than one."""
        with session.lock:
            if session.timer is not None:
                session.timer.cancel()
                session.timer = None
            if not session.running:
                return
            timer = threading.Timer(session.config.sync_interval_ms / 1000.0, self._on_timer, args=(session,))
            timer.daemon = True
            session.timer = timer
            timer.start()

    def _on_timer(self, session: MonitorSession) -> None:
        try:
            self.sync_cookies(session)
        finally:
            self.restart_timer(session)

    def _on_cookie_changes(self, changes) -> None:
        if self.session is not None:
            self.handle_cookie_changes(self.session, changes)

    def handle_cookie_changes(self, session: MonitorSession, changes: Iterable) -> Optional[SyncReport]:
        """
        Resync only the domains touched by changed cookies of a target domain.

        The domain synced for a change is the cookie's own canonical domain:
        the target itself, or the subdomain of a target the cookie was set on,
        since a subdomain's cookies are not sent to its parent. Each such
        domain is synced once however many cookies changed on it.

        Returns:
            The sync report, or None when no change touched a target domain
        """
        if not session.config.enabled:
            return None
        scope: List[str] = []
        for change in changes:
            targets = matches_any(change.cookie.domain, session.config.domains)
            if not targets:
                continue
            domain = normalize_domain(change.cookie.domain)
            if domain not in scope:
                scope.append(domain)
                logger.info(f"Cookie {'removed' if change.removed else 'changed'}: {change.cookie.name} "
                            f"({domain}, target {targets[0]})")
        if not scope:
            return None
        return self.sync_cookies(session, scope)

    def sync_cookies(self, session: MonitorSession, domains: Optional[List[str]] = None) -> SyncReport:
        """
        Send the current cookies of each domain in scope (default: all targets).

        Domains without cookies are skipped. A disconnected channel ends the
        round; it is re-established on the next send.
        A scoped round that finds no cookies leaves the state as it was; only
        a full round reports the user as not authenticated.
        """
        with session.lock:
            scope = list(domains if domains is not None else session.config.domains)
            report = SyncReport(scope)
            if not session.config.enabled:
                self._set_state(session, MonitorState.DISABLED)
                return report

            for domain in scope:
                try:
                    cookies = session.cookie_source.get_cookies(domain)
                except Exception as e:
                    logger.error(f"Failed to read cookies for {domain}: {e}", exc_info=True)
                    report.errors.append(f"{domain}: {e}")
                    continue
                if not cookies:
                    logger.debug(f"No cookies for {domain}")
                    continue

                message = SyncMessage(timestamp=self.clock(), domain=domain, cookies=cookies)
                try:
                    response = session.channel.send(message.to_dict())
                except ChannelDisconnected as e:
                    logger.warning(f"{e}")
                    report.disconnected = True
                    break
                report.sent[domain] = len(cookies)
                self._handle_response(domain, response, report)

            if report.disconnected:
                self._set_state(session, MonitorState.DISCONNECTED)
            elif report.errors:
                self._set_state(session, MonitorState.ERROR)
            elif report.cookie_count == 0:
                # Only a full round speaks for every target
                if domains is None:
                    self._set_state(session, MonitorState.NOT_AUTHENTICATED)
                else:
                    logger.debug(f"No cookies left for {', '.join(scope)}; state unchanged")
            else:
                session.last_sync = datetime.datetime.now(datetime.timezone.utc)
                self._set_state(session, MonitorState.SYNCED)
            return report

    def _handle_response(self, domain: str, response: Dict[str, Any], report: SyncReport) -> None:
        message_type = response.get('type')
        if message_type == config.MESSAGE_TYPE_ACK and response.get('success'):
            logger.info(f"Native host stored {response.get('cookieCount')} cookies for {response.get('domain', domain)}")
            report.acked.append(domain)
        elif message_type == config.MESSAGE_TYPE_ERROR:
            logger.error(f"Native host rejected sync for {domain}: {response.get('error')}")
            report.errors.append(f"{domain}: {response.get('error')}")
        else:
            logger.error(f"Unexpected native host response for {domain}: {message_type}")
            report.errors.append(f"{domain}: unexpected response {message_type}")

    def _set_state(self, session: MonitorSession, state: MonitorState) -> None:
        if session.state == state:
            return
        session.state = state
        self.indicator(state)

    # Popup-facing operations

    def get_status(self) -> Dict[str, Any]:
        session = self.session
        monitor_config = session.config if session else self.monitor_config
        last_sync = session.last_sync if session else None
        return {
            'enabled': monitor_config.enabled,
            'domains': list(monitor_config.domains),
            'lastSync': last_sync.isoformat() if last_sync else None,
            'connected': self.channel.connected,
            'state': session.state.value if session else MonitorState.IDLE.value,
        }

    def update_config(self, **changes) -> MonitorConfig:
        """
        Apply and persist configuration changes.

        A changed sync interval restarts the timer.
        """
        new_config = (self.session.config if self.session else self.monitor_config).updated(**changes)
        old_interval = self.monitor_config.sync_interval_ms
        self.monitor_config = new_config
        try:
            save_monitor_config(new_config, self.config_path)
        except OSError as e:
            logger.error(f"Failed to save monitor config: {e}")

        session = self.session
        if session is not None:
            with session.lock:
                session.config = new_config
            if new_config.sync_interval_ms != old_interval:
                self.restart_timer(session)
        return new_config

    def force_sync(self) -> SyncReport:
        if self.session is None:
            raise RuntimeError("Monitor is not running")
        return self.sync_cookies(self.session)
