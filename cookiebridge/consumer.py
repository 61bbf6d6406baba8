"""
Read side of the credential store, for CLI and service code.

The consumer never writes the store. It runs in a different process from the
native host and may observe the file while it is being replaced, so a failed
read is retried once before it is reported.
"""

import time
import logging
from typing import Any, Dict, Optional

import httpx

from cookiebridge.domains import select_site
from cookiebridge.models import AuthDataV2, SiteAuthData
from cookiebridge.storage import AuthStore, StoreReadError
from cookiebridge.utils import now_ms
from . import config

logger = logging.getLogger(__name__)


class AuthUnavailable(Exception):
    """No usable credentials; the user should sync from the browser and retry."""


class AuthConsumer:
    """Loads synced cookies and reports on their freshness."""

    def __init__(self, store: Optional[AuthStore] = None, max_age_ms: int = config.MAX_AUTH_AGE_MS,
                 clock=now_ms, retry_delay: float = config.READ_RETRY_DELAY_SECONDS, sleep=time.sleep):
        self.store = store or AuthStore()
        self.max_age_ms = max_age_ms
        self.clock = clock
        self.retry_delay = retry_delay
        self.sleep = sleep

    def load(self) -> Optional[AuthDataV2]:
        """
        Read the store, retrying once if it is unreadable.

        Returns:
            The migrated store, or None if no store file exists
        Raises:
            StoreReadError: If the second attempt fails as well
        """
        try:
            return self.store.load_sites()
        except StoreReadError as e:
            logger.debug(f"Store read failed, retrying once: {e}")
        self.sleep(self.retry_delay)
        return self.store.load_sites()

    def is_stale(self, site: SiteAuthData) -> bool:
        return self.clock() - site.timestamp > self.max_age_ms

    def get_site(self, host: Optional[str] = None, domain: Optional[str] = None) -> SiteAuthData:
        """
        Select the site to use for a request to host (or domain).

        Raises:
            AuthUnavailable: If the store is missing, unreadable or empty
        """
        try:
            auth_data = self.load()
        except StoreReadError as e:
            raise AuthUnavailable(f"Failed to load auth: {e}. Retry, or sync again from the browser.") from e
        if auth_data is None:
            raise AuthUnavailable(
                f"Auth file not found at {self.store.filepath}. "
                "Please install the browser extension and log in."
            )
        site = select_site(auth_data.sites, host=host, domain=domain)
        if site is None:
            raise AuthUnavailable("No synced sites in auth file. Please log in with the browser.")
        if self.is_stale(site):
            logger.warning(f"Auth for {site.domain} is stale. Please refresh by visiting the site in the browser.")
        return site

    def get_auth_status(self, host: Optional[str] = None, domain: Optional[str] = None) -> Dict[str, Any]:
        """Summarise the stored credentials. Never raises."""
        try:
            site = self.get_site(host=host, domain=domain)
        except AuthUnavailable as e:
            return {'authenticated': False, 'error': str(e)}
        except Exception as e:
            logger.error(f"Unexpected error reading auth status: {e}", exc_info=True)
            return {'authenticated': False, 'error': str(e)}

        return {
            'authenticated': True,
            'domain': site.domain,
            'cookieCount': len(site.cookies),
            'syncedAt': site.synced_at,
            'isStale': self.is_stale(site),
        }

    @staticmethod
    def get_cookie_header(site: SiteAuthData) -> str:
        """'name=value; name=value' in store order."""
        return "; ".join(f"{c.name}={c.value}" for c in site.cookies)

    @staticmethod
    def get_cookie_value(site: SiteAuthData, name: str) -> Optional[str]:
        """Case-insensitive cookie lookup; empty values count as missing."""
        target = name.lower()
        for cookie in site.cookies:
            if cookie.name.lower() == target:
                return cookie.value or None
        return None

    def build_headers(self, host: Optional[str] = None, domain: Optional[str] = None) -> Dict[str, str]:
        site = self.get_site(host=host, domain=domain)
        return {'Cookie': self.get_cookie_header(site)}


class StoredCookieAuth(httpx.Auth):
    """
    httpx authentication that attaches the synced cookies for the request host.

    Usage:
        client = httpx.Client(auth=StoredCookieAuth())
    """

    def __init__(self, consumer: Optional[AuthConsumer] = None, domain: Optional[str] = None):
        self.consumer = consumer or AuthConsumer()
        self.domain = domain

    def auth_flow(self, request: httpx.Request):
        site = self.consumer.get_site(host=request.url.host, domain=self.domain)
        request.headers['Cookie'] = self.consumer.get_cookie_header(site)
        response = yield request
        if response.status_code in (401, 403):
            logger.warning(f"Request to {request.url.host} was rejected ({response.status_code}); "
                           f"the synced session for {site.domain} may have expired.")
