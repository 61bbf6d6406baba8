"""
Domain normalisation and site selection.

Used on both sides of the bridge: the browser monitor matches changed cookies
against its target domains, the consumer picks the stored site for a host.
"""

from typing import TYPE_CHECKING, Iterable, List, Mapping, Optional
from urllib.parse import urlsplit

if TYPE_CHECKING:
    from cookiebridge.models import SiteAuthData


def normalize_domain(value) -> str:
    """
    Reduce a hostname, cookie domain or URL to its canonical domain.

    Lowercases, drops a single leading dot and any scheme, port or path.
    Returns an empty string for unusable input; callers treat that as no match.
    """
    if not isinstance(value, str):
        return ""
    candidate = value.strip()
    if not candidate:
        return ""

    try:
        if "://" in candidate:
            host = urlsplit(candidate).hostname or ""
        else:
            # netloc parsing needs the leading slashes for bare host:port input
            host = urlsplit("//" + candidate.split("/", 1)[0]).hostname or ""
    except ValueError:
        host = candidate.split("://", 1)[-1].split("/", 1)[0]

    host = host.strip().lower()
    if host.startswith("."):
        host = host[1:]
    return host


def is_domain_match(domain: str, target: str) -> bool:
    """True if target equals domain or is one of its parent domains (both canonical)."""
    if not domain or not target:
        return False
    return domain == target or domain.endswith("." + target)


def matches_any(cookie_domain: str, targets: Iterable[str]) -> List[str]:
    """Return the canonical targets that cookie_domain belongs to, in configured order."""
    domain = normalize_domain(cookie_domain)
    matched = []
    for target in targets:
        canonical = normalize_domain(target)
        if canonical and canonical not in matched and is_domain_match(domain, canonical):
            matched.append(canonical)
    return matched


def select_site(sites: Mapping[str, "SiteAuthData"], host: Optional[str] = None,
                domain: Optional[str] = None) -> Optional["SiteAuthData"]:
    """
    Pick the stored site to use for a request.

    Resolution order:
        1. exact match of the requested domain (or the host) against a site key
        2. the longest site key that is a parent domain of the request
        3. the most recently captured site

    Args:
        sites: Mapping of canonical domain to SiteAuthData
        host: Hostname or URL of the outgoing request
        domain: Explicit domain; takes precedence over host

    Returns:
        The selected site, or None when the store holds no sites
    """
    if not sites:
        return None

    target = ""
    if domain and domain.strip():
        target = normalize_domain(domain)
    elif host and host.strip():
        target = normalize_domain(host)

    if target:
        exact = sites.get(target)
        if exact is not None:
            return exact

        best = None
        best_len = -1
        for key, site in sites.items():
            canonical = normalize_domain(key)
            if is_domain_match(target, canonical) and len(canonical) > best_len:
                best = site
                best_len = len(canonical)
        if best is not None:
            return best

    newest = None
    for site in sites.values():
        if newest is None or site.timestamp > newest.timestamp:
            newest = site
    return newest
