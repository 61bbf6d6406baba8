import os
import json
import logging
from dataclasses import dataclass, field, asdict, replace
from typing import Any, Dict, List, Optional

from cookiebridge.domains import normalize_domain
from cookiebridge.utils import get_state_path
from . import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorConfig:
    """Browser monitor settings"""

    domains: List[str] = field(default_factory=list)
    sync_interval_ms: int = config.DEFAULT_SYNC_INTERVAL_MS
    enabled: bool = True

    def __post_init__(self):
        # Canonical, de-duplicated target domains
        canonical = []
        for domain in self.domains:
            value = normalize_domain(domain)
            if value and value not in canonical:
                canonical.append(value)
        object.__setattr__(self, 'domains', canonical)
        object.__setattr__(self, 'sync_interval_ms', max(int(self.sync_interval_ms), config.MIN_SYNC_INTERVAL_MS))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def updated(self, **changes) -> 'MonitorConfig':
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MonitorConfig':
        """Merge stored values over the defaults, ignoring unknown keys."""
        merged = dict(cls().to_dict())
        for key in ('domains', 'sync_interval_ms', 'enabled'):
            if key in data:
                merged[key] = data[key]
        # Older files held a single target domain
        if 'domains' not in data and isinstance(data.get('domain'), str):
            merged['domains'] = [data['domain']]
        if not isinstance(merged['domains'], list):
            raise ValueError("'domains' must be a list")
        if not isinstance(merged['enabled'], bool):
            logger.warning(f"Ignoring non-boolean 'enabled' value: {merged['enabled']!r}")
            merged['enabled'] = cls.enabled
        return cls(
            domains=[d for d in merged['domains'] if isinstance(d, str)],
            sync_interval_ms=int(merged['sync_interval_ms']),
            enabled=merged['enabled'],
        )


def get_monitor_config_path() -> str:
    return get_state_path(config.MONITOR_CONFIG_FILE)


def load_monitor_config(path: Optional[str] = None) -> MonitorConfig:
    """
    Loads the monitor configuration, falling back to defaults when the file is
    missing or unreadable.
    """
    path = path or get_monitor_config_path()
    if not os.path.exists(path):
        return MonitorConfig()
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return MonitorConfig.from_dict(json.load(f))
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Failed to load monitor config from {path}: {e}")
        return MonitorConfig()


def save_monitor_config(monitor_config: MonitorConfig, path: Optional[str] = None) -> None:
    path = path or get_monitor_config_path()
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(monitor_config.to_dict(), f, indent=2)
