"""
Data model shared by the browser monitor, the native host and the consumer.

Everything crossing a trust boundary (a decoded IPC message, a decrypted store
document) is validated here field by field before it becomes a model object.
The JSON form keeps the browser's camelCase keys.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union

from . import config


class InvalidShape(ValueError):
    """A JSON document does not have the expected structure."""


class MalformedMessage(InvalidShape):
    """A framed IPC message is not a recognised, well-formed message."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require(data: Dict[str, Any], key: str, check, what: str, error=InvalidShape):
    value = data.get(key)
    if not check(value):
        raise error(f"Field '{key}' must be {what}")
    return value


def _optional(data: Dict[str, Any], key: str, check, what: str, error=InvalidShape):
    value = data.get(key)
    if value is not None and not check(value):
        raise error(f"Field '{key}' must be {what}")
    return value


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_dict(value: Any) -> bool:
    return isinstance(value, dict)


@dataclass(frozen=True)
class Cookie:
    """One browser cookie as captured at sync time."""
    name: str
    value: str
    domain: str
    path: str = "/"
    secure: bool = False
    http_only: bool = False
    expiration_date: Optional[float] = None
    same_site: Optional[str] = None
    host_only: Optional[bool] = None
    session: Optional[bool] = None
    store_id: Optional[str] = None
    same_party: Optional[bool] = None
    priority: Optional[str] = None
    partition_key: Optional[Dict[str, Any]] = None

    # JSON key -> (attribute, validator, description) for the optional attributes
    OPTIONAL_FIELDS: ClassVar[Dict[str, tuple]] = {
        'expirationDate': ('expiration_date', _is_number, 'a number'),
        'sameSite': ('same_site', _is_str, 'a string'),
        'hostOnly': ('host_only', _is_bool, 'a boolean'),
        'session': ('session', _is_bool, 'a boolean'),
        'storeId': ('store_id', _is_str, 'a string'),
        'sameParty': ('same_party', _is_bool, 'a boolean'),
        'priority': ('priority', _is_str, 'a string'),
        'partitionKey': ('partition_key', _is_dict, 'an object'),
    }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the browser's JSON form, omitting unset optional attributes."""
        data = {
            'name': self.name,
            'value': self.value,
            'domain': self.domain,
            'path': self.path,
            'secure': self.secure,
            'httpOnly': self.http_only,
        }
        for key, (attr, _, _) in self.OPTIONAL_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Any, error=InvalidShape) -> 'Cookie':
        """Validate and create from the browser's JSON form."""
        if not isinstance(data, dict):
            raise error("Cookie must be an object")
        kwargs = {
            'name': _require(data, 'name', _is_str, 'a string', error),
            'value': _require(data, 'value', _is_str, 'a string', error),
            'domain': _require(data, 'domain', _is_str, 'a string', error),
            'path': _optional(data, 'path', _is_str, 'a string', error) or "/",
            'secure': bool(_optional(data, 'secure', _is_bool, 'a boolean', error)),
            'http_only': bool(_optional(data, 'httpOnly', _is_bool, 'a boolean', error)),
        }
        for key, (attr, check, what) in cls.OPTIONAL_FIELDS.items():
            kwargs[attr] = _optional(data, key, check, what, error)
        return cls(**kwargs)


def _parse_cookies(value: Any, error=InvalidShape) -> List[Cookie]:
    if not isinstance(value, list):
        raise error("Field 'cookies' must be an array")
    return [Cookie.from_dict(item, error) for item in value]


@dataclass
class SiteAuthData:
    """One domain's cookie snapshot inside the store."""
    domain: str
    timestamp: float
    synced_at: str
    cookies: List[Cookie] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'domain': self.domain,
            'cookies': [c.to_dict() for c in self.cookies],
            'syncedAt': self.synced_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'SiteAuthData':
        if not isinstance(data, dict):
            raise InvalidShape("Site entry must be an object")
        return cls(
            domain=_require(data, 'domain', _is_str, 'a string'),
            timestamp=_require(data, 'timestamp', _is_number, 'a number'),
            synced_at=_require(data, 'syncedAt', _is_str, 'a string'),
            cookies=_parse_cookies(data.get('cookies')),
        )


@dataclass
class AuthDataV1:
    """Legacy single-site document: the site fields at the top level, no version tag."""
    site: SiteAuthData
    version: ClassVar[int] = 1

    def to_dict(self) -> Dict[str, Any]:
        return self.site.to_dict()


@dataclass
class AuthDataV2:
    """Multi-site document keyed by canonical domain."""
    sites: Dict[str, SiteAuthData] = field(default_factory=dict)
    version: ClassVar[int] = 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'sites': {key: site.to_dict() for key, site in self.sites.items()},
        }


AuthData = Union[AuthDataV1, AuthDataV2]


def is_v2_document(doc: Dict[str, Any]) -> bool:
    """The only version discriminant: an explicit numeric version field equal to 2."""
    version = doc.get('version')
    return _is_number(version) and version == 2


def parse_auth_document(doc: Any) -> AuthData:
    """
    Validate a decrypted store document and return the matching variant.

    Any document that is not tagged version 2 is read as version 1 and must
    then carry the site fields at the top level.

    Raises:
        InvalidShape: If the document matches neither variant
    """
    if not isinstance(doc, dict):
        raise InvalidShape("Auth data must be an object")

    if is_v2_document(doc):
        sites = doc.get('sites')
        if not isinstance(sites, dict):
            raise InvalidShape("Field 'sites' must be an object")
        parsed = {}
        for key, value in sites.items():
            if not isinstance(key, str):
                raise InvalidShape("Site keys must be strings")
            parsed[key] = SiteAuthData.from_dict(value)
        return AuthDataV2(parsed)

    return AuthDataV1(SiteAuthData.from_dict(doc))


@dataclass
class SyncMessage:
    """Client to host: the full cookie set of one domain."""
    timestamp: float
    domain: str
    cookies: List[Cookie]
    type: ClassVar[str] = config.MESSAGE_TYPE_SYNC

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'timestamp': self.timestamp,
            'domain': self.domain,
            'cookies': [c.to_dict() for c in self.cookies],
        }


def parse_sync_message(payload: Any) -> SyncMessage:
    """
    Validate a decoded IPC payload as a sync message.

    Raises:
        MalformedMessage: If the payload is not an object, has another type,
            or any required field is missing or mistyped
    """
    if not isinstance(payload, dict):
        raise MalformedMessage("Message must be a JSON object")
    message_type = payload.get('type')
    if message_type != config.MESSAGE_TYPE_SYNC:
        raise MalformedMessage(f"Unknown message type: {message_type}")
    return SyncMessage(
        timestamp=_require(payload, 'timestamp', _is_number, 'a number', MalformedMessage),
        domain=_require(payload, 'domain', _is_str, 'a string', MalformedMessage),
        cookies=_parse_cookies(payload.get('cookies'), MalformedMessage),
    )


def ack_message(cookie_count: int, domain: Optional[str] = None, success: bool = True) -> Dict[str, Any]:
    message = {'type': config.MESSAGE_TYPE_ACK, 'success': success, 'cookieCount': cookie_count}
    if domain is not None:
        message['domain'] = domain
    return message


def error_message(error: str) -> Dict[str, Any]:
    return {'type': config.MESSAGE_TYPE_ERROR, 'error': error}
