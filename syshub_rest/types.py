"""
sysHUB REST SDK Type Definitions

Configuration input, the persisted credential record and the response
containers handed back to callers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Protocol, runtime_checkable


# Marker returned by typed endpoints when the server answered 304/Not Modified
NOT_MODIFIED = 304


class SyshubVersion(IntEnum):
    """sysHUB server generations with breaking REST API changes."""

    SYSHUB_2021 = 1
    SYSHUB_2022 = 2
    SYSHUB_2023 = 3
    SYSHUB_2024 = 4

    @classmethod
    def default(cls) -> "SyshubVersion":
        return cls.SYSHUB_2023


class AuthMode(str, Enum):
    """Authentication mode selected by the configuration."""

    STATIC = "basic"
    OAUTH = "oauth"


class StorageLocation(str, Enum):
    """Physical store currently holding the credential record."""

    DURABLE = "durable"
    EPHEMERAL = "ephemeral"


@runtime_checkable
class KeyValueStore(Protocol):
    """String keyed store for custom persistence backends."""

    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        ...

    def set_item(self, key: str, value: str) -> None:
        """Store a value."""
        ...

    def remove_item(self, key: str) -> None:
        """Remove a value; missing keys are ignored."""
        ...


# =============================================================================
# Configuration input
# =============================================================================

@dataclass
class BasicSettings:
    """Static credentials sent with every request."""

    username: Optional[str] = None
    password: Optional[str] = None
    # Authentication provider configured on the server
    provider: Optional[str] = None
    enabled: bool = True


@dataclass
class OAuthSettings:
    """Refreshable token credentials."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    # Allowed: private, public, private+public, public+private (default: public)
    scope: Optional[str] = None
    # Key of the stored credential record (default: session-store-key)
    store_key: Optional[str] = None
    enabled: bool = True


@dataclass
class RestOptions:
    """Behavioral options."""

    # Remove the session when the server rejects a refresh (default: True)
    auto_logout_on_401: bool = True
    # Use the server's ETag cache for GET requests (default: True)
    use_etags: bool = True
    # Enable debug logging (default: False)
    debug: bool = False


@dataclass
class SyshubConfig:
    """SDK configuration; exactly one of ``basic`` or ``oauth`` must be set."""

    host: Optional[str] = None
    basic: Optional[BasicSettings] = None
    oauth: Optional[OAuthSettings] = None
    version: Optional[SyshubVersion] = None
    options: Optional[RestOptions] = None
    # Raise gate errors instead of returning them as values (default: False)
    raise_on_misuse: bool = False


# =============================================================================
# Session data
# =============================================================================

def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CredentialRecord:
    """Token bundle of one authenticated session."""

    access_token: str
    refresh_token: str
    username: str
    grant_time: datetime
    expires_in: int
    granted: bool = True
    expiry_time: Optional[datetime] = None

    def computed_expiry(self) -> datetime:
        """Return ``grant_time + expires_in``."""
        return self.grant_time + timedelta(seconds=self.expires_in)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "username": self.username,
            "grant_time": self.grant_time.isoformat(),
            "expires_in": self.expires_in,
            "expiry_time": self.expiry_time.isoformat() if self.expiry_time else None,
            "granted": self.granted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialRecord":
        """Create from a stored dictionary; the stored expiry is not trusted."""
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            username=data.get("username", ""),
            grant_time=_parse_datetime(data["grant_time"]),
            expires_in=int(data.get("expires_in", 0)),
            granted=bool(data.get("granted", False)),
        )


@dataclass
class TokenResponse:
    """Body of a successful token endpoint call."""

    access_token: str
    refresh_token: str
    expires_in: int
    scope: str = ""
    token_type: str = "bearer"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenResponse":
        """Create from dictionary."""
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            expires_in=int(data.get("expires_in", 0)),
            scope=data.get("scope", ""),
            token_type=data.get("token_type", "bearer"),
        )


# =============================================================================
# Results
# =============================================================================

@dataclass
class RestResponse:
    """Raw content/status pair of a REST call."""

    content: Any
    status: int
    etag: Optional[str] = None
    headers: Dict[str, Optional[str]] = field(default_factory=dict)


@dataclass
class LoginResult:
    """Outcome of a password grant."""

    success: bool
    status: int = 200
    content: Any = None
