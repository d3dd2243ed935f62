"""
sysHUB REST Python SDK

An asyncio client for the sysHUB REST API with persistent sessions,
proactive token refresh and per-request credential injection.
"""

from .client import SyshubClient, create_syshub_client, classify_response
from .coordinator import AuthCoordinator
from .auth import RequestAuthenticator
from .session import SessionEngine, compute_refresh_delay
from .settings import Settings, load_settings
from .signals import StateSignal
from .types import (
    NOT_MODIFIED,
    AuthMode,
    BasicSettings,
    CredentialRecord,
    KeyValueStore,
    LoginResult,
    OAuthSettings,
    RestOptions,
    RestResponse,
    StorageLocation,
    SyshubConfig,
    SyshubVersion,
    TokenResponse,
)
from .errors import (
    SyshubError,
    ConfigurationError,
    CapabilityError,
    AuthenticationRequiredError,
    NetworkUnreachableError,
    UnexpectedStatusError,
    UnauthorizedError,
    UsageError,
    is_syshub_error,
)
from .storage import CredentialStore, FileStore, MemoryStore

__version__ = "1.0.0"
__all__ = [
    # Client
    "SyshubClient",
    "create_syshub_client",
    "classify_response",
    # Session lifecycle
    "AuthCoordinator",
    "RequestAuthenticator",
    "SessionEngine",
    "compute_refresh_delay",
    "StateSignal",
    # Configuration
    "Settings",
    "load_settings",
    "SyshubConfig",
    "BasicSettings",
    "OAuthSettings",
    "RestOptions",
    "SyshubVersion",
    "AuthMode",
    # Types
    "NOT_MODIFIED",
    "CredentialRecord",
    "KeyValueStore",
    "LoginResult",
    "RestResponse",
    "StorageLocation",
    "TokenResponse",
    # Errors
    "SyshubError",
    "ConfigurationError",
    "CapabilityError",
    "AuthenticationRequiredError",
    "NetworkUnreachableError",
    "UnexpectedStatusError",
    "UnauthorizedError",
    "UsageError",
    "is_syshub_error",
    # Storage
    "CredentialStore",
    "FileStore",
    "MemoryStore",
]
