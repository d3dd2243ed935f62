"""
Configuration validation.

The user supplied configuration (``SyshubConfig`` or a plain mapping as read
from a JSON/environment file) is checked once and turned into an immutable
``Settings`` object. Every failed check raises a numbered ConfigurationError.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from .errors import ConfigurationError, UsageError
from .types import (
    AuthMode,
    BasicSettings,
    OAuthSettings,
    RestOptions,
    SyshubConfig,
    SyshubVersion,
)


DEFAULT_SCOPE = "public"
DEFAULT_STORE_KEY = "session-store-key"
LEGACY_HOST_PREFIX = "cosmos-"


@dataclass(frozen=True)
class StaticCredentials:
    username: str
    password: str
    provider: str


@dataclass(frozen=True)
class OAuthCredentials:
    client_id: str
    client_secret: str
    scope: str
    store_key: str


@dataclass(frozen=True)
class Options:
    auto_logout_on_401: bool = True
    use_etags: bool = True
    debug: bool = False


@dataclass(frozen=True)
class Settings:
    """Validated, read-only client configuration."""

    host: str
    version: SyshubVersion
    credentials: Union[StaticCredentials, OAuthCredentials]
    options: Options
    raise_on_misuse: bool = False

    @property
    def mode(self) -> AuthMode:
        if isinstance(self.credentials, StaticCredentials):
            return AuthMode.STATIC
        return AuthMode.OAUTH

    @property
    def uses_static(self) -> bool:
        return self.mode is AuthMode.STATIC

    @property
    def uses_oauth(self) -> bool:
        return self.mode is AuthMode.OAUTH

    @property
    def static(self) -> StaticCredentials:
        if not isinstance(self.credentials, StaticCredentials):
            raise UsageError("Static credentials are not configured")
        return self.credentials

    @property
    def oauth(self) -> OAuthCredentials:
        if not isinstance(self.credentials, OAuthCredentials):
            raise UsageError("OAuth credentials are not configured")
        return self.credentials

    @property
    def is_public_allowed(self) -> bool:
        """Whether the public REST API may be called."""
        return self.uses_static or "public" in self.oauth.scope

    @property
    def is_internal_allowed(self) -> bool:
        """Whether the private (internal) REST API may be called."""
        return self.uses_static or "private" in self.oauth.scope

    @property
    def token_url(self) -> str:
        return f"{self.host}webauth/oauth/token"


def load_settings(config: Union[SyshubConfig, Mapping[str, Any], None]) -> Settings:
    """
    Validate a configuration.

    Args:
        config: A ``SyshubConfig`` or a mapping with the same structure.
            Mapping keys may use camelCase (``clientId``) or snake_case.

    Raises:
        ConfigurationError: If any check fails.
    """
    if config is None:
        raise ConfigurationError("E1", "Provided settings for REST API module are undefined or null.")
    if not isinstance(config, SyshubConfig):
        if not isinstance(config, Mapping):
            raise ConfigurationError("E16", "REST API settings must be a mapping or SyshubConfig.")
        config = config_from_mapping(config)

    if config.basic is None and config.oauth is None:
        raise ConfigurationError("E2", "Missing 'basic' or 'oauth' property in REST API settings.")
    if config.basic is not None and config.oauth is not None:
        raise ConfigurationError("E15", "Only one of 'basic' or 'oauth' may be set in REST API settings.")

    if not config.host:
        raise ConfigurationError("E3", "Missing 'host' property in REST API settings.")
    if not isinstance(config.host, str):
        raise ConfigurationError("E16", "'host' property must be a string in REST API settings.")

    version = _parse_version(config.version)
    host = config.host if config.host.endswith("/") else f"{config.host}/"
    if version == SyshubVersion.SYSHUB_2021:
        host = f"{host}{LEGACY_HOST_PREFIX}"

    credentials: Union[StaticCredentials, OAuthCredentials]
    if config.basic is not None:
        credentials = _validate_basic(config.basic)
    else:
        credentials = _validate_oauth(config.oauth)  # type: ignore[arg-type]

    raw_options = config.options or RestOptions()
    options = Options(
        auto_logout_on_401=raw_options.auto_logout_on_401,
        use_etags=raw_options.use_etags,
        debug=raw_options.debug,
    )

    return Settings(
        host=host,
        version=version,
        credentials=credentials,
        options=options,
        raise_on_misuse=bool(config.raise_on_misuse),
    )


def _parse_version(value: Any) -> SyshubVersion:
    if value is None:
        return SyshubVersion.default()
    try:
        return SyshubVersion(value)
    except (TypeError, ValueError):
        raise ConfigurationError("E17", f"Unknown 'version' {value!r} in REST API settings.") from None


def _validate_basic(basic: BasicSettings) -> StaticCredentials:
    if basic.enabled is not True:
        raise ConfigurationError("E4", "'basic.enabled' property must be set as enabled in REST API settings.")
    if basic.username is None:
        raise ConfigurationError("E5", "Missing 'basic.username' property in REST API settings.")
    if basic.password is None:
        raise ConfigurationError("E6", "Missing 'basic.password' property in REST API settings.")
    if basic.username == "" or basic.password == "":
        raise ConfigurationError("E7", "'basic.username' or 'basic.password' property empty in REST API settings.")
    if not basic.provider:
        raise ConfigurationError("E8", "Missing 'basic.provider' property in REST API settings.")
    return StaticCredentials(
        username=basic.username,
        password=basic.password,
        provider=basic.provider,
    )


def _validate_oauth(oauth: OAuthSettings) -> OAuthCredentials:
    if oauth.enabled is not True:
        raise ConfigurationError("E9", "'oauth.enabled' property must be set as enabled in REST API settings.")
    if not oauth.client_id:
        raise ConfigurationError("E10", "Missing 'oauth.client_id' property in REST API settings.")
    if not oauth.client_secret:
        raise ConfigurationError("E11", "Missing 'oauth.client_secret' property in REST API settings.")
    return OAuthCredentials(
        client_id=oauth.client_id,
        client_secret=oauth.client_secret,
        scope=oauth.scope if oauth.scope is not None else DEFAULT_SCOPE,
        store_key=oauth.store_key if oauth.store_key is not None else DEFAULT_STORE_KEY,
    )


def _pick(data: Mapping[str, Any], snake: str, camel: Optional[str] = None, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    if camel is not None and camel in data:
        return data[camel]
    return default


def config_from_mapping(data: Mapping[str, Any]) -> SyshubConfig:
    """Build a ``SyshubConfig`` from a plain mapping."""
    for block in ("basic", "oauth", "options"):
        if data.get(block) is not None and not isinstance(data[block], Mapping):
            raise ConfigurationError("E16", f"'{block}' property must be an object in REST API settings.")

    basic = data.get("basic")
    oauth = data.get("oauth")
    options = data.get("options")

    return SyshubConfig(
        host=data.get("host"),
        basic=BasicSettings(
            username=basic.get("username"),
            password=basic.get("password"),
            provider=basic.get("provider"),
            enabled=basic.get("enabled", False),
        ) if basic is not None else None,
        oauth=OAuthSettings(
            client_id=_pick(oauth, "client_id", "clientId"),
            client_secret=_pick(oauth, "client_secret", "clientSecret"),
            scope=oauth.get("scope"),
            store_key=_pick(oauth, "store_key", "storeKey"),
            enabled=oauth.get("enabled", False),
        ) if oauth is not None else None,
        version=data.get("version"),
        options=RestOptions(
            auto_logout_on_401=_pick(options, "auto_logout_on_401", "autoLogoutOn401", True),
            use_etags=_pick(options, "use_etags", "useEtags", True),
            debug=options.get("debug", False),
        ) if options is not None else None,
        raise_on_misuse=bool(_pick(data, "raise_on_misuse", "raiseOnMisuse", data.get("throwErrors", False))),
    )
