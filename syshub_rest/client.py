"""
sysHUB REST SDK Client

Asynchronous client for the sysHUB REST API. Wires the session engine, the
auth coordinator and the request authenticator together and exposes the
generic REST verbs guarded by the login and scope gates.

Public request methods are plain functions returning an awaitable: gate
violations raise immediately when ``raise_on_misuse`` is set, otherwise the
awaitable resolves to the error value one event loop tick later without any
network traffic.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Optional, TypeVar, Union

import httpx

from .auth import RequestAuthenticator
from .coordinator import AuthCoordinator, response_content
from .errors import (
    AuthenticationRequiredError,
    CapabilityError,
    NetworkUnreachableError,
    SyshubError,
    UnauthorizedError,
    UnexpectedStatusError,
)
from .session import SessionEngine
from .settings import Settings, load_settings
from .storage import CredentialStore, FileStore, MemoryStore
from .types import (
    NOT_MODIFIED,
    KeyValueStore,
    LoginResult,
    RestResponse,
    SyshubConfig,
)


logger = logging.getLogger("syshub_rest")

T = TypeVar("T")

ETAG_STORE_KEY = "syshub-etags"

Scope = Literal["public", "private"]
TypedResult = Union[T, int, SyshubError]


def classify_response(response: RestResponse, expected: int) -> Union[int, SyshubError]:
    """Map a response with an unexpected status to its error value."""
    if response.status == NOT_MODIFIED:
        return NOT_MODIFIED
    if response.status == 401:
        return UnauthorizedError()
    if response.status == 0:
        return NetworkUnreachableError({"reason": response.content})
    return UnexpectedStatusError(expected, response)


class SyshubClient:
    """
    sysHUB REST client - asynchronous SDK entry point.

    Example::

        async with SyshubClient(SyshubConfig(
            host="http://localhost:8088",
            oauth=OAuthSettings(client_id="id", client_secret="secret", scope="public+private"),
        )) as client:
            await client.login("user", "password")
            info = await client.get_server_information()
    """

    def __init__(
        self,
        config: Union[SyshubConfig, Mapping[str, Any]],
        durable_store: Optional[KeyValueStore] = None,
        ephemeral_store: Optional[KeyValueStore] = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client; invalid configuration raises ConfigurationError."""
        self._settings = load_settings(config)
        self._timeout = timeout
        self._debug = self._settings.options.debug
        # Static credentials keep no session; the ETag cache then lives in memory
        if durable_store is None:
            durable_store = FileStore() if self._settings.uses_oauth else MemoryStore()
        self._durable_store = durable_store
        self._ephemeral_store = ephemeral_store if ephemeral_store is not None else MemoryStore()

        store: Optional[CredentialStore] = None
        if self._settings.uses_oauth:
            store = CredentialStore(
                self._settings.oauth.store_key,
                self._durable_store,
                self._ephemeral_store,
            )

        self.session = SessionEngine(self._settings, store)
        self.authenticator = RequestAuthenticator(self._settings, self.session)

        # HTTP client (created lazily)
        self._http_client: Optional[httpx.AsyncClient] = None

        self.coordinator = AuthCoordinator(self._settings, self.session, self._get_client)
        self._etag_cache: Dict[str, str] = self._load_etags()

        self._log(f"SyshubClient initialized (mode={self._settings.mode.value})")

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug(f"[sysHUB] {message}", *args)

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(auth=self.authenticator, timeout=self._timeout)
        return self._http_client

    # =========================================================================
    # State
    # =========================================================================

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_logged_in(self) -> bool:
        return self.session.is_logged_in

    @property
    def access_token(self) -> str:
        return self.session.access_token

    @property
    def is_public_allowed(self) -> bool:
        return self._settings.is_public_allowed

    @property
    def is_internal_allowed(self) -> bool:
        return self._settings.is_internal_allowed

    # =========================================================================
    # Authentication
    # =========================================================================

    async def login(
        self,
        username: str,
        password: str,
        persist_durably: Optional[bool] = None,
    ) -> LoginResult:
        """Sign in with a password grant (OAuth mode only)."""
        self._log(f"Login attempt for: {username}")
        return await self.coordinator.login(username, password, persist_durably)

    def logout(self) -> None:
        """Clear the session and the ETag cache."""
        self._log("Logout")
        self.coordinator.logout()
        self._etag_cache.clear()
        self._durable_store.remove_item(ETAG_STORE_KEY)

    async def refresh(self) -> bool:
        """Renew the access token now."""
        return await self.coordinator.refresh()

    # =========================================================================
    # Gates
    # =========================================================================

    def _check_logged_in(self) -> Optional[RestResponse]:
        if self.session.is_logged_in:
            return None
        error = AuthenticationRequiredError()
        if self._settings.raise_on_misuse:
            raise error
        return RestResponse(content=error.message, status=401)

    def _check_scope(self, scope: Scope) -> Optional[CapabilityError]:
        allowed = self.is_internal_allowed if scope == "private" else self.is_public_allowed
        if allowed:
            return None
        error = CapabilityError(scope)
        if self._settings.raise_on_misuse:
            raise error
        return error

    async def _deferred(self, value: T) -> T:
        await asyncio.sleep(0)
        return value

    # =========================================================================
    # Generic REST verbs
    # =========================================================================

    def _url(self, endpoint: str, custom: bool) -> str:
        return f"{self._settings.host}webapi/{'custom' if custom else 'v3'}/{endpoint}"

    def get(
        self,
        endpoint: str,
        accept_headers: Optional[List[str]] = None,
        clean: bool = False,
        etag: str = "",
        custom: bool = False,
    ) -> Awaitable[RestResponse]:
        """
        Send a GET request.

        Args:
            endpoint: Path following ``webapi/v3/`` (or ``webapi/custom/``).
            accept_headers: Response header names to copy into the result.
            clean: Ignore the ETag cache.
            etag: Explicit ETag for ``If-None-Match``.
            custom: Call a custom endpoint.
        """
        denied = self._check_logged_in()
        if denied is not None:
            return self._deferred(denied)

        headers: Dict[str, str] = {}
        use_etags = self._settings.options.use_etags and not custom
        if use_etags and not clean:
            cached = etag or self._etag_cache.get(endpoint)
            if cached:
                headers["If-None-Match"] = cached

        return self._send(
            "GET",
            endpoint,
            custom=custom,
            accept_headers=accept_headers,
            headers=headers,
            cache_etag=use_etags,
        )

    def post(
        self,
        endpoint: str,
        payload: Any = None,
        accept_headers: Optional[List[str]] = None,
        files: Optional[Mapping[str, Any]] = None,
        custom: bool = False,
    ) -> Awaitable[RestResponse]:
        """Send a POST request with a JSON payload or a multipart ``files`` body."""
        return self._send_body("POST", endpoint, payload, accept_headers, files, custom)

    def put(
        self,
        endpoint: str,
        payload: Any = None,
        accept_headers: Optional[List[str]] = None,
        files: Optional[Mapping[str, Any]] = None,
        custom: bool = False,
    ) -> Awaitable[RestResponse]:
        """Send a PUT request."""
        return self._send_body("PUT", endpoint, payload, accept_headers, files, custom)

    def patch(
        self,
        endpoint: str,
        payload: Any = None,
        accept_headers: Optional[List[str]] = None,
        files: Optional[Mapping[str, Any]] = None,
        custom: bool = False,
    ) -> Awaitable[RestResponse]:
        """Send a PATCH request."""
        return self._send_body("PATCH", endpoint, payload, accept_headers, files, custom)

    def delete(self, endpoint: str, custom: bool = False) -> Awaitable[RestResponse]:
        """Send a DELETE request."""
        return self._send_plain("DELETE", endpoint, custom)

    def head(self, endpoint: str, custom: bool = False) -> Awaitable[RestResponse]:
        """Send a HEAD request."""
        return self._send_plain("HEAD", endpoint, custom)

    def options(self, endpoint: str, custom: bool = False) -> Awaitable[RestResponse]:
        """Send an OPTIONS request."""
        return self._send_plain("OPTIONS", endpoint, custom)

    def _send_plain(self, method: str, endpoint: str, custom: bool) -> Awaitable[RestResponse]:
        denied = self._check_logged_in()
        if denied is not None:
            return self._deferred(denied)
        return self._send(method, endpoint, custom=custom)

    def _send_body(
        self,
        method: str,
        endpoint: str,
        payload: Any,
        accept_headers: Optional[List[str]],
        files: Optional[Mapping[str, Any]],
        custom: bool,
    ) -> Awaitable[RestResponse]:
        denied = self._check_logged_in()
        if denied is not None:
            return self._deferred(denied)
        return self._send(
            method,
            endpoint,
            custom=custom,
            accept_headers=accept_headers,
            payload=payload,
            files=files,
        )

    async def _send(
        self,
        method: str,
        endpoint: str,
        custom: bool = False,
        accept_headers: Optional[List[str]] = None,
        payload: Any = None,
        files: Optional[Mapping[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        cache_etag: bool = False,
    ) -> RestResponse:
        """Execute a single HTTP request."""
        self.session.resume()
        kwargs: Dict[str, Any] = {}
        if files is not None:
            kwargs["files"] = files
            if payload is not None:
                kwargs["data"] = payload
        elif payload is not None:
            kwargs["json"] = payload

        try:
            response = await self._get_client().request(
                method,
                self._url(endpoint, custom),
                headers=headers or None,
                **kwargs,
            )
        except httpx.RequestError as e:
            self._log(f"{method} {endpoint} failed: {e}")
            return RestResponse(content=str(e), status=0)

        if response.status_code == 401:
            self._log(f"{method} {endpoint} returned 401, refreshing session")
            self.coordinator.trigger_refresh()

        etag = response.headers.get("etag")
        if cache_etag and etag:
            self._etag_cache[endpoint] = etag
            self._save_etags()

        return RestResponse(
            content=response_content(response),
            status=response.status_code,
            etag=etag,
            headers={name: response.headers.get(name) for name in accept_headers or []},
        )

    # =========================================================================
    # Typed endpoints
    # =========================================================================

    def get_server_information(self, clean: bool = False) -> Awaitable[TypedResult[Dict[str, Any]]]:
        """Server build and node information (public scope)."""
        return self._typed_get("public", "server/list/information", clean)

    def get_current_user(self, clean: bool = False) -> Awaitable[TypedResult[Dict[str, Any]]]:
        """The logged in user's account (public scope)."""
        return self._typed_get("public", "currentUser", clean)

    def get_categories(self, clean: bool = False) -> Awaitable[TypedResult[List[Dict[str, Any]]]]:
        """All categories (private scope)."""
        return self._typed_get("private", "category/list", clean, lambda content: content["children"])

    def _typed_get(
        self,
        scope: Scope,
        endpoint: str,
        clean: bool,
        extract: Optional[Callable[[Any], Any]] = None,
    ) -> Awaitable[Any]:
        denied = self._check_scope(scope)
        if denied is not None:
            return self._deferred(denied)
        return self._expect(self.get(endpoint, clean=clean), 200, extract)

    async def _expect(
        self,
        request: Awaitable[RestResponse],
        expected: int,
        extract: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        response = await request
        if response.status != expected:
            return classify_response(response, expected)
        if extract is None:
            return response.content
        try:
            return extract(response.content)
        except (KeyError, TypeError):
            self._log(f"Unexpected response body (status {response.status})")
            return UnexpectedStatusError(expected, response)

    # =========================================================================
    # ETag cache
    # =========================================================================

    def _load_etags(self) -> Dict[str, str]:
        if not self._settings.options.use_etags:
            self._durable_store.remove_item(ETAG_STORE_KEY)
            return {}
        raw = self._durable_store.get_item(ETAG_STORE_KEY)
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable ETag cache")
            return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _save_etags(self) -> None:
        self._durable_store.set_item(ETAG_STORE_KEY, json.dumps(self._etag_cache))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        """Cancel the refresh timer and close the HTTP client."""
        await self.coordinator.close()
        self.session.close()
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "SyshubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def create_syshub_client(config: Union[SyshubConfig, Mapping[str, Any]], **kwargs: Any) -> SyshubClient:
    """Create a new sysHUB client."""
    return SyshubClient(config, **kwargs)
