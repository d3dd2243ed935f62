"""
Token exchanges.

The AuthCoordinator performs the password and refresh grants against the
token endpoint and makes sure at most one refresh call is on the wire.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

import httpx

from .errors import UsageError
from .session import SessionEngine
from .settings import Settings
from .types import CredentialRecord, LoginResult, TokenResponse


logger = logging.getLogger("syshub_rest.coordinator")

# Triggers arriving this many seconds after a refresh completed are dropped
REFRESH_COOLDOWN = 5.0

# Refresh answers that mean the session itself has been invalidated
AUTH_REJECTION_STATUSES = frozenset({400, 401, 403})


def response_content(response: httpx.Response) -> Any:
    if not response.content:
        return None
    if "application/json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError:
            pass
    return response.text


class AuthCoordinator:
    """Runs login/refresh grants and reacts to the engine's refresh-due signal."""

    def __init__(
        self,
        settings: Settings,
        session: SessionEngine,
        get_client: Callable[[], httpx.AsyncClient],
    ) -> None:
        self._settings = settings
        self._session = session
        self._get_client = get_client

        self._refreshing = False
        self._cooldown_until = 0.0
        self._tasks: Set["asyncio.Task[bool]"] = set()

        self._unsubscribe = session.refresh_due.subscribe(self._on_refresh_due)

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    def _grant_fields(self) -> Dict[str, str]:
        oauth = self._settings.oauth
        return {
            "scope": oauth.scope,
            "client_id": oauth.client_id,
            "client_secret": oauth.client_secret,
        }

    async def _post_grant(self, fields: Dict[str, str]) -> httpx.Response:
        client = self._get_client()
        return await client.post(self._settings.token_url, data=fields)

    # =========================================================================
    # Password grant
    # =========================================================================

    async def login(
        self,
        username: str,
        password: str,
        persist_durably: Optional[bool] = None,
    ) -> LoginResult:
        """
        Sign in with username and password.

        Args:
            username: The user's name.
            password: The user's password.
            persist_durably: Store the session durably (True), for this
                process only (False) or where the last session was kept (None).

        Returns:
            LoginResult; on failure it carries the server's status and body
            and the session is left untouched.

        Raises:
            UsageError: If the client is configured for static credentials.
        """
        if not self._settings.uses_oauth:
            raise UsageError("Method login not allowed for basic authentication")

        self._session.resume()
        fields = {"grant_type": "password", "username": username, "password": password}
        fields.update(self._grant_fields())

        try:
            response = await self._post_grant(fields)
        except httpx.RequestError as e:
            logger.debug("Login request failed: %s", e)
            return LoginResult(success=False, status=0, content=str(e))

        content = response_content(response)
        if not response.is_success:
            logger.debug("Login rejected with status %d", response.status_code)
            return LoginResult(success=False, status=response.status_code, content=content)
        if not isinstance(content, dict):
            return LoginResult(success=False, status=response.status_code, content=content)

        tokens = TokenResponse.from_dict(content)
        self._session.set_credential(
            CredentialRecord(
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                username=username,
                grant_time=datetime.now(timezone.utc),
                expires_in=tokens.expires_in,
                granted=True,
            ),
            persist_durably,
        )
        logger.debug("Login successful")
        return LoginResult(success=True, status=response.status_code, content=content)

    def logout(self) -> None:
        self._session.clear_credential()

    # =========================================================================
    # Refresh grant
    # =========================================================================

    def _in_cooldown(self) -> bool:
        return asyncio.get_running_loop().time() < self._cooldown_until

    async def refresh(self) -> bool:
        """
        Renew the access token with the refresh token.

        Returns:
            True if a new credential was committed. False if the call was
            dropped (a refresh is in flight or cooling down) or failed.
        """
        if not self._settings.uses_oauth:
            raise UsageError("Method refresh not allowed for basic authentication")
        loop = asyncio.get_running_loop()
        if self._refreshing or self._in_cooldown():
            logger.debug("Refresh already in progress, trigger dropped")
            if not self._refreshing and self._session.refresh_due.value:
                # Timer fired inside the cooldown: signal again once it is over
                self._session.reschedule(self._cooldown_until - loop.time())
            return False
        self._refreshing = True

        try:
            refreshed = await self._do_refresh()
        finally:
            self._refreshing = False
            self._cooldown_until = loop.time() + REFRESH_COOLDOWN

        if not refreshed:
            # Credential unchanged: the timer signals the next attempt
            self._session.reschedule(REFRESH_COOLDOWN)
        return refreshed

    async def _do_refresh(self) -> bool:
        fields = {"grant_type": "refresh_token", "refresh_token": self._session.refresh_token}
        fields.update(self._grant_fields())

        try:
            response = await self._post_grant(fields)
        except httpx.RequestError as e:
            logger.warning("Token refresh failed: %s", e)
            return False

        if response.is_success:
            content = response_content(response)
            if isinstance(content, dict):
                tokens = TokenResponse.from_dict(content)
                self._session.set_credential(
                    CredentialRecord(
                        access_token=tokens.access_token,
                        refresh_token=tokens.refresh_token,
                        username=self._session.username,
                        grant_time=datetime.now(timezone.utc),
                        expires_in=tokens.expires_in,
                        granted=True,
                    )
                )
                logger.debug("Token refreshed")
                return True
            logger.warning("Token refresh returned no token body")
            return False

        if response.status_code in AUTH_REJECTION_STATUSES and self._settings.options.auto_logout_on_401:
            logger.info("Refresh rejected with status %d, logging out", response.status_code)
            self._session.clear_credential()
        else:
            logger.warning("Token refresh failed with status %d", response.status_code)
        return False

    def trigger_refresh(self) -> None:
        """Start a refresh in the background."""
        if not self._settings.uses_oauth:
            return
        task = asyncio.ensure_future(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_refresh_due(self, due: bool) -> None:
        if due:
            self.trigger_refresh()

    async def close(self) -> None:
        """Stop reacting to the engine and wait for running refreshes."""
        self._unsubscribe()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
