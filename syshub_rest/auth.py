"""
Per-request credential injection.

RequestAuthenticator is installed as the ``auth`` of the client's
``httpx.AsyncClient`` and decides for every outgoing request which
credential headers it carries. It only reads session state.
"""

import base64
from typing import Generator

import httpx

from .session import SessionEngine
from .settings import Settings


TOKEN_ENDPOINT_SUFFIX = "webauth/oauth/token"
JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class RequestAuthenticator(httpx.Auth):
    """
    Attaches bearer, basic or no credentials.

    Precedence:
      1. token endpoint: form content type, no credential headers
      2. multipart body: credential headers only, content type untouched
      3. OAuth and logged in: bearer header
      4. static credentials: basic header plus AuthProvider
      5. anything else: JSON content type only
    """

    def __init__(self, settings: Settings, session: SessionEngine) -> None:
        self._settings = settings
        self._session = session
        self._basic_token = ""
        if settings.uses_static:
            static = settings.static
            raw = f"{static.username}:{static.password}".encode("utf-8")
            self._basic_token = base64.b64encode(raw).decode("ascii")

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        self.apply(request)
        yield request

    def apply(self, request: httpx.Request) -> None:
        """Set the credential headers on ``request`` in place."""
        if request.url.path.endswith(TOKEN_ENDPOINT_SUFFIX):
            request.headers.pop("Authorization", None)
            request.headers.pop("AuthProvider", None)
            request.headers["Content-Type"] = FORM_CONTENT_TYPE
            return

        if request.headers.get("Content-Type", "").startswith("multipart/"):
            self._set_credentials(request)
            return

        self._set_credentials(request)
        request.headers["Content-Type"] = JSON_CONTENT_TYPE

    def _set_credentials(self, request: httpx.Request) -> None:
        if self._settings.uses_oauth:
            if self._session.is_logged_in:
                request.headers["Authorization"] = f"Bearer {self._session.access_token}"
            return
        request.headers["Authorization"] = f"Basic {self._basic_token}"
        request.headers["AuthProvider"] = self._settings.static.provider
