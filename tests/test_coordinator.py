"""
Tests for the AuthCoordinator: password grant, refresh grant, single flight
and automatic logout.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict
from urllib.parse import parse_qs

import httpx
import pytest
import respx

from syshub_rest import (
    BasicSettings,
    CredentialRecord,
    FileStore,
    MemoryStore,
    OAuthSettings,
    RestOptions,
    StorageLocation,
    SyshubClient,
    SyshubConfig,
    UsageError,
)


TOKEN_URL = "http://localhost:8088/webauth/oauth/token"
STORE_KEY = "session-store-key"


# =============================================================================
# Test Fixtures
# =============================================================================

def make_config(auto_logout: bool = True) -> SyshubConfig:
    return SyshubConfig(
        host="http://localhost:8088",
        oauth=OAuthSettings(client_id="client", client_secret="client-secret", scope="public"),
        options=RestOptions(auto_logout_on_401=auto_logout),
    )


@pytest.fixture
def stores(tmp_path):
    return FileStore(str(tmp_path / "session.json")), MemoryStore()


@pytest.fixture
def client(stores) -> SyshubClient:
    durable, ephemeral = stores
    return SyshubClient(make_config(), durable_store=durable, ephemeral_store=ephemeral)


@pytest.fixture
def token_response() -> Dict[str, Any]:
    return {
        "access_token": "mock-access",
        "refresh_token": "mock-refresh",
        "expires_in": 3600,
        "scope": "public",
        "token_type": "bearer",
    }


def refreshed_response() -> Dict[str, Any]:
    return {
        "access_token": "new-access",
        "refresh_token": "new-refresh",
        "expires_in": 3600,
        "scope": "public",
        "token_type": "bearer",
    }


def seed_session(client: SyshubClient, expires_in: int = 3600) -> None:
    client.session.set_credential(CredentialRecord(
        access_token="old-access",
        refresh_token="old-refresh",
        username="mock-user",
        grant_time=datetime.now(timezone.utc),
        expires_in=expires_in,
    ))


def form(request: httpx.Request) -> Dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


# =============================================================================
# Password grant
# =============================================================================

class TestLogin:

    @pytest.mark.asyncio
    @respx.mock
    async def test_login_success(self, client: SyshubClient, stores, token_response: Dict):
        route = respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))

        result = await client.login("mock-user", "mock-pass", persist_durably=True)

        assert result.success is True
        assert result.status == 200
        assert client.is_logged_in is True
        assert client.access_token == "mock-access"
        assert client.session.username == "mock-user"

        request = route.calls.last.request
        assert form(request) == {
            "grant_type": "password",
            "username": "mock-user",
            "password": "mock-pass",
            "scope": "public",
            "client_id": "client",
            "client_secret": "client-secret",
        }
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert "Authorization" not in request.headers

        durable, _ = stores
        stored = json.loads(durable.get_item(STORE_KEY))
        assert stored["access_token"] == "mock-access"
        assert stored["username"] == "mock-user"

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_login_ephemeral(self, client: SyshubClient, stores, token_response: Dict):
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))

        await client.login("mock-user", "mock-pass", persist_durably=False)

        durable, ephemeral = stores
        assert durable.get_item(STORE_KEY) is None
        assert ephemeral.get_item(STORE_KEY) is not None
        assert client.session.storage_location is StorageLocation.EPHEMERAL

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_login_rejected(self, client: SyshubClient, stores):
        respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(400, json={"error": "invalid_grant"})
        )

        result = await client.login("mock-user", "wrong")

        assert result.success is False
        assert result.status == 400
        assert result.content == {"error": "invalid_grant"}
        assert client.is_logged_in is False
        durable, _ = stores
        assert durable.get_item(STORE_KEY) is None

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_login_rejected_keeps_existing_session(self, client: SyshubClient):
        seed_session(client)
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(401))

        result = await client.login("other", "wrong")

        assert result.success is False
        assert client.is_logged_in is True
        assert client.access_token == "old-access"

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_login_network_error(self, client: SyshubClient):
        respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        result = await client.login("mock-user", "mock-pass")

        assert result.success is False
        assert result.status == 0
        assert client.is_logged_in is False

        await client.close()

    @pytest.mark.asyncio
    async def test_login_static_mode(self):
        client = SyshubClient(
            SyshubConfig(
                host="http://localhost:8088",
                basic=BasicSettings(username="admin", password="secret", provider="sysHUB"),
            ),
            durable_store=MemoryStore(),
        )
        with pytest.raises(UsageError):
            await client.login("admin", "secret")
        with pytest.raises(UsageError):
            await client.refresh()
        await client.close()

    @pytest.mark.asyncio
    async def test_logout(self, client: SyshubClient, stores):
        seed_session(client)
        client.logout()

        assert client.is_logged_in is False
        assert client.access_token == ""
        durable, ephemeral = stores
        assert durable.get_item(STORE_KEY) is None
        assert ephemeral.get_item(STORE_KEY) is None

        await client.close()


# =============================================================================
# Refresh grant
# =============================================================================

class TestRefresh:

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_success(self, client: SyshubClient):
        seed_session(client)
        route = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json=refreshed_response())
        )

        assert await client.refresh() is True

        assert client.access_token == "new-access"
        assert client.session.refresh_token == "new-refresh"
        assert client.session.username == "mock-user"

        fields = form(route.calls.last.request)
        assert fields["grant_type"] == "refresh_token"
        assert fields["refresh_token"] == "old-refresh"
        assert fields["client_id"] == "client"
        assert fields["client_secret"] == "client-secret"
        assert fields["scope"] == "public"

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_keeps_storage_location(self, client: SyshubClient, stores):
        client.session.set_credential(
            CredentialRecord(
                access_token="old-access",
                refresh_token="old-refresh",
                username="mock-user",
                grant_time=datetime.now(timezone.utc),
                expires_in=3600,
            ),
            persist_durably=False,
        )
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=refreshed_response()))

        await client.refresh()

        durable, ephemeral = stores
        assert durable.get_item(STORE_KEY) is None
        assert json.loads(ephemeral.get_item(STORE_KEY))["access_token"] == "new-access"

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_single_flight(self, client: SyshubClient):
        """Concurrent triggers result in exactly one call on the wire."""
        seed_session(client)
        route = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json=refreshed_response())
        )

        results = await asyncio.gather(client.refresh(), client.refresh(), client.refresh())

        assert route.call_count == 1
        assert sorted(results) == [False, False, True]

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_cooldown_drops_trigger(self, client: SyshubClient):
        seed_session(client)
        route = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json=refreshed_response())
        )

        assert await client.refresh() is True
        assert await client.refresh() is False
        assert route.call_count == 1

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_allowed_after_cooldown(self, client: SyshubClient, monkeypatch):
        monkeypatch.setattr("syshub_rest.coordinator.REFRESH_COOLDOWN", 0.0)
        seed_session(client)
        route = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json=refreshed_response())
        )

        assert await client.refresh() is True
        await asyncio.sleep(0.01)
        assert await client.refresh() is True
        assert route.call_count == 2

        await client.close()

    @pytest.mark.parametrize("status", [400, 401, 403])
    @pytest.mark.asyncio
    @respx.mock
    async def test_rejection_logs_out(self, client: SyshubClient, stores, status: int):
        seed_session(client)
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(status))

        assert await client.refresh() is False

        assert client.is_logged_in is False
        assert client.session.refresh_token == ""
        durable, _ = stores
        assert durable.get_item(STORE_KEY) is None

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_rejection_without_auto_logout(self, stores):
        durable, ephemeral = stores
        client = SyshubClient(make_config(auto_logout=False), durable_store=durable, ephemeral_store=ephemeral)
        seed_session(client)
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(403))

        assert await client.refresh() is False

        assert client.is_logged_in is True
        assert client.access_token == "old-access"

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_keeps_session(self, client: SyshubClient):
        seed_session(client)
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(500))

        assert await client.refresh() is False
        assert client.is_logged_in is True
        assert client.access_token == "old-access"

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_keeps_session(self, client: SyshubClient):
        seed_session(client)
        respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        assert await client.refresh() is False
        assert client.is_logged_in is True
        assert client.coordinator.is_refreshing is False

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_timer_triggers_refresh(self, client: SyshubClient):
        """A token about to expire is renewed without any caller action."""
        route = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json=refreshed_response())
        )
        seed_session(client, expires_in=1)

        for _ in range(50):
            if client.access_token == "new-access":
                break
            await asyncio.sleep(0.01)

        assert route.call_count == 1
        assert client.access_token == "new-access"
        assert client.session.refresh_due.value is False

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_timer_retries_after_server_error(self, client: SyshubClient, monkeypatch):
        """A refresh failing with 5xx is retried by the timer, not abandoned."""
        monkeypatch.setattr("syshub_rest.coordinator.REFRESH_COOLDOWN", 0.0)
        route = respx.post(TOKEN_URL).mock(side_effect=[
            httpx.Response(500),
            httpx.Response(200, json=refreshed_response()),
        ])
        seed_session(client, expires_in=1)

        for _ in range(100):
            if client.access_token == "new-access":
                break
            await asyncio.sleep(0.01)

        assert route.call_count == 2
        assert client.access_token == "new-access"
        assert client.session.refresh_due.value is False
        assert client.session.timer is not None

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_failed_refresh_rearms_timer(self, client: SyshubClient):
        seed_session(client, expires_in=1)
        route = respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        for _ in range(50):
            if route.called:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.01)

        assert client.is_logged_in is True
        assert client.session.refresh_due.value is False
        timer = client.session.timer
        assert timer is not None
        remaining = timer.when() - asyncio.get_running_loop().time()
        assert 4.5 <= remaining <= 5.0

        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_timer_inside_cooldown_fires_again(self, client: SyshubClient, monkeypatch):
        monkeypatch.setattr("syshub_rest.coordinator.REFRESH_COOLDOWN", 0.2)
        short_lived = dict(refreshed_response(), expires_in=1)
        second = dict(refreshed_response(), access_token="second-access")
        route = respx.post(TOKEN_URL).mock(side_effect=[
            httpx.Response(200, json=short_lived),
            httpx.Response(200, json=second),
        ])
        seed_session(client)

        assert await client.refresh() is True
        for _ in range(100):
            if client.access_token == "second-access":
                break
            await asyncio.sleep(0.01)

        assert route.call_count == 2
        assert client.access_token == "second-access"

        await client.close()

    @pytest.mark.asyncio
    async def test_trigger_ignored_in_static_mode(self):
        client = SyshubClient(
            SyshubConfig(
                host="http://localhost:8088",
                basic=BasicSettings(username="admin", password="secret", provider="sysHUB"),
            ),
            durable_store=MemoryStore(),
        )
        client.coordinator.trigger_refresh()
        await client.close()
        assert client.is_logged_in is True
