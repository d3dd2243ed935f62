"""
sysHUB REST Python SDK - Basic Usage Example

This example demonstrates the basic usage of the sysHUB REST Python SDK.
"""

import asyncio
import logging

from syshub_rest import (
    BasicSettings,
    CapabilityError,
    NOT_MODIFIED,
    OAuthSettings,
    RestOptions,
    SyshubClient,
    SyshubConfig,
    is_syshub_error,
)


async def oauth_example():
    """Refreshable token session example."""
    print("=== OAuth Example ===\n")

    async with SyshubClient(SyshubConfig(
        host="http://localhost:8088",
        oauth=OAuthSettings(
            client_id="example-client",
            client_secret="example-secret",
            scope="public",
        ),
        options=RestOptions(debug=True),
    )) as client:
        print(f"Restored session: {client.is_logged_in}")

        if not client.is_logged_in:
            result = await client.login("user", "password", persist_durably=False)
            if not result.success:
                print(f"Login failed ({result.status}): {result.content}")
                return

        info = await client.get_server_information()
        if info == NOT_MODIFIED:
            print("Server information unchanged")
        elif is_syshub_error(info):
            print(f"Error: {info.code} - {info.message}")
        else:
            print(f"Server information: {info}")

        # Scope 'private' is not configured, so no request is made
        categories = await client.get_categories()
        if isinstance(categories, CapabilityError):
            print(f"Not allowed: {categories.message}")

        client.logout()


async def basic_example():
    """Static credentials example."""
    print("\n=== Basic Auth Example ===\n")

    async with SyshubClient(SyshubConfig(
        host="http://localhost:8088",
        basic=BasicSettings(username="admin", password="secret", provider="sysHUB"),
    )) as client:
        response = await client.get("category/list", accept_headers=["ETag"])
        print(f"Status: {response.status}, ETag: {response.etag}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    asyncio.run(oauth_example())
    asyncio.run(basic_example())
