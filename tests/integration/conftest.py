"""
Shared fixtures for integration tests.

One authenticated connection and one generic streaming channel are shared by
every test in the session; the channel is deleted when the session ends.
"""

import pytest
import pytest_asyncio

from salesforce_streaming.config import settings
from salesforce_streaming.connection import ConnectionManager
from salesforce_streaming.fixtures import streaming_channel


@pytest.fixture(scope="session")
def live_settings():
    return settings


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def live_connection(live_settings):
    """Connection established once for the whole session"""
    manager = ConnectionManager(live_settings)
    conn = manager.create_connection()
    await manager.establish_connection(conn)
    try:
        async with streaming_channel(conn, live_settings.test_channel_name):
            yield conn
    finally:
        await conn.close()
