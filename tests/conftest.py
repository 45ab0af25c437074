"""
Pytest Configuration and Fixtures

Provides settings, the in-memory Salesforce org and authenticated
connections against it.
"""

import pytest

from salesforce_streaming.config import Settings
from salesforce_streaming.connection import ConnectionManager
from salesforce_streaming.fixtures import streaming_channel
from salesforce_streaming.utils.logging_config import setup_logging
from tests.fake_org import FakeSalesforceOrg

TEST_SALESFORCE_CLIENT_ID = "test_client_id"
TEST_SALESFORCE_CLIENT_SECRET = "test_client_secret"
TEST_SALESFORCE_USERNAME = "test@salesforce.com"
TEST_SALESFORCE_PASSWORD = "test_password"
TEST_SALESFORCE_SECURITY_TOKEN = "test_token"


@pytest.fixture(scope="session", autouse=True)
def suite_logging():
    """Let caplog see suite log records"""
    return setup_logging("DEBUG", propagate=True)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with credentials for the in-memory org and short timings"""
    return Settings(
        _env_file=None,
        environment="test",
        log_level="DEBUG",
        salesforce_client_id=TEST_SALESFORCE_CLIENT_ID,
        salesforce_client_secret=TEST_SALESFORCE_CLIENT_SECRET,
        salesforce_username=TEST_SALESFORCE_USERNAME,
        salesforce_password=TEST_SALESFORCE_PASSWORD,
        salesforce_security_token=TEST_SALESFORCE_SECURITY_TOKEN,
        salesforce_instance_url="https://test.salesforce.com",
        salesforce_api_version="v63.0",
        use_secrets_manager=False,
        http_timeout=5.0,
        streaming_long_poll_timeout=1.0,
        subscribe_settle_seconds=0.05,
        delivery_timeout_seconds=5.0,
        cdc_wait_seconds=5.0,
    )


@pytest.fixture
def fake_org() -> FakeSalesforceOrg:
    """A fresh org per test keeps replay ids and retention deterministic"""
    return FakeSalesforceOrg(api_version="v63.0", long_poll_timeout=0.2)


@pytest.fixture
async def connection(test_settings, fake_org):
    """Authenticated connection to the in-memory org"""
    manager = ConnectionManager(test_settings)
    conn = manager.create_connection(transport=fake_org.transport)
    await manager.establish_connection(conn)
    yield conn
    await conn.close()


@pytest.fixture
async def test_channel(connection, test_settings):
    """The generic streaming channel the channel scenarios publish to"""
    async with streaming_channel(connection, test_settings.test_channel_name) as channel:
        yield channel
