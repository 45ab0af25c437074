"""
Connection Management

A Connection bundles one authenticated Salesforce session: the OAuth client,
the REST service and the streaming facade, all sharing the same token.
ConnectionManager builds connections from settings and establishes them.
"""

from typing import Optional

import httpx

from salesforce_streaming.auth.salesforce_oauth import SalesforceOAuth
from salesforce_streaming.config import Settings, settings as default_settings
from salesforce_streaming.services.salesforce_service import SalesforceService
from salesforce_streaming.services.sobject import SObject
from salesforce_streaming.streaming.bayeux import BayeuxClient
from salesforce_streaming.streaming.client import Streaming
from salesforce_streaming.utils.logging_config import get_logger

logger = get_logger(__name__)


class Connection:
    """One Salesforce session shared by REST calls and streaming subscriptions"""

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or default_settings
        self.oauth = SalesforceOAuth(self.config, transport=transport)
        self.service = SalesforceService(self.oauth, self.config, transport=transport)
        self.streaming = Streaming(
            self.service,
            BayeuxClient(self.oauth, self.config, transport=transport),
        )

    def sobject(self, sobject_type: str) -> SObject:
        return SObject(self.service, sobject_type)

    async def close(self) -> None:
        """Close the streaming session and the HTTP clients"""
        try:
            await self.streaming.close()
        finally:
            await self.oauth.close()

    async def __aenter__(self) -> "Connection":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class ConnectionManager:
    """Creates and authenticates connections"""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    def create_connection(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> Connection:
        return Connection(self.config, transport=transport)

    async def establish_connection(self, conn: Connection) -> Connection:
        """
        Authenticate the connection.

        Raises:
            ConfigurationException: If credentials are missing
            SalesforceAuthException: If the login is rejected
        """
        self.config.validate_required_secrets()

        await conn.oauth.get_access_token()
        instance_url = await conn.oauth.get_instance_url()

        logger.info(
            "Salesforce connection established",
            extra={
                "instance_url": instance_url,
                "api_version": self.config.salesforce_api_version,
                "environment": self.config.environment,
            },
        )
        return conn
