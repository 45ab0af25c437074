"""
Salesforce OAuth 2.0 Authentication

Implements the OAuth 2.0 username-password flow with in-memory token caching.
A token is shared by the REST service and the streaming client of one connection
and refreshed on expiry or when the server rejects it.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

import httpx

from salesforce_streaming.config import Settings, settings as default_settings
from salesforce_streaming.utils.exceptions import SalesforceAuthException
from salesforce_streaming.utils.logging_config import get_logger
from salesforce_streaming.utils.retry import retry_async

logger = get_logger(__name__)

# Salesforce sessions last two hours by default; stay well inside that
TOKEN_TTL_SECONDS = 5400
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)


class SalesforceOAuth:
    """Salesforce OAuth 2.0 client with token management"""

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or default_settings
        self.client_id = config.salesforce_client_id
        self.client_secret = config.salesforce_client_secret
        self.username = config.salesforce_username
        self.password = config.salesforce_login_password
        self.instance_url = config.salesforce_instance_url
        self.token_url = config.salesforce_token_url

        self._access_token: Optional[str] = None
        self._token_instance_url: Optional[str] = None
        self._token_expiry: Optional[datetime] = None

        # HTTP client for OAuth requests
        self.http_client = httpx.AsyncClient(timeout=config.http_timeout, transport=transport)

    async def get_access_token(self, force_refresh: bool = False) -> str:
        """
        Get valid access token, using cache when available.

        Args:
            force_refresh: Force token refresh even if cached token exists

        Returns:
            Valid access token

        Raises:
            SalesforceAuthException: If authentication fails
        """
        if not force_refresh:
            cached_token = self._get_cached_token()
            if cached_token:
                logger.debug("Using cached Salesforce access token")
                return cached_token

        logger.info("Acquiring new Salesforce access token")
        token_data = await self._authenticate()

        self._cache_token(token_data)

        return token_data["access_token"]

    async def get_instance_url(self) -> str:
        """
        Get the instance URL of the authenticated org.

        Raises:
            SalesforceAuthException: If instance URL not available
        """
        if self._token_instance_url:
            return self._token_instance_url

        await self.get_access_token()

        if not self._token_instance_url:
            raise SalesforceAuthException("Failed to retrieve instance URL")

        return self._token_instance_url

    @retry_async(
        max_attempts=3,
        retryable_exceptions=(httpx.TransportError,),
        context=lambda self: {"endpoint": self.token_url},
    )
    async def _authenticate(self) -> Dict[str, str]:
        """
        Authenticate with Salesforce using OAuth 2.0 password flow.

        Returns:
            OAuth response with access_token and instance_url

        Raises:
            SalesforceAuthException: If authentication fails
        """
        if self.username and self.password:
            data = {
                "grant_type": "password",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "username": self.username,
                "password": self.password,
            }
        else:
            # Client credentials needs a run-as user configured on the Connected App
            data = {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            }

        logger.info(
            "Authenticating with Salesforce",
            extra={
                "token_url": self.token_url,
                "client_id": self.client_id[:10] + "..." if self.client_id else None,
                "grant_type": data.get("grant_type"),
            },
        )

        try:
            response = await self.http_client.post(
                self.token_url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

            response.raise_for_status()
            token_data = response.json()

        except httpx.HTTPStatusError as e:
            error_data = {}
            try:
                error_data = e.response.json()
            except ValueError:
                error_data = {"message": e.response.text}

            logger.error(
                f"Salesforce authentication failed with HTTP {e.response.status_code}",
                extra={
                    "status_code": e.response.status_code,
                    "error": error_data,
                },
            )

            raise SalesforceAuthException(
                f"Authentication failed: {error_data.get('error_description', str(e))}",
                details={
                    "status_code": e.response.status_code,
                    "error": error_data,
                },
            ) from e

        if "access_token" not in token_data:
            raise SalesforceAuthException(
                "Invalid OAuth response: missing access_token",
                details={"response": token_data},
            )

        logger.info(
            "Successfully authenticated with Salesforce",
            extra={"instance_url": token_data.get("instance_url")},
        )

        return token_data

    def _get_cached_token(self) -> Optional[str]:
        """Cached access token, or None when missing or about to expire"""
        if not self._access_token or not self._token_expiry:
            return None

        if datetime.utcnow() + TOKEN_EXPIRY_BUFFER >= self._token_expiry:
            logger.debug("Cached token is expired or about to expire")
            return None

        return self._access_token

    def _cache_token(self, token_data: Dict[str, str]) -> None:
        self._access_token = token_data["access_token"]
        self._token_instance_url = token_data.get("instance_url", self.instance_url)
        self._token_expiry = datetime.utcnow() + timedelta(seconds=TOKEN_TTL_SECONDS)

        logger.info(
            "Cached Salesforce access token",
            extra={
                "ttl": TOKEN_TTL_SECONDS,
                "expiry": self._token_expiry.isoformat(),
            },
        )

    def invalidate(self) -> None:
        """Drop the cached token so the next call re-authenticates"""
        self._access_token = None
        self._token_expiry = None

    async def revoke_token(self, token: Optional[str] = None) -> None:
        """
        Revoke access token and clear cache.

        Args:
            token: Token to revoke (uses cached token if not provided)
        """
        token = token or self._access_token

        try:
            if token:
                revoke_url = f"{self._token_instance_url or self.instance_url}/services/oauth2/revoke"
                await self.http_client.post(revoke_url, data={"token": token})
                logger.info("Revoked Salesforce access token")
        except httpx.HTTPError as e:
            logger.warning(f"Error revoking token: {e}")
        finally:
            self.invalidate()

    async def close(self) -> None:
        """Close HTTP client"""
        await self.http_client.aclose()
