"""
Salesforce REST API Service

Wrapper for the Salesforce REST API operations the streaming scenarios need:
SOQL queries, record create/delete, composite delete and streaming channel push.
"""

from typing import Any, Dict, List, Optional

import httpx

from salesforce_streaming.auth.salesforce_oauth import SalesforceOAuth
from salesforce_streaming.config import Settings, settings as default_settings
from salesforce_streaming.utils.exceptions import SalesforceAPIException
from salesforce_streaming.utils.logging_config import get_logger
from salesforce_streaming.utils.retry import retry_async

logger = get_logger(__name__)

# Composite sobject collections accept at most 200 ids per call
COMPOSITE_BATCH_SIZE = 200


class SalesforceService:
    """Service for interacting with the Salesforce REST API."""

    def __init__(
        self,
        oauth: SalesforceOAuth,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or default_settings
        self.oauth = oauth
        self.api_version = config.salesforce_api_version
        self.timeout = config.http_timeout
        self._transport = transport

    def _get_http_client(self) -> httpx.AsyncClient:
        """
        Create an httpx AsyncClient for one request.

        REST calls are independent, so nothing is gained from sharing a client
        with the long-lived streaming session.
        """
        limits = httpx.Limits(max_connections=1, max_keepalive_connections=1)
        return httpx.AsyncClient(timeout=self.timeout, limits=limits, transport=self._transport)

    async def _get_api_url(self, endpoint: str = "") -> str:
        """
        Get full API URL with instance URL.

        Args:
            endpoint: API endpoint path, relative to the versioned base or
                absolute (/services/data/...) as returned in nextRecordsUrl

        Returns:
            Full API URL
        """
        instance_url = await self.oauth.get_instance_url()
        if endpoint.startswith("/services/"):
            return f"{instance_url}{endpoint}"
        base_url = f"{instance_url}/services/data/{self.api_version}"
        return f"{base_url}/{endpoint.lstrip('/')}" if endpoint else base_url

    async def _get_headers(self, force_refresh: bool = False) -> Dict[str, str]:
        access_token = await self.oauth.get_access_token(force_refresh=force_refresh)
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @retry_async(
        max_attempts=3,
        retryable_exceptions=(httpx.TransportError,),
        context=lambda self, method, endpoint, *args, **kwargs: {"method": method, "endpoint": endpoint},
    )
    async def _send(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        url = await self._get_api_url(endpoint)
        headers = await self._get_headers()

        async with self._get_http_client() as client:
            response = await client.request(
                method=method,
                url=url,
                headers=headers,
                json=json_data,
                params=params,
            )

            if response.status_code == 401:
                logger.warning("Access token expired, refreshing...")
                headers = await self._get_headers(force_refresh=True)
                response = await client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    json=json_data,
                    params=params,
                )

            return response

    async def request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make authenticated HTTP request to Salesforce API.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            endpoint: API endpoint
            json_data: Optional JSON body
            params: Optional query parameters

        Returns:
            Decoded JSON response, or None for 204 No Content

        Raises:
            SalesforceAPIException: If request fails
            SalesforceAuthException: If authentication fails
        """
        try:
            response = await self._send(method, endpoint, json_data=json_data, params=params)
        except httpx.RequestError as e:
            logger.error(f"Network error calling Salesforce API: {e}")
            raise SalesforceAPIException(
                f"Network error: {e}",
                details={"error": str(e), "endpoint": endpoint},
            ) from e

        if response.status_code >= 400:
            error_data: Any = {}
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"message": response.text}

            logger.error(
                f"Salesforce API error: {response.status_code}",
                extra={
                    "status_code": response.status_code,
                    "endpoint": endpoint,
                    "error": error_data,
                },
            )

            raise SalesforceAPIException(
                f"Salesforce API error: {error_data}",
                status_code=response.status_code,
                details={"error": error_data, "endpoint": endpoint},
            )

        if response.status_code != 204:
            return response.json()

        return None

    async def query(self, soql: str) -> Dict[str, Any]:
        """
        Execute SOQL query (first page only).

        Args:
            soql: SOQL query string

        Returns:
            Query results
        """
        logger.debug(f"Executing SOQL query: {soql}")

        response = await self.request("GET", "query", params={"q": soql})

        logger.info(
            f"Query returned {response.get('totalSize', 0)} records",
            extra={"total_size": response.get("totalSize", 0)},
        )

        return response

    async def query_all_records(self, soql: str) -> List[Dict[str, Any]]:
        """
        Execute SOQL query and follow nextRecordsUrl until every page is read.

        Returns:
            Records without the per-record 'attributes' envelope
        """
        response = await self.query(soql)
        records = list(response.get("records", []))

        while not response.get("done", True) and response.get("nextRecordsUrl"):
            response = await self.request("GET", response["nextRecordsUrl"])
            records.extend(response.get("records", []))

        for record in records:
            record.pop("attributes", None)

        return records

    async def create_record(
        self,
        sobject_type: str,
        record_data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Create a new record.

        Returns:
            Create response with record ID ({"id", "success", "errors"})
        """
        endpoint = f"sobjects/{sobject_type}"

        logger.info(f"Creating {sobject_type} record")

        response = await self.request("POST", endpoint, json_data=record_data)

        logger.info(
            f"Successfully created {sobject_type}",
            extra={
                "sobject_type": sobject_type,
                "record_id": response.get("id"),
            },
        )

        return response

    async def delete_record(self, sobject_type: str, record_id: str) -> None:
        """Delete a single record."""
        endpoint = f"sobjects/{sobject_type}/{record_id}"

        logger.info(f"Deleting {sobject_type} record", extra={"record_id": record_id})

        await self.request("DELETE", endpoint)

        logger.info(
            f"Successfully deleted {sobject_type}",
            extra={"record_id": record_id},
        )

    async def delete_records(
        self,
        record_ids: List[str],
        all_or_none: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Delete records in batches through the composite sobject collections API.

        Args:
            record_ids: Salesforce record IDs (any sobject type)
            all_or_none: Roll back the batch if any delete fails

        Returns:
            One result per id ({"id", "success", "errors"})
        """
        results: List[Dict[str, Any]] = []

        for start in range(0, len(record_ids), COMPOSITE_BATCH_SIZE):
            batch = record_ids[start:start + COMPOSITE_BATCH_SIZE]
            response = await self.request(
                "DELETE",
                "composite/sobjects",
                params={
                    "ids": ",".join(batch),
                    "allOrNone": "true" if all_or_none else "false",
                },
            )
            results.extend(response or [])

        failed = [r for r in results if not r.get("success")]
        if failed:
            logger.warning(
                f"{len(failed)} of {len(results)} deletes failed",
                extra={"failed": failed},
            )
        else:
            logger.info(f"Deleted {len(results)} records")

        return results

    async def push_streaming_events(
        self,
        channel_id: str,
        push_events: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """
        Publish events to a generic streaming channel.

        Args:
            channel_id: StreamingChannel record ID
            push_events: [{"payload": str, "userIds": [..]}]

        Returns:
            One result per event ({"fanoutCount", "userOnlineStatus"})
        """
        endpoint = f"sobjects/StreamingChannel/{channel_id}/push"

        response = await self.request("POST", endpoint, json_data={"pushEvents": push_events})

        logger.info(
            f"Pushed {len(push_events)} streaming events",
            extra={"channel_id": channel_id, "results": response},
        )

        return response
