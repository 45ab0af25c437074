"""
SObject Accessor

Record-level helpers in the shape the streaming scenarios use them:

    await conn.sobject("Account").create({"Name": name})
    records = await conn.sobject("Account").find({"Name": {"$in": names}}, ["Id"])
    await conn.sobject("PushTopic").find_one({"Name": topic}).delete()
    await conn.sobject("StreamingChannel").find({"Name": channel}).destroy()
"""

from typing import Any, Dict, Generator, List, Optional, Sequence

from salesforce_streaming.services.salesforce_service import SalesforceService
from salesforce_streaming.services.soql import build_query
from salesforce_streaming.utils.exceptions import SalesforceAPIException
from salesforce_streaming.utils.logging_config import get_logger

logger = get_logger(__name__)


class RecordQuery:
    """
    A lazily executed find.

    Awaiting it runs the query; destroy()/delete() run it and delete every match.
    """

    def __init__(
        self,
        sobject: "SObject",
        conditions: Optional[Dict[str, Any]],
        fields: Sequence[str],
        limit: Optional[int] = None,
        single: bool = False,
    ):
        self.sobject = sobject
        self.conditions = conditions
        self.fields = list(fields)
        self.limit = limit
        self.single = single

    @property
    def soql(self) -> str:
        return build_query(self.sobject.type, self.fields, self.conditions, self.limit)

    async def execute(self) -> Any:
        records = await self.sobject.service.query_all_records(self.soql)
        if self.single:
            return records[0] if records else None
        return records

    def __await__(self) -> Generator[Any, None, Any]:
        return self.execute().__await__()

    async def destroy(self) -> List[Dict[str, Any]]:
        """Delete every record the query matches. Returns the delete results."""
        query = self
        if "Id" not in self.fields:
            query = RecordQuery(self.sobject, self.conditions, ["Id"], self.limit, self.single)

        found = await query.execute()
        if self.single:
            found = [found] if found else []

        if not found:
            logger.info(
                f"No {self.sobject.type} records matched, nothing to delete",
                extra={"conditions": self.conditions},
            )
            return []

        return await self.sobject.destroy([record["Id"] for record in found])

    delete = destroy


class SObject:
    """Accessor for one sobject type"""

    def __init__(self, service: SalesforceService, sobject_type: str):
        self.service = service
        self.type = sobject_type

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a record.

        Raises:
            SalesforceAPIException: If the API reports the insert unsuccessful
        """
        result = await self.service.create_record(self.type, fields)
        if not result.get("success", False):
            raise SalesforceAPIException(
                f"Failed to create {self.type}",
                details={"errors": result.get("errors", []), "sobject_type": self.type},
            )
        return result

    def find(
        self,
        conditions: Optional[Dict[str, Any]] = None,
        fields: Sequence[str] = ("Id",),
        limit: Optional[int] = None,
    ) -> RecordQuery:
        return RecordQuery(self, conditions, fields, limit=limit)

    def find_one(
        self,
        conditions: Optional[Dict[str, Any]] = None,
        fields: Sequence[str] = ("Id",),
    ) -> RecordQuery:
        return RecordQuery(self, conditions, fields, limit=1, single=True)

    async def destroy(self, ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Delete records by id. A single id uses the plain sobject endpoint."""
        ids = list(ids)
        if not ids:
            return []
        if len(ids) == 1:
            await self.service.delete_record(self.type, ids[0])
            return [{"id": ids[0], "success": True, "errors": []}]
        return await self.service.delete_records(ids)
