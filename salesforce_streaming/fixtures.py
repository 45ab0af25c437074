"""
Remote Fixture Lifecycle

Async context managers that create a remote fixture on entry and delete it on
exit, assertion failures included, plus helpers for the Account records the
Change Data Capture checks create.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional, Sequence

from salesforce_streaming.connection import Connection
from salesforce_streaming.streaming.client import Channel, MessageHandler, Subscription
from salesforce_streaming.utils.exceptions import FixtureCleanupException
from salesforce_streaming.utils.logging_config import get_logger

logger = get_logger(__name__)

PUSH_TOPIC_OPERATIONS = ("create", "update", "delete", "undelete")


def unique_name(prefix: str) -> str:
    return f"{prefix} #{uuid.uuid4()}"


@asynccontextmanager
async def streaming_channel(conn: Connection, name: str) -> AsyncIterator[Channel]:
    """Create a generic StreamingChannel, yield its facade, delete it afterwards"""
    await conn.sobject("StreamingChannel").create({"Name": name})
    logger.info(f"Created streaming channel {name}")
    try:
        yield conn.streaming.channel(name)
    finally:
        await conn.sobject("StreamingChannel").find({"Name": name}).destroy()
        logger.info(f"Deleted streaming channel {name}")


@asynccontextmanager
async def push_topic(
    conn: Connection,
    name: str,
    query: str,
    api_version: Optional[str] = None,
    notify_for_fields: str = "Referenced",
    operations: Iterable[str] = ("create", "update"),
) -> AsyncIterator[Channel]:
    """
    Create a PushTopic, yield its channel, delete it afterwards.

    Args:
        operations: Which of create/update/delete/undelete notify subscribers
    """
    operations = set(operations)
    fields = {
        "Name": name,
        "Query": query,
        "ApiVersion": api_version or conn.config.push_topic_api_version,
        "NotifyForFields": notify_for_fields,
    }
    for operation in PUSH_TOPIC_OPERATIONS:
        fields[f"NotifyForOperation{operation.capitalize()}"] = operation in operations

    await conn.sobject("PushTopic").create(fields)
    logger.info(f"Created PushTopic {name}", extra={"query": query})
    try:
        yield conn.streaming.topic(name)
    finally:
        await conn.sobject("PushTopic").find_one({"Name": name}).delete()
        logger.info(f"Deleted PushTopic {name}")


@asynccontextmanager
async def subscription(
    channel: Channel,
    handler: MessageHandler,
    replay_id: Optional[int] = None,
) -> AsyncIterator[Subscription]:
    """Subscribe, wait for the acknowledgement, cancel on exit"""
    sub = channel.subscribe(handler, replay_id)
    try:
        await sub.ready()
        yield sub
    finally:
        sub.cancel()


async def create_records(
    conn: Connection,
    sobject_type: str,
    names: Sequence[str],
) -> List[str]:
    """Create one record per name, in order. Returns the new record ids."""
    ids = []
    for name in names:
        result = await conn.sobject(sobject_type).create({"Name": name})
        ids.append(result["id"])
    return ids


async def destroy_records(
    conn: Connection,
    sobject_type: str,
    names: Sequence[str],
    required: bool = True,
) -> int:
    """
    Delete every record whose Name is in names.

    Raises:
        FixtureCleanupException: When required and nothing matched

    Returns:
        Number of records deleted
    """
    names = list(names)
    records = await conn.sobject(sobject_type).find({"Name": {"$in": names}}, ["Id"]) if names else []

    if not records:
        if required:
            raise FixtureCleanupException(
                f"No {sobject_type} records found to delete",
                details={"names": names},
            )
        logger.warning(f"No {sobject_type} records found to delete", extra={"names": names})
        return 0

    await conn.sobject(sobject_type).destroy([record["Id"] for record in records])
    return len(records)
