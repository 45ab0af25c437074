"""
Test SObject Accessor and REST Service

Runs record operations against the in-memory org.
"""

import pytest

from salesforce_streaming.services.sobject import RecordQuery
from salesforce_streaming.utils.exceptions import SalesforceAPIException

COMPOSITE_PATH = "/services/data/v63.0/composite/sobjects"


@pytest.mark.asyncio
async def test_create_returns_id(connection, fake_org):
    result = await connection.sobject("Account").create({"Name": "Acme"})

    assert result["success"] is True
    assert fake_org.records["Account"][result["id"]]["Name"] == "Acme"


@pytest.mark.asyncio
async def test_create_rejected_raises(connection):
    with pytest.raises(SalesforceAPIException) as exc_info:
        await connection.sobject("StreamingChannel").create({"Name": "NoPrefix"})

    assert exc_info.value.status_code == 400
    assert exc_info.value.details["error"][0]["errorCode"] == "FIELD_INTEGRITY_EXCEPTION"


@pytest.mark.asyncio
async def test_find_is_lazy_until_awaited(connection, fake_org):
    await connection.sobject("Account").create({"Name": "A"})
    await connection.sobject("Account").create({"Name": "B"})
    await connection.sobject("Account").create({"Name": "C"})
    queries_before = len(fake_org.requests)

    query = connection.sobject("Account").find({"Name": {"$in": ["A", "B"]}}, ["Id", "Name"])

    assert isinstance(query, RecordQuery)
    assert len(fake_org.requests) == queries_before
    assert query.soql == "SELECT Id, Name FROM Account WHERE Name IN ('A', 'B')"

    records = await query
    assert sorted(r["Name"] for r in records) == ["A", "B"]
    # The attributes envelope is stripped
    assert all("attributes" not in r for r in records)


@pytest.mark.asyncio
async def test_find_one(connection):
    await connection.sobject("Account").create({"Name": "Only"})

    record = await connection.sobject("Account").find_one({"Name": "Only"}, ["Id", "Name"])
    missing = await connection.sobject("Account").find_one({"Name": "Nobody"})

    assert record["Name"] == "Only"
    assert missing is None


@pytest.mark.asyncio
async def test_find_one_delete_uses_single_record_endpoint(connection, fake_org):
    created = await connection.sobject("PushTopic").create({"Name": "Topic-1", "Query": "SELECT Id FROM Account"})

    results = await connection.sobject("PushTopic").find_one({"Name": "Topic-1"}).delete()

    assert results == [{"id": created["id"], "success": True, "errors": []}]
    assert ("DELETE", f"/services/data/v63.0/sobjects/PushTopic/{created['id']}") in fake_org.requests
    assert fake_org.find("PushTopic") == []


@pytest.mark.asyncio
async def test_destroy_many_uses_composite_delete(connection, fake_org):
    ids = [
        (await connection.sobject("Account").create({"Name": name}))["id"]
        for name in ("A", "B", "C")
    ]

    results = await connection.sobject("Account").destroy(ids)

    assert [r["id"] for r in results] == ids
    assert all(r["success"] for r in results)
    assert ("DELETE", COMPOSITE_PATH) in fake_org.requests
    assert fake_org.find("Account") == []


@pytest.mark.asyncio
async def test_destroy_query_with_no_matches(connection, fake_org):
    results = await connection.sobject("StreamingChannel").find({"Name": "/u/Nothing"}).destroy()

    assert results == []
    assert not [r for r in fake_org.requests if r[0] == "DELETE"]


@pytest.mark.asyncio
async def test_composite_delete_reports_failures(connection):
    created = await connection.sobject("Account").create({"Name": "A"})

    results = await connection.service.delete_records([created["id"], "001000000000000999"])

    assert results[0]["success"] is True
    assert results[1]["success"] is False
    assert results[1]["errors"][0]["statusCode"] == "ENTITY_IS_DELETED"


@pytest.mark.asyncio
async def test_delete_missing_record_raises(connection):
    with pytest.raises(SalesforceAPIException) as exc_info:
        await connection.service.delete_record("Account", "001000000000000999")

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_malformed_query_raises(connection):
    with pytest.raises(SalesforceAPIException) as exc_info:
        await connection.service.query("SELEC Id FROM Account")

    assert exc_info.value.status_code == 400
