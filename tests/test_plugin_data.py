from __future__ import annotations

from datetime import datetime, timezone

import pytest

from access_pagerduty.access.memory import InMemoryAccessClient
from access_pagerduty.errors import CompareFailedError, NotFoundError
from access_pagerduty.plugin_data import (
    PagerdutyData,
    PluginData,
    PluginDataStore,
    RequestData,
    decode_plugin_data,
    encode_plugin_data,
)

CREATED = datetime(2020, 5, 17, 9, 30, tzinfo=timezone.utc)


def _data(incident_id: str = "INC1") -> PluginData:
    return PluginData(
        request=RequestData(user="alice", roles=("admin", "dba"), created=CREATED),
        pagerduty=PagerdutyData(id=incident_id),
    )


def test_encode_plugin_data() -> None:
    assert encode_plugin_data(_data()) == {
        "incident_id": "INC1",
        "user": "alice",
        "roles": "admin,dba",
        "created": "1589707800",
        "resolution": "",
    }


def test_decode_tolerates_missing_and_malformed_fields() -> None:
    data = decode_plugin_data({"incident_id": "INC1", "created": "yesterday"})

    assert data.pagerduty.id == "INC1"
    assert data.request.user == ""
    assert data.request.roles == ()
    assert data.request.created is None
    assert data.resolution == ""


@pytest.mark.asyncio
async def test_store_create_and_get() -> None:
    client = InMemoryAccessClient()
    await client.create_request("alice", ["admin", "dba"], request_id="R1")
    store = PluginDataStore(client)

    await store.create("R1", _data())

    assert await store.get("R1") == _data()
    assert "resolution" not in client.plugin_data["R1"]


@pytest.mark.asyncio
async def test_store_get_without_incident_is_not_found() -> None:
    client = InMemoryAccessClient()
    await client.create_request("alice", ["admin"], request_id="R1")
    await client.update_plugin_data("R1", {"user": "alice"}, None)

    with pytest.raises(NotFoundError):
        await PluginDataStore(client).get("R1")


@pytest.mark.asyncio
async def test_mark_resolved_is_compare_and_swap() -> None:
    client = InMemoryAccessClient()
    await client.create_request("alice", ["admin", "dba"], request_id="R1")
    store = PluginDataStore(client)
    await store.create("R1", _data())

    resolved = await store.mark_resolved("R1", _data(), "approved")

    assert resolved.resolution == "approved"
    assert (await store.get("R1")).resolution == "approved"

    with pytest.raises(CompareFailedError):
        await store.mark_resolved("R1", _data(), "expired")
