"""Tests for the httpx-backed remote store."""

from __future__ import annotations

import httpx
import pytest

from helpers import REMOTE_URL, RemoteServer, make_remote

from copydesk.services.errors import MissingIdentity, RemoteUnavailable
from copydesk.services.records import DOCUMENTS, PersistedRecord
from copydesk.services.remote_store import RemoteStore


@pytest.mark.asyncio
async def test_put_then_get_scoped_to_owner(remote_server: RemoteServer) -> None:
    store = make_remote(remote_server, "user-1")
    record = PersistedRecord(payload={"id": "doc-1", "content": "Hello"})

    await store.put(DOCUMENTS, "doc-1", record)
    fetched = await store.get(DOCUMENTS, "doc-1")
    other_owner = await make_remote(remote_server, "user-2").get(DOCUMENTS, "doc-1")

    assert fetched == record
    assert other_owner is None
    assert remote_server.requests[0].headers["X-Owner-Id"] == "user-1"
    await store.aclose()


@pytest.mark.asyncio
async def test_missing_record_and_delete(remote_server: RemoteServer) -> None:
    store = make_remote(remote_server)

    assert await store.get(DOCUMENTS, "absent") is None
    assert await store.delete(DOCUMENTS, "absent") is False

    await store.put(DOCUMENTS, "doc-1", PersistedRecord(payload={"id": "doc-1"}))
    assert await store.delete(DOCUMENTS, "doc-1") is True
    assert remote_server.stored(DOCUMENTS, "doc-1") is None


@pytest.mark.asyncio
async def test_network_error_maps_to_remote_unavailable(remote_server: RemoteServer) -> None:
    remote_server.online = False
    store = make_remote(remote_server)

    with pytest.raises(RemoteUnavailable) as excinfo:
        await store.put(DOCUMENTS, "doc-1", PersistedRecord(payload={}))

    assert excinfo.value.status_code is None
    assert await store.ping() is False


@pytest.mark.asyncio
async def test_server_error_carries_status(remote_server: RemoteServer) -> None:
    remote_server.fail_status = 503
    store = make_remote(remote_server)

    with pytest.raises(RemoteUnavailable) as excinfo:
        await store.get(DOCUMENTS, "doc-1")

    assert excinfo.value.status_code == 503
    assert excinfo.value.to_dict()["status_code"] == 503


@pytest.mark.asyncio
async def test_unreadable_body_maps_to_remote_unavailable() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"payload": 5}))
    store = RemoteStore(REMOTE_URL, identity=lambda: "user-1", transport=transport)

    with pytest.raises(RemoteUnavailable):
        await store.get(DOCUMENTS, "doc-1")


@pytest.mark.asyncio
async def test_missing_identity_is_fatal_and_sends_nothing(remote_server: RemoteServer) -> None:
    store = make_remote(remote_server, None)

    with pytest.raises(MissingIdentity):
        await store.put(DOCUMENTS, "doc-1", PersistedRecord(payload={}))

    assert remote_server.requests == []
    assert await store.ping() is False


@pytest.mark.asyncio
async def test_api_key_sent_as_bearer(remote_server: RemoteServer) -> None:
    store = RemoteStore(
        REMOTE_URL,
        identity=lambda: "user-1",
        api_key="remote-secret",
        transport=remote_server.transport(),
    )

    assert await store.ping() is True
    assert remote_server.requests[0].headers["Authorization"] == "Bearer remote-secret"
