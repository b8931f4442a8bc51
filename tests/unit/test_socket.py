"""
Tests for RealtimeSocket.

Covers:
  - open / listen / unlisten framing and refcounted topics
  - reconnect after a drop or failed connect, replaying listen
  - keepalive: missed pongs force a reconnect
  - inbound events update Api caches before listeners run
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
import pytest_asyncio
from websockets.exceptions import ConnectionClosed

from concrnt.api import Api
from concrnt.identity.keys import load_key
from concrnt.models.document import AssociationDocument, MessageDocument, sign_document
from concrnt.realtime.protocol import ProtocolSpec
from concrnt.realtime.socket import ConnectionState, RealtimeSocket

HOME = "home.example"
NOTE = "https://schema.example/note.json"
ALICE = load_key("2" * 64)

FAST = ProtocolSpec(keepalive_interval_seconds=0.02, max_missed_pongs=2, reconnect_delay_seconds=0.01)


class FakeWebSocket:
    def __init__(self, *, auto_pong: bool = True) -> None:
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self.closed = False
        self.auto_pong = auto_pong

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosed(None, None)
        frame = json.loads(message)
        self.sent.append(frame)
        if self.auto_pong and frame["type"] == "ping":
            self.inbox.put_nowait('{"type": "pong"}')

    async def close(self) -> None:
        self.closed = True
        self.inbox.put_nowait(None)

    def push(self, frame: dict | str) -> None:
        self.inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self) -> None:
        self.inbox.put_nowait(None)

    def frames(self, kind: str) -> list[dict]:
        return [f for f in self.sent if f["type"] == kind]

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self.inbox.get()
        if item is None:
            self.closed = True
            raise StopAsyncIteration
        return item


class FakeConnector:
    def __init__(self, *, fail_first: int = 0, auto_pong: bool = True) -> None:
        self.urls: list[str] = []
        self.sockets: list[FakeWebSocket] = []
        self.fail_first = fail_first
        self.auto_pong = auto_pong

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.fail_first:
            self.fail_first -= 1
            raise OSError("connection refused")
        ws = FakeWebSocket(auto_pong=self.auto_pong)
        self.sockets.append(ws)
        return ws

    @property
    def current(self) -> FakeWebSocket:
        return self.sockets[-1]


async def eventually(condition, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not condition():
            await asyncio.sleep(0.005)


def _api() -> Api:
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    return Api(HOME, http=http)


def _message(id: str) -> dict:
    signed = sign_document(
        ALICE.private_key, MessageDocument(signer=ALICE.ccid, schema=NOTE, body={"body": "hi"})
    )
    return {"id": id, "author": ALICE.ccid, "schema": NOTE, "document": signed.document, "signature": signed.signature}


def _association(id: str, target: str) -> dict:
    signed = sign_document(
        ALICE.private_key, AssociationDocument(signer=ALICE.ccid, schema=NOTE, target=target)
    )
    return {
        "id": id,
        "author": ALICE.ccid,
        "schema": NOTE,
        "target": target,
        "document": signed.document,
        "signature": signed.signature,
    }


def _event(kind: str, action: str, body: dict, timeline: str = "tl@home.example", resource: str = "") -> dict:
    frame = {"type": kind, "action": action, "timelineID": timeline, "body": body}
    if resource:
        frame["item"] = {"resourceID": resource, "timelineID": timeline, "cdate": "2024-01-01T00:00:00Z"}
    return frame


@pytest_asyncio.fixture
async def rig():
    api = _api()
    connector = FakeConnector()
    socket = RealtimeSocket(api, protocol=FAST, connector=connector)
    yield api, socket, connector
    await socket.close()
    await api.aclose()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_open(self):
        connector = FakeConnector()
        socket = RealtimeSocket(_api(), protocol=FAST, connector=connector)
        assert await socket.wait_open(1)
        assert socket.state is ConnectionState.OPEN
        assert connector.urls == ["wss://home.example/api/v1/socket"]
        await socket.close()
        assert socket.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_custom_socket_path(self):
        connector = FakeConnector()
        protocol = ProtocolSpec(path="/ws", reconnect_delay_seconds=0.01)
        socket = RealtimeSocket(_api(), protocol=protocol, connector=connector)
        assert await socket.wait_open(1)
        assert connector.urls == ["wss://home.example/ws"]
        await socket.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        socket = RealtimeSocket(_api(), protocol=FAST, connector=FakeConnector())
        await socket.wait_open(1)
        await socket.close()
        await socket.close()
        assert socket.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_wait_open_survives_failed_attempt(self):
        connector = FakeConnector(fail_first=2)
        socket = RealtimeSocket(_api(), protocol=FAST, connector=connector)
        assert await socket.wait_open(1)
        assert len(connector.urls) == 3
        await socket.close()

    @pytest.mark.asyncio
    async def test_wait_open_times_out(self):
        connector = FakeConnector(fail_first=10_000)
        socket = RealtimeSocket(_api(), protocol=FAST, connector=connector)
        assert not await socket.wait_open(0.05)
        await socket.close()


class TestTopics:
    @pytest.mark.asyncio
    async def test_listen_before_open_is_replayed(self):
        connector = FakeConnector()
        socket = RealtimeSocket(_api(), protocol=FAST, connector=connector)
        await socket.listen(["b", "a"], lambda e: None)
        await socket.wait_open(1)
        assert connector.current.frames("listen") == [{"type": "listen", "channels": ["a", "b"]}]
        await socket.close()

    @pytest.mark.asyncio
    async def test_listen_sends_full_set_only_for_new_topics(self):
        connector = FakeConnector()
        socket = RealtimeSocket(_api(), protocol=FAST, connector=connector)
        await socket.wait_open(1)
        first, second = (lambda e: None), (lambda e: None)
        await socket.listen(["a"], first)
        await socket.listen(["a"], second)
        await socket.listen(["b"], second)
        assert [f["channels"] for f in connector.current.frames("listen")] == [["a"], ["a", "b"]]
        await socket.close()

    @pytest.mark.asyncio
    async def test_unlisten_only_sends_topics_without_listeners(self):
        connector = FakeConnector()
        socket = RealtimeSocket(_api(), protocol=FAST, connector=connector)
        await socket.wait_open(1)
        first, second = (lambda e: None), (lambda e: None)
        await socket.listen(["a", "b"], first)
        await socket.listen(["a"], second)
        await socket.unlisten(["a", "b"], first)
        assert connector.current.frames("unlisten") == [{"type": "unlisten", "channels": ["b"]}]
        assert socket.topics == frozenset({"a"})
        await socket.unlisten(["a"], second)
        assert connector.current.frames("unlisten")[-1]["channels"] == ["a"]
        assert socket.topics == frozenset()
        await socket.close()

    @pytest.mark.asyncio
    async def test_reconnect_replays_listen(self):
        connector = FakeConnector()
        socket = RealtimeSocket(_api(), protocol=FAST, connector=connector)
        await socket.wait_open(1)
        await socket.listen(["a", "b"], lambda e: None)
        connector.current.drop()
        await eventually(lambda: len(connector.sockets) == 2 and socket.state is ConnectionState.OPEN)
        assert connector.current.frames("listen") == [{"type": "listen", "channels": ["a", "b"]}]
        await socket.close()


class TestKeepalive:
    @pytest.mark.asyncio
    async def test_pongs_keep_connection(self):
        connector = FakeConnector()
        socket = RealtimeSocket(_api(), protocol=FAST, connector=connector)
        await socket.wait_open(1)
        await asyncio.sleep(0.15)
        assert len(connector.sockets) == 1
        assert len(connector.current.frames("ping")) >= 3
        await socket.close()

    @pytest.mark.asyncio
    async def test_missed_pongs_force_reconnect(self):
        connector = FakeConnector(auto_pong=False)
        socket = RealtimeSocket(_api(), protocol=FAST, connector=connector)
        await socket.wait_open(1)
        await eventually(lambda: len(connector.sockets) == 2)
        assert connector.sockets[0].closed
        await socket.close()


class TestInbound:
    @pytest.mark.asyncio
    async def test_message_create_cached_before_listeners(self, rig):
        api, socket, connector = rig
        seen = []
        await socket.listen(["tl@home.example"], lambda e: seen.append(("m1" in api.messages, e)))
        await socket.wait_open(1)
        connector.current.push(_event("message", "create", _message("m1"), resource="m1"))
        await eventually(lambda: seen)
        cached_first, event = seen[0]
        assert cached_first
        assert event.item.resource_id == "m1"
        assert (await api.get_message("m1")).id == "m1"

    @pytest.mark.asyncio
    async def test_message_delete_invalidates(self, rig):
        api, socket, connector = rig
        api.cache_message(_message("m1"))
        seen = []
        await socket.listen(["tl@home.example"], seen.append)
        await socket.wait_open(1)
        connector.current.push(_event("message", "delete", {"id": "m1"}))
        await eventually(lambda: seen)
        assert "m1" not in api.messages

    @pytest.mark.asyncio
    async def test_delete_falls_back_to_item_resource_id(self, rig):
        api, socket, connector = rig
        api.cache_message(_message("m1"))
        seen = []
        await socket.listen(["tl@home.example"], seen.append)
        await socket.wait_open(1)
        connector.current.push(_event("message", "delete", {}, resource="m1"))
        await eventually(lambda: seen)
        assert "m1" not in api.messages

    @pytest.mark.asyncio
    async def test_association_create_invalidates_target(self, rig):
        api, socket, connector = rig
        api.cache_message(_message("m1"))
        seen = []
        await socket.listen(["tl@home.example"], seen.append)
        await socket.wait_open(1)
        connector.current.push(_event("association", "create", _association("a1", "m1")))
        await eventually(lambda: seen)
        assert "m1" not in api.messages
        assert "a1" in api.associations

    @pytest.mark.asyncio
    async def test_association_delete_uses_cached_target(self, rig):
        api, socket, connector = rig
        api.cache_message(_message("m1"))
        api.cache_association(_association("a1", "m1"))
        seen = []
        await socket.listen(["tl@home.example"], seen.append)
        await socket.wait_open(1)
        connector.current.push(_event("association", "delete", {"id": "a1"}))
        await eventually(lambda: seen)
        assert "a1" not in api.associations
        assert "m1" not in api.messages

    @pytest.mark.asyncio
    async def test_other_topics_not_delivered(self, rig):
        api, socket, connector = rig
        seen, other = [], []
        await socket.listen(["tl@home.example"], seen.append)
        await socket.listen(["other@home.example"], other.append)
        await socket.wait_open(1)
        connector.current.push(_event("message", "delete", {"id": "m1"}, timeline="other@home.example"))
        await eventually(lambda: other)
        assert seen == []

    @pytest.mark.asyncio
    async def test_bad_frames_and_failing_listeners_do_not_stop_the_feed(self, rig):
        api, socket, connector = rig
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        async def collect(event):
            seen.append(event)

        await socket.listen(["tl@home.example"], broken)
        await socket.listen(["tl@home.example"], collect)
        await socket.wait_open(1)
        connector.current.push("not json")
        connector.current.push({"no": "type"})
        connector.current.push({"type": "message"})
        connector.current.push(_event("message", "delete", {"id": "m1"}))
        await eventually(lambda: seen)
        assert len(connector.sockets) == 1

    @pytest.mark.asyncio
    async def test_non_string_ids_are_ignored_without_dropping_the_session(self, rig):
        api, socket, connector = rig
        api.cache_message(_message("m1"))
        seen = []
        await socket.listen(["tl@home.example"], seen.append)
        await socket.wait_open(1)
        connector.current.push(_event("message", "delete", {"id": ["x"]}))
        connector.current.push(_event("association", "delete", {"id": {"a": 1}, "target": ["m1"]}))
        connector.current.push(_event("association", "create", {"target": {"id": "m1"}}))
        connector.current.push(_event("message", "delete", {"id": "m1"}))
        await eventually(lambda: len(seen) == 4)
        assert "m1" not in api.messages
        assert socket.state is ConnectionState.OPEN
        assert len(connector.sockets) == 1


class TestDeleteThenRead:
    @pytest.mark.asyncio
    async def test_deleted_message_is_refetched_once_and_reported_missing(self):
        message_fetches = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v1/domain":
                return httpx.Response(200, json={"status": "ok", "content": {"fqdn": HOME}})
            if request.url.path == "/api/v1/message/m1":
                message_fetches.append(request)
            return httpx.Response(404)

        api = Api(HOME, http=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        connector = FakeConnector()
        socket = RealtimeSocket(api, protocol=FAST, connector=connector)
        try:
            api.cache_message(_message("m1"))
            assert (await api.get_message("m1")).id == "m1"
            seen = []
            await socket.listen(["tl@home.example"], seen.append)
            await socket.wait_open(1)
            connector.current.push(_event("message", "delete", {"id": "m1"}))
            await eventually(lambda: seen)

            assert await api.get_message("m1") is None
            assert len(message_fetches) == 1
            assert await api.get_message("m1") is None
            assert len(message_fetches) == 1
        finally:
            await socket.close()
            await api.aclose()
