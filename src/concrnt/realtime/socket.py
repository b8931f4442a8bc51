"""
RealtimeSocket — persistent event connection with topic fan-out.

State machine::

    CONNECTING -> OPEN -> CLOSED -> CONNECTING -> ...

A single background task drives it.  Each connection attempt owns a
future that resolves exactly once: True when the socket opened, False when
the attempt failed.  ``wait_open`` awaits attempts until one succeeds.

While OPEN, a keepalive loop sends ``ping`` every interval.  A ping still
unanswered at the next tick counts as a miss; after ``max_missed_pongs``
consecutive misses the connection is treated as dead and re-established,
even if the transport never reported a close.  Reconnects wait a fixed
delay (no backoff) and replay ``listen`` with the full topic set.

Inbound events update the Api caches before listeners see them:

  message.create      full body -> Api.cache_message
  association.create  full body -> Api.cache_association, target message invalidated
  *.delete            object invalidated; association targets invalidated too
  anything else       logged and ignored
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from concrnt.cache.store import Found
from concrnt.models.core import TimelineEvent
from concrnt.realtime.protocol import (
    EventAction,
    EventKind,
    ProtocolSpec,
    decode_frame,
    encode_listen,
    encode_ping,
    encode_unlisten,
    is_pong,
    parse_event,
    socket_url,
)

if TYPE_CHECKING:
    from concrnt.api import Api

logger = logging.getLogger(__name__)

EventCallback = Callable[[TimelineEvent], Awaitable[None] | None]


class WebSocketLike(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> Any: ...


Connector = Callable[[str], Awaitable[WebSocketLike]]


async def default_connector(url: str) -> WebSocketLike:
    # keepalive is done at the application level
    return await websockets.connect(url, ping_interval=None, open_timeout=10)


class ConnectionState(StrEnum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


def _string_id(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


class RealtimeSocket:
    """Live event feed for one domain, shared by every reader of an Api."""

    def __init__(
        self,
        api: Api,
        domain: str | None = None,
        *,
        protocol: ProtocolSpec | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._api = api
        self.domain = domain or api.host
        self._protocol = protocol or ProtocolSpec()
        self._connector = connector or default_connector

        self.state = ConnectionState.CLOSED
        self._ws: WebSocketLike | None = None
        self._runner: asyncio.Task[None] | None = None
        self._attempt: asyncio.Future[bool] | None = None
        self._closing = False

        self._subscriptions: dict[str, set[EventCallback]] = {}
        self._awaiting_pong = False
        self._missed_pongs = 0

    def __repr__(self) -> str:
        return f"RealtimeSocket(domain={self.domain!r}, state={self.state.value}, topics={len(self._subscriptions)})"

    @property
    def topics(self) -> frozenset[str]:
        return frozenset(self._subscriptions)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the connection task if it is not running."""
        if self._runner is not None and not self._runner.done():
            return
        self._closing = False
        self._attempt = asyncio.get_running_loop().create_future()
        self._runner = asyncio.create_task(self._run(), name=f"concrnt-socket-{self.domain}")

    async def wait_open(self, timeout: float | None = None) -> bool:
        """Wait until a connection attempt succeeds.  False on timeout or close."""
        self.start()
        try:
            async with asyncio.timeout(timeout):
                while not self._closing:
                    if self.state is ConnectionState.OPEN:
                        return True
                    assert self._attempt is not None
                    if await asyncio.shield(self._attempt):
                        return True
        except TimeoutError:
            return False
        return False

    async def close(self) -> None:
        """Stop reconnecting and close the connection.  Idempotent."""
        self._closing = True
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
        self._resolve_attempt(False)
        self.state = ConnectionState.CLOSED

    def _resolve_attempt(self, opened: bool) -> None:
        attempt = self._attempt
        if not opened and not self._closing:
            # a fresh future for the next attempt, installed before waiters wake
            self._attempt = asyncio.get_running_loop().create_future()
        if attempt is not None and not attempt.done():
            attempt.set_result(opened)

    async def _run(self) -> None:
        url = socket_url(self.domain, self._protocol.path)
        while not self._closing:
            self.state = ConnectionState.CONNECTING
            try:
                ws = await self._connector(url)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning("Realtime connect to %s failed: %s", url, exc)
                self.state = ConnectionState.CLOSED
                self._resolve_attempt(False)
                await asyncio.sleep(self._protocol.reconnect_delay_seconds)
                continue

            try:
                await self._on_open(ws)
                await self._session(ws)
            finally:
                self._ws = None
                self.state = ConnectionState.CLOSED
                with suppress(Exception):
                    async with asyncio.timeout(1):
                        await ws.close()

            if self._closing:
                break
            self._resolve_attempt(False)
            logger.info("Realtime connection to %s closed; reconnecting", self.domain)
            await asyncio.sleep(self._protocol.reconnect_delay_seconds)

    async def _on_open(self, ws: WebSocketLike) -> None:
        self._ws = ws
        self.state = ConnectionState.OPEN
        self._awaiting_pong = False
        self._missed_pongs = 0
        logger.info("Realtime connection to %s open", self.domain)
        if self._subscriptions:
            await self._send(encode_listen(self._subscriptions))
        attempt = self._attempt
        if attempt is not None and not attempt.done():
            attempt.set_result(True)

    async def _session(self, ws: WebSocketLike) -> None:
        reader = asyncio.create_task(self._read_loop(ws))
        keeper = asyncio.create_task(self._keepalive(ws))
        try:
            done, _ = await asyncio.wait({reader, keeper}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and (exc := task.exception()) is not None:
                    logger.info("Realtime session on %s ended: %s", self.domain, exc)
        finally:
            for task in (reader, keeper):
                task.cancel()
            await asyncio.gather(reader, keeper, return_exceptions=True)

    async def _read_loop(self, ws: WebSocketLike) -> None:
        try:
            async for raw in ws:
                await self._handle_frame(raw)
        except ConnectionClosed as exc:
            logger.debug("Realtime socket closed by peer: %s", exc)

    async def _keepalive(self, ws: WebSocketLike) -> None:
        while True:
            await asyncio.sleep(self._protocol.keepalive_interval_seconds)
            if self._awaiting_pong:
                self._missed_pongs += 1
                if self._missed_pongs >= self._protocol.max_missed_pongs:
                    logger.warning(
                        "No pong from %s after %d pings; forcing reconnect",
                        self.domain,
                        self._missed_pongs,
                    )
                    return
            self._awaiting_pong = True
            await ws.send(encode_ping())

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def _send(self, frame: str) -> None:
        ws = self._ws
        if ws is None or self.state is not ConnectionState.OPEN:
            return
        try:
            await ws.send(frame)
        except ConnectionClosed as exc:
            # the reconnect replays the topic set
            logger.debug("Send on closed realtime socket dropped: %s", exc)

    async def listen(self, topics: Iterable[str], callback: EventCallback) -> None:
        """Register *callback* for *topics*; subscribes on the wire only for new topics."""
        before = len(self._subscriptions)
        for topic in topics:
            self._subscriptions.setdefault(topic, set()).add(callback)
        if len(self._subscriptions) > before:
            await self._send(encode_listen(self._subscriptions))

    async def unlisten(self, topics: Iterable[str], callback: EventCallback) -> None:
        """Remove *callback*; unsubscribes on the wire only for topics left with no listener."""
        removed: list[str] = []
        for topic in topics:
            callbacks = self._subscriptions.get(topic)
            if callbacks is None:
                continue
            callbacks.discard(callback)
            if not callbacks:
                del self._subscriptions[topic]
                removed.append(topic)
        if removed:
            await self._send(encode_unlisten(removed))

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _handle_frame(self, raw: str | bytes) -> None:
        frame = decode_frame(raw)
        if frame is None:
            return
        if is_pong(frame):
            self._awaiting_pong = False
            self._missed_pongs = 0
            return
        event = parse_event(frame)
        if event is None:
            return
        try:
            self._apply(event)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Could not apply realtime event %s.%s on %s", event.type, event.action, event.topic
            )
        await self._distribute(event)

    def _apply(self, event: TimelineEvent) -> None:
        """Reflect *event* in the Api caches."""
        body: dict[str, Any] = event.body if isinstance(event.body, dict) else {}
        kind, action = event.type, event.action

        if action == EventAction.CREATE and kind == EventKind.MESSAGE:
            if "document" in body:
                self._api.cache_message(body)
        elif action == EventAction.CREATE and kind == EventKind.ASSOCIATION:
            if "document" in body:
                self._api.cache_association(body)
            if target := _string_id(body.get("target")):
                self._api.invalidate_message(target)
        elif action == EventAction.DELETE and kind in (EventKind.MESSAGE, EventKind.ASSOCIATION):
            resource_id = event.item.resource_id if event.item else None
            object_id = _string_id(body.get("id")) or _string_id(resource_id)
            if not object_id:
                logger.warning("Delete event on %s without an object id", event.topic)
                return
            if kind == EventKind.MESSAGE:
                self._api.invalidate_message(object_id)
                return
            target = _string_id(body.get("target")) or self._cached_association_target(object_id)
            self._api.invalidate_association(object_id)
            if target:
                self._api.invalidate_message(target)
        else:
            logger.info("Ignoring realtime event %s.%s on %s", kind, action, event.topic)

    def _cached_association_target(self, association_id: str) -> str | None:
        cached = self._api.associations.peek(association_id)
        return cached.value.target if isinstance(cached, Found) else None

    async def _distribute(self, event: TimelineEvent) -> None:
        for callback in list(self._subscriptions.get(event.topic, ())):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                logger.error("Realtime listener for %s failed: %s", event.topic, exc)
