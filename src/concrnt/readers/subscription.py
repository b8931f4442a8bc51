"""Subscription — typed event emitter over a set of realtime topics."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING

from concrnt.models.core import TimelineEvent

if TYPE_CHECKING:
    from concrnt.realtime.socket import RealtimeSocket

logger = logging.getLogger(__name__)

Handler = Callable[[TimelineEvent], None]


class SubscriptionEvent(StrEnum):
    MESSAGE_CREATED = "MessageCreated"
    MESSAGE_DELETED = "MessageDeleted"
    ASSOCIATION_CREATED = "AssociationCreated"
    ASSOCIATION_DELETED = "AssociationDeleted"


_ROUTES = {
    ("message", "create"): SubscriptionEvent.MESSAGE_CREATED,
    ("message", "delete"): SubscriptionEvent.MESSAGE_DELETED,
    ("association", "create"): SubscriptionEvent.ASSOCIATION_CREATED,
    ("association", "delete"): SubscriptionEvent.ASSOCIATION_DELETED,
}


class Subscription:
    def __init__(self, socket: RealtimeSocket) -> None:
        self._socket = socket
        self.timelines: list[str] = []
        self._handlers: dict[SubscriptionEvent, set[Handler]] = {kind: set() for kind in SubscriptionEvent}

    def on(self, kind: SubscriptionEvent, handler: Handler) -> None:
        self._handlers[SubscriptionEvent(kind)].add(handler)

    def off(self, kind: SubscriptionEvent, handler: Handler) -> None:
        self._handlers[SubscriptionEvent(kind)].discard(handler)

    def emit(self, kind: SubscriptionEvent, event: TimelineEvent) -> None:
        for handler in list(self._handlers[SubscriptionEvent(kind)]):
            try:
                handler(event)
            except Exception as exc:  # noqa: BLE001
                logger.error("Subscription handler for %s failed: %s", kind, exc)

    async def listen(self, timelines: list[str], *, timeout: float | None = None) -> None:
        """Follow *timelines*, replacing any previous set."""
        await self._socket.wait_open(timeout)
        if self.timelines:
            await self._socket.unlisten(self.timelines, self._route)
        self.timelines = list(timelines)
        await self._socket.listen(self.timelines, self._route)

    async def dispose(self) -> None:
        if self.timelines:
            topics, self.timelines = self.timelines, []
            await self._socket.unlisten(topics, self._route)
        for handlers in self._handlers.values():
            handlers.clear()

    def _route(self, event: TimelineEvent) -> None:
        kind = _ROUTES.get((event.type, event.action))
        if kind is None:
            logger.debug("Subscription ignoring %s.%s", event.type, event.action)
            return
        self.emit(kind, event)
