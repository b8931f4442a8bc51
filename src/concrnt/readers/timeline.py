"""
TimelineReader — a page of timeline rows kept current by realtime events.

``init`` loads the newest page and subscribes; ``read_more`` appends the
next older page; live events prepend, remove, or touch rows in place.
Rows are pointers (TimelineItem); the objects behind them are fetched
through the Api caches by whoever renders them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from concrnt.core.constants import DEFAULT_PAGE_SIZE
from concrnt.models.core import TimelineEvent, TimelineItem

if TYPE_CHECKING:
    from concrnt.api import Api
    from concrnt.realtime.socket import RealtimeSocket

logger = logging.getLogger(__name__)


class TimelineReader:
    def __init__(self, api: Api, socket: RealtimeSocket) -> None:
        self._api = api
        self._socket = socket
        self.body: list[TimelineItem] = []
        self.timelines: list[str] = []
        self.page_size = DEFAULT_PAGE_SIZE
        self.on_update: Callable[[], None] | None = None
        self._listening: list[str] = []

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update()

    async def init(self, timelines: list[str], page_size: int = DEFAULT_PAGE_SIZE) -> bool:
        """Load the newest page of *timelines* and follow them.  Returns whether more pages exist."""
        self.timelines = list(timelines)
        self.page_size = page_size

        items = await self._api.get_timeline_recent(self.timelines, limit=page_size)
        self.body = items
        self._notify()

        if set(self._listening) != set(self.timelines):
            if self._listening:
                await self._socket.unlisten(self._listening, self._on_event)
            await self._socket.listen(self.timelines, self._on_event)
            self._listening = list(self.timelines)

        return len(items) >= page_size

    async def read_more(self) -> bool:
        """Append the next older page.  Returns whether any new rows arrived."""
        if not self.body:
            return False
        oldest = self.body[-1]
        items = await self._api.get_timeline_ranged(
            self.timelines, until=oldest.cdate, limit=self.page_size
        )
        known = {item.resource_id for item in self.body}
        fresh = [item for item in items if item.resource_id not in known]
        if not fresh:
            return False
        self.body.extend(fresh)
        self._notify()
        return True

    async def reload(self) -> bool:
        return await self.init(self.timelines, self.page_size)

    async def dispose(self) -> None:
        """Stop following.  Safe to call more than once."""
        if self._listening:
            topics, self._listening = self._listening, []
            await self._socket.unlisten(topics, self._on_event)
        self.on_update = None

    def _on_event(self, event: TimelineEvent) -> None:
        body = event.body if isinstance(event.body, dict) else {}
        match (event.type, event.action):
            case ("message", "create"):
                if event.item is None:
                    return
                if any(row.resource_id == event.item.resource_id for row in self.body):
                    return
                self.body.insert(0, event.item)
            case ("message", "delete"):
                target = body.get("id") or (event.item.resource_id if event.item else None)
                self.body = [row for row in self.body if row.resource_id != target]
            case ("association", "create" | "delete"):
                target = body.get("target")
                row = next((r for r in self.body if r.resource_id == target), None)
                if row is None:
                    return
                row.last_update = datetime.now(UTC)
            case _:
                logger.debug("TimelineReader ignoring %s.%s", event.type, event.action)
                return
        self._notify()
