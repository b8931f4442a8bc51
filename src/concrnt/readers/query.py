"""QueryTimelineReader — paginated, filtered reads of a single timeline."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from concrnt.core.constants import DEFAULT_PAGE_SIZE
from concrnt.models.core import TimelineItem

if TYPE_CHECKING:
    from concrnt.api import Api


@dataclass
class Query:
    schema: str | None = None
    owner: str | None = None
    author: str | None = None


class QueryTimelineReader:
    def __init__(self, api: Api) -> None:
        self._api = api
        self.body: list[TimelineItem] = []
        self.timeline: str | None = None
        self.query = Query()
        self.batch = DEFAULT_PAGE_SIZE
        self.on_update: Callable[[], None] | None = None

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update()

    async def _fetch(self, until: datetime | None = None) -> list[TimelineItem]:
        assert self.timeline is not None
        return await self._api.query_timeline(
            self.timeline,
            schema=self.query.schema,
            owner=self.query.owner,
            author=self.query.author,
            until=until,
            limit=self.batch,
        )

    async def init(self, timeline: str, query: Query | None = None, limit: int = DEFAULT_PAGE_SIZE) -> bool:
        self.timeline = timeline
        self.query = query or Query()
        self.batch = limit
        self.body = await self._fetch()
        self._notify()
        return len(self.body) >= limit

    async def read_more(self) -> bool:
        if self.timeline is None or not self.body:
            return False
        items = await self._fetch(until=self.body[-1].cdate)
        known = {item.resource_id for item in self.body}
        fresh = [item for item in items if item.resource_id not in known]
        if not fresh:
            return False
        self.body.extend(fresh)
        self._notify()
        return True

    async def reload(self) -> bool:
        if self.timeline is None:
            return False
        return await self.init(self.timeline, self.query, self.batch)
