"""
ObjectCache — per-kind memoizing cache with at-most-one fetch in flight per key.

A slot holds either the asyncio.Task fetching the key or the settled
result of that fetch.  Results are explicit:

  Found(value)    the server returned the object
  NotFound        the server confirmed absence (404)
  Indeterminate   the payload could not be interpreted; not a stable negative

Slot rules:
  - Check-and-install happens under a lock with no await inside, so every
    concurrent ``get`` for a key converges on one task
  - Waiters await the task through ``asyncio.shield``; cancelling one waiter
    never cancels the shared fetch
  - A fetch that raises clears its slot (only if the slot still holds it)
    and every waiter sees the exception
  - A settled Indeterminate slot is re-fetched on the next ``get``
  - A settled NotFound slot is served as-is, unless ``negative_ttl`` elapsed
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class Indeterminate:
    reason: str = ""


NOT_FOUND = NotFound()

CacheResult = Found[T] | NotFound | Indeterminate
Fetcher = Callable[[], Awaitable[CacheResult[T]]]


def profile_key(author: str, schema: str) -> str:
    """Composite key for a profile looked up by author and schema."""
    return f"{author}{schema}"


@dataclass
class _Slot(Generic[T]):
    task: asyncio.Future[CacheResult[T]] | None = None
    result: CacheResult[T] | None = None
    settled_at: float = 0.0


class ObjectCache(Generic[T]):
    """Memoizing cache for one kind of object."""

    def __init__(
        self,
        name: str,
        *,
        negative_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._negative_ttl = negative_ttl
        self._clock = clock
        self._slots: dict[str, _Slot[T]] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ObjectCache({self.name!r}, size={len(self)})"

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, key: object) -> bool:
        return key in self._slots

    # ------------------------------------------------------------------
    # Slot inspection (call with the lock held)
    # ------------------------------------------------------------------

    def _settled(self, slot: _Slot[T]) -> CacheResult[T] | None:
        """The slot's result if it settled successfully, else None."""
        if slot.result is not None:
            return slot.result
        task = slot.task
        if task is not None and task.done() and not task.cancelled() and task.exception() is None:
            slot.result = task.result()
            slot.settled_at = self._clock()
            return slot.result
        return None

    def _usable(self, slot: _Slot[T]) -> bool:
        result = self._settled(slot)
        if result is None:
            # pending is usable; failed-but-not-yet-cleared is not
            return slot.task is not None and not slot.task.done()
        if isinstance(result, Indeterminate):
            return False
        if isinstance(result, NotFound) and self._negative_ttl is not None:
            return self._clock() - slot.settled_at < self._negative_ttl
        return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, key: str, fetcher: Fetcher[T]) -> CacheResult[T]:
        """Return the cached result for *key*, running *fetcher* at most once concurrently."""
        with self._lock:
            slot = self._slots.get(key)
            if slot is None or not self._usable(slot):
                slot = _Slot(task=asyncio.ensure_future(fetcher()))
                self._slots[key] = slot
                slot.task.add_done_callback(lambda t, k=key, s=slot: self._on_done(k, s, t))
                logger.debug("%s cache miss: %s", self.name, key)
            else:
                settled = self._settled(slot)
                if settled is not None:
                    return settled

        assert slot.task is not None
        return await asyncio.shield(slot.task)

    def _on_done(self, key: str, slot: _Slot[T], task: asyncio.Future[CacheResult[T]]) -> None:
        with self._lock:
            if task.cancelled() or task.exception() is not None:
                if self._slots.get(key) is slot:
                    del self._slots[key]
                if not task.cancelled():
                    logger.debug("%s fetch for %s failed: %s", self.name, key, task.exception())
                return
            if slot.result is None:
                slot.result = task.result()
                slot.settled_at = self._clock()

    def put(self, key: str, value: T) -> None:
        """Overwrite the slot with a known value."""
        with self._lock:
            self._slots[key] = _Slot(result=Found(value), settled_at=self._clock())

    def invalidate(self, key: str) -> None:
        """Drop the slot; the next ``get`` fetches.  Idempotent."""
        with self._lock:
            self._slots.pop(key, None)

    def peek(self, key: str) -> CacheResult[T] | None:
        """The settled result for *key* without fetching, or None."""
        with self._lock:
            slot = self._slots.get(key)
            return self._settled(slot) if slot is not None else None

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()
