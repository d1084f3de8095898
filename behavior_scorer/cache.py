"""Concurrent, TTL-bounded cache of session scores."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from behavior_scorer.scoring import SessionScore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True, slots=True)
class CachedScore:
    score: SessionScore
    stored_at: float


class ReadWriteLock:
    """Asyncio lock allowing many concurrent readers or one writer.

    Waiting writers block new readers so a steady stream of reads cannot
    starve a write.
    """

    def __init__(self) -> None:
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._writer_active and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._condition:
            self._writers_waiting += 1
            try:
                await self._condition.wait_for(
                    lambda: not self._writer_active and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
            self._writer_active = True
        try:
            yield
        finally:
            async with self._condition:
                self._writer_active = False
                self._condition.notify_all()


class ScoreCache:
    """Maps session ids to their most recent score, valid for ``ttl_seconds``.

    Reads never evict; expired entries are only reclaimed by ``cleanup()``.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._entries: dict[str, CachedScore] = {}
        self._lock = ReadWriteLock()
        self._ttl = float(ttl_seconds)
        self._clock = clock

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, session_id: str) -> SessionScore | None:
        """Return the cached score if it is younger than the TTL."""
        async with self._lock.read():
            cached = self._entries.get(session_id)
            if cached is None or not self._is_fresh(cached):
                return None
            return cached.score

    async def set(self, session_id: str, score: SessionScore) -> None:
        """Store score, replacing any existing entry and restarting its TTL."""
        async with self._lock.write():
            self._entries[session_id] = CachedScore(score=score, stored_at=self._clock())

    async def invalidate(self, session_id: str) -> bool:
        async with self._lock.write():
            return self._entries.pop(session_id, None) is not None

    async def clear(self) -> None:
        async with self._lock.write():
            self._entries.clear()

    async def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""
        async with self._lock.write():
            expired = [key for key, cached in self._entries.items() if not self._is_fresh(cached)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired score cache entries", len(expired))
        return len(expired)

    def _is_fresh(self, cached: CachedScore) -> bool:
        return self._clock() - cached.stored_at < self._ttl
