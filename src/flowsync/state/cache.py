"""Time-bounded snapshot cache.

The cache only stores and ages snapshots. It never merges partial updates
(that is the reconciler's job) and never withholds stale data: staleness is
a hint for the caller to revalidate, not a reason to return nothing.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict

from flowsync.state.events import Snapshot, utcnow
from flowsync.state.policy import is_fresh


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic: str
    snapshot: Snapshot
    stored_at: datetime


class CacheStoreStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: int = 0
    last_update: datetime | None = None


class CacheStore:
    """Topic -> snapshot map with a fixed time-to-live."""

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def get(self, topic: str) -> CacheEntry | None:
        """Return the stored entry, fresh or stale, or ``None``."""
        return self._entries.get(topic)

    def set(self, topic: str, snapshot: Snapshot) -> CacheEntry:
        """Store *snapshot* for *topic*, overwriting any previous entry."""
        entry = CacheEntry(topic=topic, snapshot=snapshot, stored_at=self._clock())
        self._entries[topic] = entry
        return entry

    def is_fresh(self, topic: str) -> bool:
        entry = self._entries.get(topic)
        if entry is None:
            return False
        return is_fresh(self._clock(), entry.stored_at, self._ttl)

    def age(self, topic: str) -> timedelta | None:
        entry = self._entries.get(topic)
        if entry is None:
            return None
        return self._clock() - entry.stored_at

    def stats(self) -> CacheStoreStats:
        if not self._entries:
            return CacheStoreStats()
        return CacheStoreStats(
            size=len(self._entries),
            last_update=max(entry.stored_at for entry in self._entries.values()),
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, topic: object) -> bool:
        return topic in self._entries
