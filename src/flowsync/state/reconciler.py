"""Reconciler: the only component allowed to write merged state.

Merged state is always recomputed from scratch as
``cached base snapshot ⊕ pending optimistic patches (oldest first)``, so a
new network delivery can never lose a pending optimistic write and removing
a write restores exactly what the base alone would show.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from flowsync.exceptions import FlowSyncPayloadError
from flowsync.state.cache import CacheStore
from flowsync.state.events import IncrementalEvent, Snapshot, utcnow
from flowsync.state.ledger import OptimisticLedger
from flowsync.state.policy import apply_event, merge_state

_logger = logging.getLogger(__name__)


class MergedState(BaseModel):
    """Externally visible state of one topic."""

    model_config = ConfigDict(frozen=True)

    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    base_timestamp: datetime
    last_updated: datetime
    pending_update_ids: list[str] = Field(default_factory=list)


class Reconciler:
    """Merge snapshots, events and optimistic patches into :class:`MergedState`.

    This component is deterministic: for a given cached base and ledger
    content it always produces the same merged data.
    """

    def __init__(
        self,
        *,
        cache: CacheStore,
        ledger: OptimisticLedger,
        clock: Callable[[], datetime] = utcnow,
        on_update: Callable[[MergedState], None] | None = None,
    ) -> None:
        self._cache = cache
        self._ledger = ledger
        self._clock = clock
        self._on_update = on_update
        self._merged: dict[str, MergedState] = {}
        # Last published base per topic; outlives cache clears and expiry.
        self._bases: dict[str, Snapshot] = {}

    def current(self, topic: str) -> MergedState | None:
        return self._merged.get(topic)

    def reconcile_snapshot(self, topic: str, snapshot: Snapshot) -> MergedState:
        """Store *snapshot* as the new base for *topic* and republish."""
        if snapshot.topic != topic:
            raise FlowSyncPayloadError(
                f"Snapshot for topic {snapshot.topic!r} delivered to {topic!r}",
                kind="snapshot",
            )
        self._cache.set(topic, snapshot)
        return self._publish(topic, snapshot)

    def reconcile_event(self, topic: str, event: IncrementalEvent) -> MergedState | None:
        """Apply *event* on top of the current base.

        Events cannot seed state: before the first snapshot this is a no-op
        and returns ``None``.
        """
        if event.topic != topic:
            raise FlowSyncPayloadError(
                f"Event for topic {event.topic!r} delivered to {topic!r}",
                kind=event.kind.value,
            )
        base = self._base(topic)
        if base is None:
            _logger.debug("Dropping %s for %s: no base snapshot yet", event.kind.value, topic)
            return None

        # Raises FlowSyncPayloadError before anything is stored.
        body = apply_event(base.data, event.kind, event.data)
        updated = Snapshot(
            topic=topic,
            data=body,
            timestamp=max(base.timestamp, event.received_at),
            source=base.source,
        )
        self._cache.set(topic, updated)
        return self._publish(topic, updated)

    def reapply(self, topic: str) -> MergedState | None:
        """Recompute merged state after the ledger changed.

        Uses the cached base, or the last published one when the cache was
        cleared, so optimistic writes stay visible and revert exactly.
        """
        base = self._base(topic)
        if base is None:
            return None
        return self._publish(topic, base)

    def _base(self, topic: str) -> Snapshot | None:
        entry = self._cache.get(topic)
        if entry is not None:
            return entry.snapshot
        return self._bases.get(topic)

    def _publish(self, topic: str, base: Snapshot) -> MergedState:
        merged = MergedState(
            topic=topic,
            data=merge_state(base.data, self._ledger.pending_patches()),
            base_timestamp=base.timestamp,
            last_updated=self._clock(),
            pending_update_ids=self._ledger.pending_ids(),
        )
        self._bases[topic] = base
        self._merged[topic] = merged
        if self._on_update is not None:
            self._on_update(merged)
        return merged
