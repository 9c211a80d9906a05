"""State layer.

The single source of truth for how snapshots from push and polling,
incremental push events, and local optimistic writes are merged into a
deterministic per-topic view.
"""

from flowsync.state.cache import CacheEntry, CacheStore, CacheStoreStats
from flowsync.state.events import EventKind, IncrementalEvent, Snapshot, SnapshotSource
from flowsync.state.ledger import OptimisticEntry, OptimisticLedger
from flowsync.state.reconciler import MergedState, Reconciler

__all__ = [
    "CacheEntry",
    "CacheStore",
    "CacheStoreStats",
    "EventKind",
    "IncrementalEvent",
    "MergedState",
    "OptimisticEntry",
    "OptimisticLedger",
    "Reconciler",
    "Snapshot",
    "SnapshotSource",
]
