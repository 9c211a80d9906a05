"""flowsync - Async real-time synchronization engine for flow-optimization metrics."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("flowsync")
except PackageNotFoundError:
    __version__ = "0+local"
from flowsync.config import SyncConfig
from flowsync.connection import ConnectionManager, ConnectionState
from flowsync.engine import CacheStats, EngineState, FlowSyncEngine
from flowsync.exceptions import (
    FlowSyncConfigError,
    FlowSyncError,
    FlowSyncPayloadError,
    FlowSyncPushError,
    FlowSyncStateError,
    FlowSyncTransportError,
)
from flowsync.models import (
    AppliedSuggestion,
    Bottleneck,
    FlowSnapshotPayload,
    PushMessage,
    Suggestion,
    SuggestionApplyResult,
)
from flowsync.scheduler import RefreshScheduler
from flowsync.state import (
    CacheStore,
    EventKind,
    IncrementalEvent,
    MergedState,
    OptimisticLedger,
    Reconciler,
    Snapshot,
    SnapshotSource,
)

__all__ = [
    "__version__",
    "AppliedSuggestion",
    "Bottleneck",
    "CacheStats",
    "CacheStore",
    "ConnectionManager",
    "ConnectionState",
    "EngineState",
    "EventKind",
    "FlowSnapshotPayload",
    "FlowSyncConfigError",
    "FlowSyncEngine",
    "FlowSyncError",
    "FlowSyncPayloadError",
    "FlowSyncPushError",
    "FlowSyncStateError",
    "FlowSyncTransportError",
    "IncrementalEvent",
    "MergedState",
    "OptimisticLedger",
    "PushMessage",
    "Reconciler",
    "RefreshScheduler",
    "Snapshot",
    "SnapshotSource",
    "Suggestion",
    "SuggestionApplyResult",
    "SyncConfig",
]
