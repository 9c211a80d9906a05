"""Ingestion helpers.

Translate raw transport payloads (polling responses, push message bodies)
into normalized :class:`~flowsync.state.events.Snapshot` and
:class:`~flowsync.state.events.IncrementalEvent` objects. Validation lives
here, at the boundary; the reconciler only ever sees well-formed input.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from flowsync.exceptions import FlowSyncPayloadError
from flowsync.models.flow import Bottleneck, FlowSnapshotPayload, Suggestion
from flowsync.models.messages import PushMessage
from flowsync.state.events import EventKind, IncrementalEvent, Snapshot, SnapshotSource

_EVENT_ITEM_MODELS: dict[EventKind, type[Bottleneck] | type[Suggestion]] = {
    EventKind.BOTTLENECK_DETECTED: Bottleneck,
    EventKind.OPTIMIZATION_SUGGESTION: Suggestion,
}


def parse_push_message(payload: Any) -> PushMessage:
    """Validate a decoded push frame."""
    try:
        return PushMessage.model_validate(payload)
    except ValidationError as exc:
        raise FlowSyncPayloadError(f"Malformed push message: {exc.error_count()} error(s)", kind="message") from exc


def build_snapshot(
    *,
    topic: str,
    payload: Any,
    source: SnapshotSource,
    received_at: datetime,
    timestamp: datetime | None = None,
) -> Snapshot:
    """Build a snapshot from a full-state payload.

    The payload is validated against :class:`FlowSnapshotPayload` but
    stored in its wire shape. The snapshot timestamp is, in order of
    preference: the explicit *timestamp* (push envelope), the payload's
    ``lastUpdated``, then *received_at*.
    """
    if not isinstance(payload, dict):
        raise FlowSyncPayloadError(
            f"Snapshot payload must be an object, got {type(payload).__name__}",
            kind="snapshot",
        )
    try:
        parsed = FlowSnapshotPayload.model_validate(payload)
    except ValidationError as exc:
        raise FlowSyncPayloadError(f"Malformed snapshot: {exc.error_count()} error(s)", kind="snapshot") from exc

    return Snapshot(
        topic=topic,
        data=copy.deepcopy(payload),
        timestamp=timestamp or parsed.last_updated or received_at,
        source=source,
    )


def build_event(
    *,
    topic: str,
    kind: EventKind,
    payload: Any,
    received_at: datetime,
) -> IncrementalEvent:
    """Build an incremental event carrying one bottleneck or suggestion."""
    if not isinstance(payload, dict):
        raise FlowSyncPayloadError(
            f"{kind.value} payload must be an object, got {type(payload).__name__}",
            kind=kind.value,
        )
    try:
        _EVENT_ITEM_MODELS[kind].model_validate(payload)
    except ValidationError as exc:
        raise FlowSyncPayloadError(f"Malformed {kind.value}: {exc.error_count()} error(s)", kind=kind.value) from exc

    return IncrementalEvent(
        topic=topic,
        kind=kind,
        data=copy.deepcopy(payload),
        received_at=received_at,
    )

