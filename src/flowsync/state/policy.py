"""Deterministic merge policy.

Pure functions only: no clocks, no I/O, no payload parsing. Given equal
inputs they produce equal outputs, which is what makes replaying optimistic
patches after every delivery safe.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from flowsync.exceptions import FlowSyncPayloadError
from flowsync.state.events import EventKind

# Event kind -> list-valued snapshot field the event is appended to.
EVENT_TARGET_FIELDS: dict[EventKind, str] = {
    EventKind.BOTTLENECK_DETECTED: "bottlenecks",
    EventKind.OPTIMIZATION_SUGGESTION: "suggestions",
}


def is_fresh(now: datetime, stored_at: datetime, ttl: timedelta) -> bool:
    return now - stored_at < ttl


def merge_state(base: Mapping[str, Any], patches: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """Overlay *patches* onto *base*, oldest first.

    Patches replace whole top-level fields (last applied wins per field).
    Neither the base nor the patches are mutated.
    """
    result: dict[str, Any] = copy.deepcopy(dict(base))
    for patch in patches:
        for key, value in patch.items():
            result[key] = copy.deepcopy(value)
    return result


def apply_event(base: Mapping[str, Any], kind: EventKind, item: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new snapshot body with *item* appended to the kind's list field."""
    field_name = EVENT_TARGET_FIELDS[kind]
    current = base.get(field_name)
    if current is None:
        current = []
    if not isinstance(current, list):
        raise FlowSyncPayloadError(
            f"Cannot apply {kind.value}: field {field_name!r} is {type(current).__name__}, not a list",
            kind=kind.value,
        )
    result: dict[str, Any] = copy.deepcopy(dict(base))
    result[field_name] = [*copy.deepcopy(current), copy.deepcopy(dict(item))]
    return result
