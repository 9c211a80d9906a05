"""Normalized deliveries.

Every transport (push, polling, manual refresh, cache seed) converts its
input into a :class:`Snapshot` or an :class:`IncrementalEvent`. Only the
reconciler is allowed to merge them into state.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flowsync._constants import MSG_BOTTLENECK_DETECTED, MSG_OPTIMIZATION_SUGGESTION


def utcnow() -> datetime:
    return datetime.now(UTC)


class SnapshotSource(StrEnum):
    PUSH = "push"
    POLL = "poll"
    MANUAL = "manual"
    CACHE = "cache"


class EventKind(StrEnum):
    BOTTLENECK_DETECTED = MSG_BOTTLENECK_DETECTED
    OPTIMIZATION_SUGGESTION = MSG_OPTIMIZATION_SUGGESTION


class Snapshot(BaseModel):
    """Full authoritative state for one topic at a point in time."""

    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., description="Subscription topic key")
    data: dict[str, Any] = Field(default_factory=dict, description="Full remote state (wire shape)")
    timestamp: datetime = Field(default_factory=utcnow)
    source: SnapshotSource = SnapshotSource.POLL

    @field_validator("topic")
    @classmethod
    def _normalize_topic(cls, value: str) -> str:
        topic = value.strip()
        if not topic:
            raise ValueError("topic must be non-empty")
        return topic

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class IncrementalEvent(BaseModel):
    """A partial update applied against the last known snapshot."""

    model_config = ConfigDict(frozen=True)

    topic: str
    kind: EventKind
    data: dict[str, Any] = Field(default_factory=dict, description="Single list item to append")
    received_at: datetime = Field(default_factory=utcnow)

    @field_validator("received_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
