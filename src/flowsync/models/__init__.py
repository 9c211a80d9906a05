"""Typed payload models for the flow-optimization API."""

from flowsync.models._base import FlowBaseModel, FlowTimestamp, parse_flow_timestamp
from flowsync.models.flow import (
    AppliedSuggestion,
    Bottleneck,
    FlowSnapshotPayload,
    Suggestion,
    SuggestionApplyResult,
)
from flowsync.models.messages import PingMessage, PushMessage, SubscribeMessage

__all__ = [
    "AppliedSuggestion",
    "Bottleneck",
    "FlowBaseModel",
    "FlowSnapshotPayload",
    "FlowTimestamp",
    "PingMessage",
    "PushMessage",
    "SubscribeMessage",
    "Suggestion",
    "SuggestionApplyResult",
    "parse_flow_timestamp",
]
