"""Flow-optimization payload models (snapshot, bottlenecks, suggestions)."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from flowsync.models._base import FlowBaseModel, FlowTimestamp


class Bottleneck(FlowBaseModel):
    """A detected flow bottleneck (WIP overrun, blocked task, ...)."""

    id: int | str | None = None
    type: str | None = None
    severity: str | None = None
    column: str | None = None
    message: str | None = None
    impact: str | None = None
    detected_at: FlowTimestamp = None
    recommendations: list[Any] = Field(default_factory=list)


class Suggestion(FlowBaseModel):
    """An optimization suggestion produced by the server."""

    id: int | str | None = None
    type: str | None = None
    priority: str | None = None
    title: str | None = None
    description: str | None = None
    impact: str | None = None
    effort: str | None = None
    category: str | None = None
    estimated_time_to_implement: str | None = None
    expected_impact: str | None = None


class FlowSnapshotPayload(FlowBaseModel):
    """Full flow-optimization state as returned by the snapshot endpoint."""

    metrics: dict[str, Any] = Field(default_factory=dict)
    bottlenecks: list[Bottleneck] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    last_updated: FlowTimestamp = None


class AppliedSuggestion(FlowBaseModel):
    id: int | str | None = None
    title: str | None = None
    status: str | None = None
    applied_at: FlowTimestamp = None


class SuggestionApplyResult(FlowBaseModel):
    """Response of the "apply suggestions" endpoint."""

    success: bool = False
    applied_suggestions: list[AppliedSuggestion] = Field(default_factory=list)
    message: str | None = None
