"""Push channel message envelopes."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from flowsync._constants import MSG_PING, MSG_SUBSCRIBE
from flowsync.models._base import FlowTimestamp


class PushMessage(BaseModel):
    """Server-to-client envelope: ``{"type", "data", "timestamp", "channel"?}``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str
    data: Any = None
    timestamp: FlowTimestamp = None
    channel: str | None = None


class SubscribeMessage(BaseModel):
    """Topic subscription handshake sent right after the socket opens."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["subscribe"] = MSG_SUBSCRIBE
    channel: str


class PingMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["ping"] = MSG_PING
