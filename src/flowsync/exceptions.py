"""Custom exception hierarchy for flowsync."""

from __future__ import annotations


class FlowSyncError(Exception):
    """Base exception for all flowsync errors."""


class FlowSyncConfigError(FlowSyncError):
    """Invalid or missing configuration."""


class FlowSyncStateError(FlowSyncError):
    """Engine used outside its lifecycle (not started, already closed)."""


class FlowSyncTransportError(FlowSyncError):
    """HTTP-level failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class FlowSyncPushError(FlowSyncTransportError):
    """Push channel failure (handshake refused, socket error, lost connection)."""


class FlowSyncPayloadError(FlowSyncError):
    """A snapshot or incremental event could not be parsed.

    The engine drops the offending delivery and keeps its previous state;
    this error is only ever surfaced through the ``error`` field and the
    ``on_error`` callback.
    """

    def __init__(self, message: str, *, kind: str = "") -> None:
        self.kind = kind
        super().__init__(message)
