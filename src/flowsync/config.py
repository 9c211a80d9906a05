"""Engine configuration for flowsync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from flowsync._constants import (
    APPLY_SUGGESTIONS_PATH,
    BASE_URL,
    DEFAULT_TOPIC,
    PUSH_URL,
    SNAPSHOT_PATH,
)
from flowsync.exceptions import FlowSyncConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Engine configuration.

    Parameters
    ----------
    base_url : str
        HTTP base URL of the flow-optimization API (polling and mutations).
    push_url : str or None
        WebSocket endpoint for push delivery. ``None`` or an empty string
        disables the push channel; the engine then runs in degraded
        (polling-only) mode from the start.
    topic : str
        Subscription topic key sent in the push handshake and used as the
        cache key.
    snapshot_path : str
        Path of the snapshot endpoint, appended to ``base_url``.
    apply_suggestions_path : str
        Path of the "apply suggestions" endpoint, appended to ``base_url``.
    polling_interval : float
        Seconds between polling fetches while push is unavailable.
    auto_refresh_interval : float
        Seconds between forced refreshes, independent of transport health.
    cache_ttl : float
        Seconds after which a cached snapshot is considered stale.
    reconnect_attempts : int
        Failed handshakes tolerated before the connection is marked
        ``failed`` and no more automatic reconnects are scheduled.
    reconnect_interval : float
        Fixed backoff in seconds between reconnect attempts.
    heartbeat_interval : float
        Seconds between application-level ``ping`` messages while connected.
        ``0`` disables the heartbeat.
    request_timeout : float
        Total timeout in seconds for HTTP requests and the push handshake.
    enable_push : bool
        Use the push channel at all.
    enable_auto_refresh : bool
        Run the auto-refresh timer.
    enable_caching : bool
        Serve fresh cached snapshots instead of fetching.
    auth_token : str or None
        Optional bearer token sent with HTTP requests and the push handshake.
    """

    base_url: str = BASE_URL
    push_url: str | None = PUSH_URL
    topic: str = DEFAULT_TOPIC
    snapshot_path: str = SNAPSHOT_PATH
    apply_suggestions_path: str = APPLY_SUGGESTIONS_PATH
    polling_interval: float = 30.0
    auto_refresh_interval: float = 10.0
    cache_ttl: float = 60.0
    reconnect_attempts: int = 5
    reconnect_interval: float = 3.0
    heartbeat_interval: float = 25.0
    request_timeout: float = 10.0
    enable_push: bool = True
    enable_auto_refresh: bool = True
    enable_caching: bool = True
    auth_token: str | None = None

    def __post_init__(self) -> None:
        if not self.topic.strip():
            raise FlowSyncConfigError("topic must be non-empty")
        for name in ("polling_interval", "auto_refresh_interval", "cache_ttl", "request_timeout"):
            if getattr(self, name) <= 0:
                raise FlowSyncConfigError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("reconnect_interval", "heartbeat_interval"):
            if getattr(self, name) < 0:
                raise FlowSyncConfigError(f"{name} must not be negative, got {getattr(self, name)}")
        if self.reconnect_attempts < 1:
            raise FlowSyncConfigError(f"reconnect_attempts must be at least 1, got {self.reconnect_attempts}")

    @property
    def push_available(self) -> bool:
        """Whether a push channel should be attempted at all."""
        return self.enable_push and bool(self.push_url)

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from environment variables.

        Reads optional ``FLOWSYNC_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        SyncConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "FLOWSYNC_BASE_URL": "base_url",
            "FLOWSYNC_PUSH_URL": "push_url",
            "FLOWSYNC_TOPIC": "topic",
            "FLOWSYNC_SNAPSHOT_PATH": "snapshot_path",
            "FLOWSYNC_APPLY_SUGGESTIONS_PATH": "apply_suggestions_path",
            "FLOWSYNC_AUTH_TOKEN": "auth_token",
        }
        _ENV_FLOAT_MAP = {
            "FLOWSYNC_POLLING_INTERVAL": "polling_interval",
            "FLOWSYNC_AUTO_REFRESH_INTERVAL": "auto_refresh_interval",
            "FLOWSYNC_CACHE_TTL": "cache_ttl",
            "FLOWSYNC_RECONNECT_INTERVAL": "reconnect_interval",
            "FLOWSYNC_HEARTBEAT_INTERVAL": "heartbeat_interval",
            "FLOWSYNC_REQUEST_TIMEOUT": "request_timeout",
        }
        _ENV_BOOL_MAP = {
            "FLOWSYNC_ENABLE_PUSH": ("enable_push", True),
            "FLOWSYNC_ENABLE_AUTO_REFRESH": ("enable_auto_refresh", True),
            "FLOWSYNC_ENABLE_CACHING": ("enable_caching", True),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = float(val)

            attempts_env = env.get("FLOWSYNC_RECONNECT_ATTEMPTS")
            if attempts_env is not None:
                config_kwargs["reconnect_attempts"] = int(attempts_env)
        except ValueError as exc:
            raise FlowSyncConfigError(f"Invalid numeric FLOWSYNC_* value: {exc}") from exc

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if env_key in env:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
