from __future__ import annotations

import pytest

from flowsync.config import SyncConfig
from flowsync.exceptions import FlowSyncConfigError


def test_defaults() -> None:
    config = SyncConfig()
    assert config.polling_interval == 30.0
    assert config.auto_refresh_interval == 10.0
    assert config.cache_ttl == 60.0
    assert config.reconnect_attempts == 5
    assert config.reconnect_interval == 3.0
    assert config.push_available


@pytest.mark.parametrize(
    "kwargs",
    [
        {"topic": " "},
        {"polling_interval": 0},
        {"cache_ttl": -1},
        {"reconnect_attempts": 0},
        {"reconnect_interval": -0.5},
    ],
)
def test_invalid_values_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(FlowSyncConfigError):
        SyncConfig(**kwargs)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({"enable_push": False}, False),
        ({"push_url": None}, False),
        ({"push_url": ""}, False),
        ({"push_url": "wss://flow.example/ws"}, True),
    ],
)
def test_push_available(kwargs: dict[str, object], expected: bool) -> None:
    assert SyncConfig(**kwargs).push_available is expected  # type: ignore[arg-type]


def test_from_env_reads_values_and_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLOWSYNC_BASE_URL", "https://flow.example")
    monkeypatch.setenv("FLOWSYNC_POLLING_INTERVAL", "15")
    monkeypatch.setenv("FLOWSYNC_RECONNECT_ATTEMPTS", "3")
    monkeypatch.setenv("FLOWSYNC_ENABLE_PUSH", "off")
    monkeypatch.setenv("FLOWSYNC_CACHE_TTL", "120")

    config = SyncConfig.from_env(cache_ttl=5.0)

    assert config.base_url == "https://flow.example"
    assert config.polling_interval == 15.0
    assert config.reconnect_attempts == 3
    assert config.enable_push is False
    assert config.cache_ttl == 5.0


def test_from_env_rejects_bad_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLOWSYNC_RECONNECT_ATTEMPTS", "many")
    with pytest.raises(FlowSyncConfigError):
        SyncConfig.from_env()
