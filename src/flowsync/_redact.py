"""Helpers for safe debug logging.

Push and polling payloads can be large (full metric snapshots) and requests
may carry bearer tokens. This module shrinks and masks values before they
are emitted in DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "authorization",
        "auth_token",
        "authtoken",
        "token",
        "access_token",
        "accesstoken",
        "apikey",
        "api_key",
        "password",
        "cookie",
    }
)


def redact_for_log(
    value: Any,
    *,
    max_string: int = 256,
    max_items: int = 10,
    _depth: int = 0,
) -> Any:
    """Return a masked, size-bounded copy of *value* for debug logs."""
    if _depth > 12:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        masked: dict[str, Any] = {}
        for key, item in value.items():
            name = str(key)
            if name.lower() in _SENSITIVE_KEYS:
                masked[name] = "<redacted>"
                continue
            masked[name] = redact_for_log(item, max_string=max_string, max_items=max_items, _depth=_depth + 1)
        return masked

    if isinstance(value, Sequence):
        items = [
            redact_for_log(item, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            for item in list(value)[:max_items]
        ]
        if len(value) > max_items:
            items.append(f"<+{len(value) - max_items} more>")
        return items

    return repr(value)
