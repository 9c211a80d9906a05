from __future__ import annotations

from flowsync._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "type": "subscribe",
        "channel": "flow-optimization",
        "Authorization": "Bearer abc",
        "auth_token": "abc",
        "nested": {"password": "pw", "metrics": {"throughput": 3}},
    }

    redacted = redact_for_log(payload)
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["auth_token"] == "<redacted>"
    assert redacted["nested"]["password"] == "<redacted>"
    assert redacted["nested"]["metrics"] == {"throughput": 3}
    assert redacted["channel"] == "flow-optimization"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_limits_list_items() -> None:
    redacted = redact_for_log({"suggestions": list(range(25))}, max_items=3)
    assert redacted["suggestions"] == [0, 1, 2, "<+22 more>"]


def test_redact_for_log_summarizes_bytes() -> None:
    assert redact_for_log(b"\x00\x01\x02") == "<bytes:3b>"
