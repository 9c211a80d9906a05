from __future__ import annotations

from datetime import UTC, datetime

import pytest

from flowsync.exceptions import FlowSyncPayloadError
from flowsync.ingestion import build_event, build_snapshot, parse_push_message
from flowsync.models import FlowSnapshotPayload, parse_flow_timestamp
from flowsync.state.events import EventKind, SnapshotSource

RECEIVED = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_snapshot_keeps_wire_shape_and_uses_last_updated() -> None:
    payload = {
        "metrics": {"throughput": 4},
        "suggestions": [{"id": 3, "estimatedTimeToImplement": "2h"}],
        "lastUpdated": "2026-02-01T08:00:00Z",
    }

    snapshot = build_snapshot(topic="flow", payload=payload, source=SnapshotSource.POLL, received_at=RECEIVED)

    assert snapshot.data == payload
    assert snapshot.data is not payload
    assert snapshot.timestamp == datetime(2026, 2, 1, 8, 0, tzinfo=UTC)
    assert snapshot.source == SnapshotSource.POLL


def test_snapshot_prefers_envelope_timestamp_then_receipt() -> None:
    envelope = datetime(2026, 2, 2, tzinfo=UTC)
    with_envelope = build_snapshot(
        topic="flow", payload={"lastUpdated": 0}, source=SnapshotSource.PUSH, received_at=RECEIVED, timestamp=envelope
    )
    without = build_snapshot(topic="flow", payload={}, source=SnapshotSource.PUSH, received_at=RECEIVED)

    assert with_envelope.timestamp == envelope
    assert without.timestamp == RECEIVED


@pytest.mark.parametrize("payload", [None, [], "text", {"bottlenecks": {"id": 1}}])
def test_malformed_snapshot_rejected(payload: object) -> None:
    with pytest.raises(FlowSyncPayloadError) as excinfo:
        build_snapshot(topic="flow", payload=payload, source=SnapshotSource.PUSH, received_at=RECEIVED)
    assert excinfo.value.kind == "snapshot"


def test_event_validates_item() -> None:
    event = build_event(
        topic="flow",
        kind=EventKind.BOTTLENECK_DETECTED,
        payload={"id": "b1", "severity": "high", "detectedAt": 1767225600},
        received_at=RECEIVED,
    )
    assert event.data["id"] == "b1"

    with pytest.raises(FlowSyncPayloadError):
        build_event(topic="flow", kind=EventKind.OPTIMIZATION_SUGGESTION, payload="x", received_at=RECEIVED)


def test_push_message_requires_type() -> None:
    message = parse_push_message({"type": "pong", "timestamp": "2026-01-01T00:00:00.000Z"})
    assert message.type == "pong"
    assert message.timestamp == datetime(2026, 1, 1, tzinfo=UTC)

    with pytest.raises(FlowSyncPayloadError):
        parse_push_message({"data": {}})


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("2026-01-01T00:00:00Z", datetime(2026, 1, 1, tzinfo=UTC)),
        (1767225600, datetime(2026, 1, 1, tzinfo=UTC)),
        (1767225600000, datetime(2026, 1, 1, tzinfo=UTC)),
        ("1767225600", datetime(2026, 1, 1, tzinfo=UTC)),
        ("yesterday", None),
        (None, None),
        (0, None),
        (True, None),
    ],
)
def test_parse_flow_timestamp(value: object, expected: datetime | None) -> None:
    assert parse_flow_timestamp(value) == expected


def test_payload_model_maps_camel_case_and_keeps_raw() -> None:
    parsed = FlowSnapshotPayload.model_validate(
        {"suggestions": [{"id": 1, "expectedImpact": "-20% cycle time"}], "extra": True}
    )
    assert parsed.suggestions[0].expected_impact == "-20% cycle time"
    assert parsed.raw["extra"] is True
