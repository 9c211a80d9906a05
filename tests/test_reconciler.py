from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from flowsync.exceptions import FlowSyncPayloadError
from flowsync.state.cache import CacheStore
from flowsync.state.events import EventKind, IncrementalEvent, Snapshot, SnapshotSource
from flowsync.state.ledger import OptimisticLedger
from flowsync.state.reconciler import MergedState, Reconciler

TOPIC = "flow"
S1 = {"id": 1, "title": "Split review column"}
S2 = {"id": 2, "title": "Lower WIP limit"}


def _dt(seconds: int = 0) -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC) + timedelta(seconds=seconds)


def _snapshot(data: dict[str, Any], *, seconds: int = 0) -> Snapshot:
    return Snapshot(topic=TOPIC, data=data, timestamp=_dt(seconds), source=SnapshotSource.PUSH)


def _event(kind: EventKind, item: dict[str, Any], *, seconds: int = 0) -> IncrementalEvent:
    return IncrementalEvent(topic=TOPIC, kind=kind, data=item, received_at=_dt(seconds))


def _reconciler(ledger: OptimisticLedger | None = None, cache: CacheStore | None = None) -> Reconciler:
    return Reconciler(
        cache=cache if cache is not None else CacheStore(clock=_dt),
        ledger=ledger if ledger is not None else OptimisticLedger(clock=_dt),
        clock=_dt,
    )


def test_pending_patch_overrides_snapshot_until_removed() -> None:
    ledger = OptimisticLedger(clock=_dt)
    reconciler = _reconciler(ledger)

    ledger.apply("u1", {"suggestions": []})
    merged = reconciler.reconcile_snapshot(TOPIC, _snapshot({"suggestions": [S1, S2]}))
    assert merged.data == {"suggestions": []}
    assert merged.pending_update_ids == ["u1"]

    ledger.remove("u1")
    merged = reconciler.reconcile_snapshot(TOPIC, _snapshot({"suggestions": [S1, S2]}))
    assert merged.data == {"suggestions": [S1, S2]}
    assert merged.pending_update_ids == []


def test_merge_is_deterministic() -> None:
    ledger = OptimisticLedger(clock=_dt)
    ledger.apply("u1", {"metrics": {"throughput": 3}})
    ledger.apply("u2", {"suggestions": [S2]})
    snapshot = _snapshot({"metrics": {"throughput": 1}, "suggestions": [S1], "bottlenecks": []})

    outputs = set()
    for _ in range(5):
        merged = _reconciler(ledger).reconcile_snapshot(TOPIC, snapshot)
        outputs.add(json.dumps(merged.data, sort_keys=True))

    assert len(outputs) == 1


def test_later_patch_wins_per_field() -> None:
    ledger = OptimisticLedger(clock=_dt)
    reconciler = _reconciler(ledger)
    ledger.apply("older", {"metrics": {"throughput": 2}, "suggestions": []})
    ledger.apply("newer", {"metrics": {"throughput": 9}})

    merged = reconciler.reconcile_snapshot(TOPIC, _snapshot({"metrics": {"throughput": 1}, "suggestions": [S1]}))

    assert merged.data == {"metrics": {"throughput": 9}, "suggestions": []}


def test_optimistic_overlay_then_rollback_restores_exact_state() -> None:
    ledger = OptimisticLedger(clock=_dt)
    reconciler = _reconciler(ledger)
    before = reconciler.reconcile_snapshot(TOPIC, _snapshot({"suggestions": [S1, S2], "metrics": {"wip": 4}}))

    ledger.apply("u1", {"suggestions": [S2]})
    during = reconciler.reapply(TOPIC)
    assert during is not None
    assert during.data["suggestions"] == [S2]

    ledger.remove("u1")
    after = reconciler.reapply(TOPIC)
    assert after is not None
    assert after.data == before.data


def test_events_apply_in_receipt_order() -> None:
    reconciler = _reconciler()
    reconciler.reconcile_snapshot(TOPIC, _snapshot({"bottlenecks": []}))

    # "late" was sent first but is received second.
    early_received = {"id": "b2", "message": "sent second"}
    late_received = {"id": "b1", "message": "sent first"}
    reconciler.reconcile_event(TOPIC, _event(EventKind.BOTTLENECK_DETECTED, early_received, seconds=1))
    merged = reconciler.reconcile_event(TOPIC, _event(EventKind.BOTTLENECK_DETECTED, late_received, seconds=2))

    assert merged is not None
    assert merged.data["bottlenecks"] == [early_received, late_received]


def test_suggestion_event_appends_to_suggestions() -> None:
    reconciler = _reconciler()
    reconciler.reconcile_snapshot(TOPIC, _snapshot({"suggestions": [S1]}))

    merged = reconciler.reconcile_event(TOPIC, _event(EventKind.OPTIMIZATION_SUGGESTION, S2, seconds=5))

    assert merged is not None
    assert merged.data["suggestions"] == [S1, S2]
    assert merged.base_timestamp == _dt(5)


def test_event_without_base_is_dropped() -> None:
    reconciler = _reconciler()
    assert reconciler.reconcile_event(TOPIC, _event(EventKind.BOTTLENECK_DETECTED, {"id": "b1"})) is None
    assert reconciler.current(TOPIC) is None


def test_snapshot_supersedes_earlier_events() -> None:
    reconciler = _reconciler()
    reconciler.reconcile_snapshot(TOPIC, _snapshot({"bottlenecks": []}))
    reconciler.reconcile_event(TOPIC, _event(EventKind.BOTTLENECK_DETECTED, {"id": "b1"}, seconds=1))

    merged = reconciler.reconcile_snapshot(TOPIC, _snapshot({"bottlenecks": [{"id": "b9"}]}, seconds=2))

    assert merged.data["bottlenecks"] == [{"id": "b9"}]


def test_event_against_non_list_field_keeps_prior_state() -> None:
    reconciler = _reconciler()
    before = reconciler.reconcile_snapshot(TOPIC, _snapshot({"suggestions": "not-a-list"}))

    with pytest.raises(FlowSyncPayloadError):
        reconciler.reconcile_event(TOPIC, _event(EventKind.OPTIMIZATION_SUGGESTION, S1))

    assert reconciler.current(TOPIC) == before


def test_topic_mismatch_rejected() -> None:
    reconciler = _reconciler()
    other = Snapshot(topic="other", data={}, timestamp=_dt(), source=SnapshotSource.POLL)
    with pytest.raises(FlowSyncPayloadError):
        reconciler.reconcile_snapshot(TOPIC, other)


def test_on_update_receives_every_publish() -> None:
    published: list[MergedState] = []
    ledger = OptimisticLedger(clock=_dt)
    reconciler = Reconciler(cache=CacheStore(clock=_dt), ledger=ledger, clock=_dt, on_update=published.append)

    reconciler.reconcile_snapshot(TOPIC, _snapshot({"suggestions": [S1]}))
    ledger.apply("u1", {"suggestions": []})
    reconciler.reapply(TOPIC)

    assert [state.data["suggestions"] for state in published] == [[S1], []]
    assert reconciler.reapply("unknown") is None


def test_helper_uses_the_given_empty_ledger() -> None:
    ledger = OptimisticLedger(clock=_dt)
    reconciler = _reconciler(ledger)
    reconciler.reconcile_snapshot(TOPIC, _snapshot({"suggestions": [S1]}))

    ledger.apply("u1", {"suggestions": []})
    merged = reconciler.reapply(TOPIC)

    assert merged is not None
    assert merged.data == {"suggestions": []}


def test_overlay_and_rollback_survive_cache_clear() -> None:
    ledger = OptimisticLedger(clock=_dt)
    cache = CacheStore(clock=_dt)
    reconciler = _reconciler(ledger, cache)
    before = reconciler.reconcile_snapshot(TOPIC, _snapshot({"suggestions": [S1, S2], "metrics": {"wip": 4}}))
    cache.clear()

    ledger.apply("u1", {"suggestions": []})
    during = reconciler.reapply(TOPIC)
    assert during is not None
    assert during.data["suggestions"] == []

    ledger.remove("u1")
    after = reconciler.reapply(TOPIC)
    assert after is not None
    assert after.data == before.data


def test_event_after_cache_clear_applies_to_last_base() -> None:
    cache = CacheStore(clock=_dt)
    reconciler = _reconciler(cache=cache)
    reconciler.reconcile_snapshot(TOPIC, _snapshot({"bottlenecks": []}))
    cache.clear()

    merged = reconciler.reconcile_event(TOPIC, _event(EventKind.BOTTLENECK_DETECTED, {"id": "b1"}, seconds=1))

    assert merged is not None
    assert merged.data["bottlenecks"] == [{"id": "b1"}]
    assert TOPIC in cache
