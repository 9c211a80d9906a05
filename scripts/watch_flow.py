#!/usr/bin/env python3
"""Watch the flow-optimization state through a live flowsync engine.

Connects to the configured API, prints every merged-state update, and
reports transport transitions (push, degraded polling, reconnects).

Configuration comes from ``FLOWSYNC_*`` environment variables; command
line flags override them.

Examples:
  python scripts/watch_flow.py --duration 60
  python scripts/watch_flow.py --no-push --polling-interval 5 --json
  python scripts/watch_flow.py --apply 3 --apply 4
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from flowsync import ConnectionState, FlowSyncEngine, FlowSyncError, SyncConfig  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--base-url", help="HTTP base URL (FLOWSYNC_BASE_URL)")
    parser.add_argument("--push-url", help="WebSocket URL (FLOWSYNC_PUSH_URL)")
    parser.add_argument("--topic", help="Subscription topic (FLOWSYNC_TOPIC)")
    parser.add_argument("--polling-interval", type=float, help="Seconds between polls while degraded")
    parser.add_argument("--no-push", action="store_true", help="Disable the push channel")
    parser.add_argument("--duration", type=float, default=0.0, help="Stop after N seconds (0 = until Ctrl+C)")
    parser.add_argument(
        "--apply",
        action="append",
        default=[],
        metavar="ID",
        help="Apply a suggestion by id after the first load (repeatable)",
    )
    parser.add_argument("--json", action="store_true", help="Print full merged state as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def _build_config(args: argparse.Namespace) -> SyncConfig:
    overrides: dict[str, Any] = {}
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.push_url:
        overrides["push_url"] = args.push_url
    if args.topic:
        overrides["topic"] = args.topic
    if args.polling_interval:
        overrides["polling_interval"] = args.polling_interval
    if args.no_push:
        overrides["enable_push"] = False
    return SyncConfig.from_env(**overrides)


def _summary(data: dict[str, Any]) -> str:
    metrics = data.get("metrics") or {}
    bottlenecks = data.get("bottlenecks") or []
    suggestions = data.get("suggestions") or []
    metric_text = ", ".join(f"{key}={value}" for key, value in sorted(metrics.items())[:6])
    return f"metrics[{metric_text}] bottlenecks={len(bottlenecks)} suggestions={len(suggestions)}"


def _print_update(data: dict[str, Any], *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, sort_keys=True, default=str))
    else:
        print(f"update: {_summary(data)}")


async def _run(args: argparse.Namespace) -> int:
    config = _build_config(args)
    push = config.push_url if config.push_available else "off"
    print(f"Watching topic={config.topic} base_url={config.base_url} push={push}")

    def on_error(exc: BaseException) -> None:
        print(f"error: {exc}", file=sys.stderr)

    async with FlowSyncEngine(
        config,
        on_data_update=lambda data: _print_update(data, as_json=args.json),
        on_error=on_error,
    ) as engine:
        print(f"connection: {engine.connection_state.value}")
        engine.connection.add_listener(lambda _old, new: print(f"connection: {new.value}"))

        if args.apply:
            result = await engine.apply_suggestions(args.apply)
            if result is None:
                print(f"apply failed: {engine.error}", file=sys.stderr)
            else:
                print(f"apply success={result.success} applied={len(result.applied_suggestions)} {result.message or ''}")

        try:
            if args.duration > 0:
                await asyncio.sleep(args.duration)
            else:
                await asyncio.Event().wait()
        finally:
            stats = engine.get_cache_stats()
            print(
                f"cache size={stats.cache_size} fresh={stats.is_fresh} "
                f"pending={stats.pending_update_ids} last={stats.last_cache_update}"
            )

        return 0 if engine.connection_state != ConnectionState.FAILED else 2


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130
    except FlowSyncError as exc:
        print(f"flowsync error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
