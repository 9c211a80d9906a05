"""High-level async engine: the single surface the presentation layer uses."""

from __future__ import annotations

import asyncio
import copy
import functools
import logging
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flowsync._constants import (
    MSG_BOTTLENECK_DETECTED,
    MSG_FLOW_METRICS_UPDATE,
    MSG_OPTIMIZATION_SUGGESTION,
    MSG_PONG,
)
from flowsync._push import ChannelFactory, CloseCallback, MessageCallback, PushChannel, WebSocketChannel
from flowsync._transport import HttpTransport, Transport
from flowsync.config import SyncConfig
from flowsync.connection import POLLING_STATES, ConnectionManager, ConnectionState
from flowsync.exceptions import (
    FlowSyncError,
    FlowSyncPayloadError,
    FlowSyncStateError,
    FlowSyncTransportError,
)
from flowsync.ingestion import build_event, build_snapshot, parse_push_message
from flowsync.models.flow import SuggestionApplyResult
from flowsync.models.messages import PingMessage, PushMessage
from flowsync.scheduler import RefreshScheduler
from flowsync.state.cache import CacheStore
from flowsync.state.events import EventKind, SnapshotSource, utcnow
from flowsync.state.ledger import OptimisticLedger
from flowsync.state.reconciler import MergedState, Reconciler

_logger = logging.getLogger(__name__)


class EngineState(BaseModel):
    """Point-in-time view of everything the presentation layer renders."""

    model_config = ConfigDict(frozen=True)

    data: dict[str, Any] | None = None
    is_loading: bool = False
    last_updated: datetime | None = None
    error: str | None = None
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    is_connected: bool = False
    is_polling: bool = False


class CacheStats(BaseModel):
    """Cache and ledger diagnostics.

    ``pending_update_ids`` lists optimistic updates that were never
    removed; a long-lived entry here points at a caller that forgot to
    confirm or roll back.
    """

    model_config = ConfigDict(frozen=True)

    cache_size: int = 0
    optimistic_updates_count: int = 0
    last_cache_update: datetime | None = None
    is_fresh: bool = False
    pending_update_ids: list[str] = Field(default_factory=list)
    oldest_pending_at: datetime | None = None


class FlowSyncEngine:
    """Real-time synchronization engine for flow-optimization metrics.

    Usage::

        async with FlowSyncEngine(SyncConfig()) as engine:
            print(engine.data)
            engine.apply_optimistic_update("u1", {"suggestions": []})

    One engine serves one subscription topic. Construct it when the
    subscription starts and close it when it ends; nothing is shared
    through module-level state.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        channel_factory: ChannelFactory | None = None,
        cache: CacheStore | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_data_update: Callable[[dict[str, Any]], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self._config = config or SyncConfig()
        self._topic = self._config.topic
        self._clock = clock
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._on_data_update = on_data_update
        self._on_error = on_error

        self._cache = (
            cache if cache is not None else CacheStore(ttl=timedelta(seconds=self._config.cache_ttl), clock=clock)
        )
        self._ledger = OptimisticLedger(clock=clock)
        self._reconciler = Reconciler(
            cache=self._cache,
            ledger=self._ledger,
            clock=clock,
            on_update=self._on_merged,
        )
        self._scheduler = RefreshScheduler(
            config=self._config,
            fetch=self._fetch,
            push_is_fresh=self._push_is_fresh,
            heartbeat=self._send_heartbeat,
        )
        self._connection = ConnectionManager(
            config=self._config,
            scheduler=self._scheduler,
            on_message=self._dispatch,
            channel_factory=channel_factory or self._make_channel,
        )
        self._connection.add_listener(self._scheduler.on_connection_state)
        self._connection.add_listener(self._on_connection_state)

        self._message_handlers: dict[str, Callable[[PushMessage], None]] = {
            MSG_FLOW_METRICS_UPDATE: self._handle_snapshot_message,
            MSG_BOTTLENECK_DETECTED: functools.partial(self._handle_event_message, EventKind.BOTTLENECK_DETECTED),
            MSG_OPTIMIZATION_SUGGESTION: functools.partial(
                self._handle_event_message, EventKind.OPTIMIZATION_SUGGESTION
            ),
            MSG_PONG: self._handle_pong,
        }

        self._error: BaseException | None = None
        self._loading = 0
        self._last_push_update_at: datetime | None = None
        self._started = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FlowSyncEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        """Open transports, start timers and load the initial state."""
        if self._closed:
            raise FlowSyncStateError("Engine is closed; create a new one")
        if self._started:
            return
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        if self._transport is None:
            self._transport = HttpTransport(self._config, self._http_session)
        self._started = True

        self._scheduler.start()
        await self._connection.connect()
        await self._load_initial()

    async def close(self) -> None:
        """Tear down every timer, the push channel and the owned HTTP session."""
        if self._closed:
            return
        self._closed = True
        await self._scheduler.stop()
        await self._connection.disconnect()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
        self._http_session = None
        self._started = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def data(self) -> dict[str, Any] | None:
        """Merged state (base snapshot plus pending optimistic patches).

        Reading stale data schedules a background refresh; the stale value
        is still returned immediately.
        """
        self._revalidate_if_stale()
        merged = self._reconciler.current(self._topic)
        return copy.deepcopy(merged.data) if merged is not None else None

    @property
    def is_loading(self) -> bool:
        return self._loading > 0

    @property
    def last_updated(self) -> datetime | None:
        merged = self._reconciler.current(self._topic)
        return merged.last_updated if merged is not None else None

    @property
    def error(self) -> BaseException | None:
        """Most recent delivery error, else the push channel's error while degraded.

        This is the exception object; :attr:`state` carries its message as
        ``EngineState.error`` (a string) for rendering.
        """
        if self._error is not None:
            return self._error
        if self._connection.state != ConnectionState.CONNECTED:
            return self._connection.last_error
        return None

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.state == ConnectionState.CONNECTED

    @property
    def is_polling(self) -> bool:
        return self._connection.state in POLLING_STATES

    @property
    def state(self) -> EngineState:
        error = self.error
        return EngineState(
            data=self.data,
            is_loading=self.is_loading,
            last_updated=self.last_updated,
            error=str(error) if error is not None else None,
            connection_state=self.connection_state,
            is_connected=self.is_connected,
            is_polling=self.is_polling,
        )

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def scheduler(self) -> RefreshScheduler:
        return self._scheduler

    @property
    def cache(self) -> CacheStore:
        return self._cache

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def refresh_data(self) -> dict[str, Any] | None:
        """Fetch a snapshot now, bypassing the cache.

        Returns the new merged state, or ``None`` if the fetch failed (the
        failure is recorded in :attr:`error`).
        """
        self._require_started()
        merged = await self._fetch(SnapshotSource.MANUAL)
        return copy.deepcopy(merged.data) if merged is not None else None

    def apply_optimistic_update(self, update_id: str, patch: Mapping[str, Any]) -> dict[str, Any] | None:
        """Overlay *patch* on the visible state until it is removed.

        Re-using an *update_id* replaces its patch. Returns the new merged
        state, or ``None`` while no snapshot has been received yet (the
        patch is then applied to the first one).
        """
        self._ledger.apply(update_id, patch)
        merged = self._reconciler.reapply(self._topic)
        return copy.deepcopy(merged.data) if merged is not None else None

    def remove_optimistic_update(self, update_id: str) -> bool:
        """Confirm or roll back an optimistic update; returns whether it was pending."""
        if not self._ledger.remove(update_id):
            return False
        self._reconciler.reapply(self._topic)
        return True

    def clear_cache(self) -> None:
        """Drop cached snapshots and revalidate in the background.

        Pending optimistic updates are kept; they belong to the caller.
        """
        self._cache.clear()
        _logger.debug("Cache cleared topic=%s", self._topic)
        if self._started:
            self._scheduler.request_refresh()

    def get_cache_stats(self) -> CacheStats:
        store_stats = self._cache.stats()
        entries = self._ledger.entries()
        return CacheStats(
            cache_size=store_stats.size,
            optimistic_updates_count=len(entries),
            last_cache_update=store_stats.last_update,
            is_fresh=self._cache.is_fresh(self._topic),
            pending_update_ids=[entry.update_id for entry in entries],
            oldest_pending_at=min((entry.applied_at for entry in entries), default=None),
        )

    async def send_message(self, message: Mapping[str, Any]) -> bool:
        """Send a raw message over the push channel (``False`` when not connected)."""
        return await self._connection.send_message(message)

    async def connect(self) -> None:
        """Manually (re)establish the push channel, re-arming reconnects."""
        self._require_started()
        await self._connection.connect()

    async def disconnect(self) -> None:
        """Close the push channel; polling takes over."""
        await self._connection.disconnect()

    async def apply_suggestions(
        self,
        suggestion_ids: Sequence[int | str],
        *,
        update_id: str | None = None,
    ) -> SuggestionApplyResult | None:
        """Apply optimization suggestions with an optimistic removal.

        The chosen suggestions disappear from :attr:`data` immediately. On
        success the state is refreshed and the optimistic update confirmed;
        on failure it is rolled back, the error recorded and ``None``
        returned.
        """
        self._require_started()
        ids = [str(sid) for sid in suggestion_ids]
        if not ids:
            raise ValueError("suggestion_ids must not be empty")
        transport = self._require_transport()
        update_id = update_id or f"apply-suggestions-{uuid.uuid4().hex}"

        current = self._reconciler.current(self._topic)
        suggestions = current.data.get("suggestions") if current is not None else None
        if isinstance(suggestions, list):
            remaining = [
                item for item in suggestions if not (isinstance(item, dict) and str(item.get("id")) in ids)
            ]
            self.apply_optimistic_update(update_id, {"suggestions": remaining})

        try:
            response = await transport.apply_suggestions(ids)
            result = SuggestionApplyResult.model_validate(response)
        except FlowSyncTransportError as exc:
            self.remove_optimistic_update(update_id)
            self._record_error(exc)
            return None
        except ValidationError as exc:
            self.remove_optimistic_update(update_id)
            self._record_error(FlowSyncPayloadError(f"Malformed apply response: {exc}", kind="apply-suggestions"))
            return None

        if not result.success:
            self.remove_optimistic_update(update_id)
            self._record_error(
                FlowSyncError(f"Server refused to apply suggestions {ids}: {result.message or 'no reason given'}")
            )
            return result

        _logger.info("Applied %d suggestion(s): %s", len(result.applied_suggestions), ids)
        await self._fetch(SnapshotSource.MANUAL)
        self.remove_optimistic_update(update_id)
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_started(self) -> None:
        if not self._started:
            raise FlowSyncStateError("Engine not started. Use 'async with FlowSyncEngine(...) as engine:'")

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise FlowSyncStateError("Engine not started. Use 'async with FlowSyncEngine(...) as engine:'")
        return self._transport

    def _make_channel(self, on_message: MessageCallback, on_close: CloseCallback) -> PushChannel:
        if self._http_session is None:
            raise FlowSyncStateError("HTTP session not initialized")
        headers: dict[str, str] = {}
        if self._config.auth_token:
            headers["authorization"] = f"Bearer {self._config.auth_token}"
        return WebSocketChannel(
            http_session=self._http_session,
            url=self._config.push_url or "",
            on_message=on_message,
            on_close=on_close,
            headers=headers,
            handshake_timeout=self._config.request_timeout,
            logger=_logger,
        )

    async def _load_initial(self) -> None:
        entry = self._cache.get(self._topic) if self._config.enable_caching else None
        if entry is not None:
            # Seed from cache without touching stored_at; stale seeds still revalidate.
            self._reconciler.reapply(self._topic)
            if self._cache.is_fresh(self._topic):
                _logger.debug("Initial state served from cache topic=%s", self._topic)
                return
        await self._fetch(SnapshotSource.POLL)

    async def _fetch(self, source: SnapshotSource) -> MergedState | None:
        transport = self._require_transport()
        self._loading += 1
        try:
            payload = await transport.fetch_snapshot(self._topic)
            snapshot = build_snapshot(
                topic=self._topic,
                payload=payload,
                source=source,
                received_at=self._clock(),
            )
            merged = self._reconciler.reconcile_snapshot(self._topic, snapshot)
        except (FlowSyncTransportError, FlowSyncPayloadError) as exc:
            self._record_error(exc)
            return None
        finally:
            self._loading -= 1
        self._error = None
        return merged

    def _revalidate_if_stale(self) -> None:
        if not self._started:
            return
        if self._config.enable_caching and self._cache.is_fresh(self._topic):
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._scheduler.request_refresh():
            _logger.debug("Stale read; background refresh scheduled topic=%s", self._topic)

    def _push_is_fresh(self, max_age_seconds: float) -> bool:
        if self._connection.state != ConnectionState.CONNECTED or self._last_push_update_at is None:
            return False
        return (self._clock() - self._last_push_update_at).total_seconds() < max_age_seconds

    async def _send_heartbeat(self) -> None:
        await self._connection.send_message(PingMessage().model_dump())

    def _record_error(self, exc: BaseException) -> None:
        self._error = exc
        _logger.warning("flowsync error: %s", exc)
        self._notify_error(exc)

    def _notify_error(self, exc: BaseException) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception:
            _logger.debug("on_error callback failed", exc_info=True)

    def _on_merged(self, merged: MergedState) -> None:
        if self._on_data_update is None:
            return
        try:
            self._on_data_update(copy.deepcopy(merged.data))
        except Exception:
            _logger.debug("on_data_update callback failed", exc_info=True)

    def _on_connection_state(self, _old: ConnectionState, new: ConnectionState) -> None:
        error = self._connection.last_error
        if new in (ConnectionState.DEGRADED, ConnectionState.RECONNECTING, ConnectionState.FAILED) and error:
            self._notify_error(error)

    # ------------------------------------------------------------------
    # Push dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, payload: dict[str, Any]) -> None:
        """Route a push frame through the message table (arrival order preserved)."""
        try:
            message = parse_push_message(payload)
            handler = self._message_handlers.get(message.type)
            if handler is None:
                _logger.debug("Ignoring push message type=%s", message.type)
                return
            handler(message)
        except FlowSyncPayloadError as exc:
            self._record_error(exc)

    def _handle_snapshot_message(self, message: PushMessage) -> None:
        now = self._clock()
        snapshot = build_snapshot(
            topic=self._topic,
            payload=message.data,
            source=SnapshotSource.PUSH,
            received_at=now,
            timestamp=message.timestamp,
        )
        self._reconciler.reconcile_snapshot(self._topic, snapshot)
        self._last_push_update_at = now
        self._error = None

    def _handle_event_message(self, kind: EventKind, message: PushMessage) -> None:
        now = self._clock()
        event = build_event(topic=self._topic, kind=kind, payload=message.data, received_at=now)
        if self._reconciler.reconcile_event(self._topic, event) is not None:
            self._last_push_update_at = now

    def _handle_pong(self, _message: PushMessage) -> None:
        _logger.debug("Heartbeat pong topic=%s", self._topic)
