"""Connection manager: the push transport state machine.

Owns the push channel and decides at any instant whether push or polling
is the active transport. Failures never propagate to callers; they are
recorded in :attr:`ConnectionManager.last_error` and reflected in
:attr:`ConnectionManager.state`.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from flowsync._push import ChannelFactory, PushChannel
from flowsync.config import SyncConfig
from flowsync.exceptions import FlowSyncPushError
from flowsync.models.messages import SubscribeMessage

if TYPE_CHECKING:
    from flowsync.scheduler import RefreshScheduler

_logger = logging.getLogger(__name__)

RECONNECT_TIMER = "reconnect"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


#: States in which polling is the active transport.
POLLING_STATES: frozenset[ConnectionState] = frozenset(
    {
        ConnectionState.DEGRADED,
        ConnectionState.RECONNECTING,
        ConnectionState.FAILED,
        ConnectionState.DISCONNECTED,
    }
)

StateListener = Callable[[ConnectionState, ConnectionState], None]


class ConnectionManager:
    """Push channel lifecycle with a bounded reconnect policy.

    * ``connect()``: ``connecting`` then ``connected``, or ``degraded`` when
      the handshake fails or push is unavailable.
    * Unexpected closure: ``reconnecting``, retried every
      ``config.reconnect_interval`` seconds.
    * ``config.reconnect_attempts`` consecutive failed handshakes: ``failed``.
      Nothing is retried automatically after that; a manual ``connect()``
      resets the counter.
    """

    def __init__(
        self,
        *,
        config: SyncConfig,
        scheduler: RefreshScheduler,
        on_message: Callable[[dict[str, Any]], None],
        channel_factory: ChannelFactory | None = None,
    ) -> None:
        self._config = config
        self._scheduler = scheduler
        self._on_message = on_message
        self._channel_factory = channel_factory
        self._state = ConnectionState.DISCONNECTED
        self._listeners: list[StateListener] = []
        self._channel: PushChannel | None = None
        self._generation = 0
        self._subscribed = False
        self._attempts = 0
        self._last_error: BaseException | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    @property
    def attempts(self) -> int:
        """Consecutive failed handshakes since the last success or manual connect."""
        return self._attempts

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Establish the push channel (manual entry point, re-arms retries)."""
        self._attempts = 0
        self._scheduler.cancel(RECONNECT_TIMER)
        if self._state == ConnectionState.CONNECTED:
            return
        if not self._config.push_available or self._channel_factory is None:
            _logger.info("Push channel unavailable; polling only")
            self._set_state(ConnectionState.DEGRADED)
            return

        self._set_state(ConnectionState.CONNECTING)
        await self._handshake(retrying=False)

    async def disconnect(self) -> None:
        """Close the channel and stop reconnecting."""
        self._scheduler.cancel(RECONNECT_TIMER)
        await self._drop_channel()
        self._set_state(ConnectionState.DISCONNECTED)

    async def send_message(self, message: Mapping[str, Any]) -> bool:
        """Send *message* over the push channel; ``False`` if not connected."""
        channel = self._channel
        if self._state != ConnectionState.CONNECTED or channel is None:
            return False
        try:
            await channel.send_json(message)
        except FlowSyncPushError as exc:
            _logger.debug("Push send failed", exc_info=True)
            self._last_error = exc
            return False
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        if old == new:
            return
        self._state = new
        _logger.info("Connection state %s -> %s", old.value, new.value)
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                _logger.warning("Connection state listener failed", exc_info=True)

    async def _handshake(self, *, retrying: bool) -> None:
        assert self._channel_factory is not None  # noqa: S101
        await self._drop_channel()

        self._generation += 1
        generation = self._generation
        channel = self._channel_factory(
            functools.partial(self._on_channel_message, generation),
            functools.partial(self._on_channel_closed, generation),
        )
        self._channel = channel
        try:
            await channel.open()
            subscribe = SubscribeMessage(channel=self._config.topic)
            await channel.send_json(subscribe.model_dump())
        except FlowSyncPushError as exc:
            if generation != self._generation:
                _logger.debug("Push handshake abandoned: channel was dropped meanwhile")
                return
            self._attempts += 1
            self._last_error = exc
            _logger.warning(
                "Push handshake failed (attempt %d/%d): %s",
                self._attempts,
                self._config.reconnect_attempts,
                exc,
            )
            await self._drop_channel()
            self._handle_failure(retrying=retrying)
            return

        if generation != self._generation:
            # disconnect() or a newer handshake ran while this one was suspended.
            _logger.debug("Push handshake superseded; closing its channel")
            await self._close_channel(channel)
            return

        self._subscribed = True
        self._attempts = 0
        self._last_error = None
        self._set_state(ConnectionState.CONNECTED)

    def _handle_failure(self, *, retrying: bool) -> None:
        if self._attempts >= self._config.reconnect_attempts:
            _logger.warning(
                "Push channel gave up after %d attempts; polling for the rest of the session",
                self._attempts,
            )
            self._set_state(ConnectionState.FAILED)
            return
        self._set_state(ConnectionState.RECONNECTING if retrying else ConnectionState.DEGRADED)
        self._scheduler.schedule_once(RECONNECT_TIMER, self._config.reconnect_interval, self._reconnect)

    async def _reconnect(self) -> None:
        if self._state not in (ConnectionState.DEGRADED, ConnectionState.RECONNECTING):
            return
        self._set_state(ConnectionState.RECONNECTING)
        await self._handshake(retrying=True)

    async def _drop_channel(self) -> None:
        channel = self._channel
        self._channel = None
        self._subscribed = False
        # Invalidate callbacks of the old channel.
        self._generation += 1
        if channel is not None:
            await self._close_channel(channel)

    async def _close_channel(self, channel: PushChannel) -> None:
        try:
            await channel.close()
        except Exception:
            _logger.debug("Push channel close failed", exc_info=True)

    def _on_channel_message(self, generation: int, payload: dict[str, Any]) -> None:
        if generation != self._generation or not self._subscribed:
            _logger.debug("Dropping push message received before subscription")
            return
        channel = payload.get("channel")
        if channel is not None and channel != self._config.topic:
            _logger.debug("Dropping push message for channel=%s", channel)
            return
        self._on_message(payload)

    def _on_channel_closed(self, generation: int, error: BaseException | None) -> None:
        if generation != self._generation:
            return
        self._channel = None
        self._subscribed = False
        self._generation += 1
        if isinstance(error, FlowSyncPushError):
            self._last_error = error
        else:
            self._last_error = FlowSyncPushError(
                f"Push channel closed unexpectedly: {error}" if error else "Push channel closed unexpectedly",
                endpoint=self._config.push_url or "",
            )
        if self._state != ConnectionState.CONNECTED:
            return
        self._attempts = 0
        self._set_state(ConnectionState.RECONNECTING)
        self._scheduler.schedule_once(RECONNECT_TIMER, self._config.reconnect_interval, self._reconnect)
