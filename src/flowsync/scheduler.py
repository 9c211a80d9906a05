"""Refresh scheduler: the sole owner of every engine timer.

Timers are plain asyncio tasks keyed by name:

* ``polling``: while the connection is not ``connected``;
* ``auto-refresh``: always (unless disabled), skipped while push is fresh;
* ``heartbeat``: while ``connected``;
* one-shot timers (reconnect backoff, background revalidation).

``start()`` and ``stop()`` are idempotent and called once per engine
lifecycle; ``stop()`` cancels and awaits every task it ever created.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from flowsync.config import SyncConfig
from flowsync.connection import POLLING_STATES, ConnectionState
from flowsync.state.events import SnapshotSource

_logger = logging.getLogger(__name__)

POLLING_TIMER = "polling"
AUTO_REFRESH_TIMER = "auto-refresh"
HEARTBEAT_TIMER = "heartbeat"
BACKGROUND_REFRESH_TIMER = "background-refresh"

FetchCallback = Callable[[SnapshotSource], Awaitable[Any]]


class RefreshScheduler:
    def __init__(
        self,
        *,
        config: SyncConfig,
        fetch: FetchCallback,
        push_is_fresh: Callable[[float], bool],
        heartbeat: Callable[[], Awaitable[Any]] | None = None,
    ) -> None:
        self._config = config
        self._fetch = fetch
        self._push_is_fresh = push_is_fresh
        self._heartbeat = heartbeat
        self._connection_state = ConnectionState.DISCONNECTED
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._retired: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_polling(self) -> bool:
        return self._is_active(POLLING_TIMER)

    @property
    def active_timers(self) -> list[str]:
        return sorted(name for name in self._timers if self._is_active(name))

    def _is_active(self, name: str) -> bool:
        task = self._timers.get(name)
        return task is not None and not task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        _logger.debug("Scheduler started state=%s", self._connection_state)
        if self._config.enable_auto_refresh:
            self._start_periodic(AUTO_REFRESH_TIMER, self._config.auto_refresh_interval, self._auto_refresh_tick)
        self._sync_transport_timers()

    async def stop(self) -> None:
        if not self._running and not self._timers and not self._retired:
            return
        self._running = False
        tasks = [*self._timers.values(), *self._retired]
        self._timers.clear()
        self._retired.clear()
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is current:
                continue
            with contextlib.suppress(asyncio.CancelledError):
                await task
        _logger.debug("Scheduler stopped (%d timer(s) torn down)", len(tasks))

    # ------------------------------------------------------------------
    # Connection coupling
    # ------------------------------------------------------------------

    def on_connection_state(self, _old: ConnectionState, new: ConnectionState) -> None:
        """Connection listener: start or stop the transport-dependent timers."""
        self._connection_state = new
        if self._running:
            self._sync_transport_timers()

    def _sync_transport_timers(self) -> None:
        polling_wanted = self._connection_state in POLLING_STATES
        if polling_wanted and not self._is_active(POLLING_TIMER):
            _logger.debug("Polling activated state=%s", self._connection_state)
            self._start_periodic(POLLING_TIMER, self._config.polling_interval, self._poll_tick)
        elif not polling_wanted:
            self.cancel(POLLING_TIMER)

        heartbeat_wanted = (
            self._connection_state == ConnectionState.CONNECTED
            and self._heartbeat is not None
            and self._config.heartbeat_interval > 0
        )
        if heartbeat_wanted and not self._is_active(HEARTBEAT_TIMER):
            self._start_periodic(HEARTBEAT_TIMER, self._config.heartbeat_interval, self._heartbeat_tick)
        elif not heartbeat_wanted:
            self.cancel(HEARTBEAT_TIMER)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def schedule_once(self, name: str, delay: float, callback: Callable[[], Awaitable[Any]]) -> bool:
        """Run *callback* once after *delay*, replacing any timer called *name*.

        Ignored (returns ``False``) while the scheduler is stopped, so no
        timer can outlive the engine.
        """
        if not self._running:
            _logger.debug("Scheduler stopped; not scheduling %s", name)
            return False
        self.cancel(name)
        self._timers[name] = asyncio.get_running_loop().create_task(self._run_once(name, delay, callback))
        return True

    def cancel(self, name: str) -> None:
        task = self._timers.pop(name, None)
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
            self._retired.add(task)
            task.add_done_callback(self._retired.discard)

    def request_refresh(self) -> bool:
        """Start one background fetch unless one is already in flight."""
        if self._is_active(BACKGROUND_REFRESH_TIMER):
            return False
        return self.schedule_once(BACKGROUND_REFRESH_TIMER, 0, self._background_refresh)

    def _start_periodic(self, name: str, interval: float, callback: Callable[[], Awaitable[Any]]) -> None:
        self.cancel(name)
        self._timers[name] = asyncio.get_running_loop().create_task(self._run_periodic(name, interval, callback))

    async def _run_periodic(self, name: str, interval: float, callback: Callable[[], Awaitable[Any]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.warning("Timer %s callback failed", name, exc_info=True)

    async def _run_once(self, name: str, delay: float, callback: Callable[[], Awaitable[Any]]) -> None:
        try:
            await asyncio.sleep(delay)
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Timer %s callback failed", name, exc_info=True)
        finally:
            # The callback may have replaced this timer with a new one of the same name.
            if self._timers.get(name) is asyncio.current_task():
                del self._timers[name]

    async def _poll_tick(self) -> None:
        _logger.debug("Polling tick state=%s", self._connection_state)
        await self._fetch(SnapshotSource.POLL)

    async def _auto_refresh_tick(self) -> None:
        if self._push_is_fresh(self._config.auto_refresh_interval):
            _logger.debug("Auto-refresh skipped: push delivered recently")
            return
        await self._fetch(SnapshotSource.POLL)

    async def _heartbeat_tick(self) -> None:
        if self._heartbeat is not None:
            await self._heartbeat()

    async def _background_refresh(self) -> None:
        await self._fetch(SnapshotSource.POLL)
