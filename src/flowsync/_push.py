"""Internal push channel runtime (WebSocket over aiohttp)."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import aiohttp

from flowsync._redact import redact_for_log
from flowsync.exceptions import FlowSyncPushError

MessageCallback = Callable[[dict[str, Any]], None]
CloseCallback = Callable[[BaseException | None], None]


class PushChannel(Protocol):
    """Structural interface of a push channel.

    ``on_message`` is called once per decoded JSON object in arrival order;
    ``on_close`` is called at most once, only when the channel ends without
    :meth:`close` having been requested.
    """

    @property
    def is_open(self) -> bool:
        ...

    async def open(self) -> None:
        ...

    async def send_json(self, message: Mapping[str, Any]) -> None:
        ...

    async def close(self) -> None:
        ...


ChannelFactory = Callable[[MessageCallback, CloseCallback], PushChannel]


class WebSocketChannel:
    """aiohttp WebSocket client that feeds decoded frames to a callback.

    Runs a single reader task on the engine's event loop, so callbacks are
    serialized with timers and manual calls.
    """

    def __init__(
        self,
        *,
        http_session: aiohttp.ClientSession,
        url: str,
        on_message: MessageCallback,
        on_close: CloseCallback,
        headers: Mapping[str, str] | None = None,
        handshake_timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._http = http_session
        self._url = url
        self._on_message = on_message
        self._on_close = on_close
        self._headers = dict(headers or {})
        self._handshake_timeout = handshake_timeout
        self._logger = logger or logging.getLogger(__name__)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def open(self) -> None:
        """Perform the WebSocket handshake and start the reader task."""
        self._logger.debug("Push channel connecting url=%s", self._url)
        try:
            ws = await asyncio.wait_for(
                self._http.ws_connect(self._url, headers=self._headers),
                self._handshake_timeout,
            )
        except TimeoutError as exc:
            raise FlowSyncPushError(
                f"Push handshake timed out after {self._handshake_timeout}s",
                endpoint=self._url,
            ) from exc
        except aiohttp.WSServerHandshakeError as exc:
            raise FlowSyncPushError(
                f"Push handshake rejected: HTTP {exc.status}",
                status_code=exc.status,
                endpoint=self._url,
            ) from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise FlowSyncPushError(f"Push handshake failed: {exc}", endpoint=self._url) from exc

        self._ws = ws
        self._closing = False
        self._reader = asyncio.get_running_loop().create_task(self._read_loop(ws))
        self._logger.debug("Push channel open url=%s", self._url)

    async def send_json(self, message: Mapping[str, Any]) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise FlowSyncPushError("Push channel is not open", endpoint=self._url)
        self._logger.debug("Push send %s", redact_for_log(message))
        try:
            await ws.send_str(json.dumps(dict(message), separators=(",", ":")))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            raise FlowSyncPushError(f"Push send failed: {exc}", endpoint=self._url) from exc

    async def close(self) -> None:
        """Close the socket; ``on_close`` is not invoked for requested closes."""
        self._closing = True
        ws = self._ws
        reader = self._reader
        self._ws = None
        self._reader = None
        try:
            if ws is not None and not ws.closed:
                await ws.close()
        finally:
            if reader is not None and reader is not asyncio.current_task():
                reader.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reader
        self._logger.debug("Push channel closed url=%s", self._url)

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        error: BaseException | None = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._deliver(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._deliver(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception()
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - any reader failure ends the channel
            error = exc

        if self._closing:
            return
        self._logger.debug("Push channel ended close_code=%s error=%s", ws.close_code, error)
        self._on_close(error)

    def _deliver(self, text: str) -> None:
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            self._logger.debug("Push frame is not JSON: %s", redact_for_log(text))
            return
        if not isinstance(parsed, dict):
            self._logger.debug("Push frame is not an object: %s", redact_for_log(parsed))
            return
        try:
            self._on_message(parsed)
        except Exception:
            self._logger.warning("Push message handler failed", exc_info=True)
