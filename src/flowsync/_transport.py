"""HTTP transport for polling fetches and mutations."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from flowsync._constants import USER_AGENT
from flowsync._redact import redact_for_log
from flowsync.config import SyncConfig
from flowsync.exceptions import FlowSyncTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the engine.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`HttpTransport`) concrete.
    """

    async def fetch_snapshot(self, topic: str) -> dict[str, Any]:
        ...

    async def apply_suggestions(self, suggestion_ids: list[str]) -> dict[str, Any]:
        ...


class HttpTransport:
    """Plain JSON-over-HTTP transport for the flow-optimization API."""

    def __init__(self, config: SyncConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if self._config.auth_token:
            headers["authorization"] = f"Bearer {self._config.auth_token}"
        return headers

    async def fetch_snapshot(self, topic: str) -> dict[str, Any]:
        """GET the current snapshot for *topic*.

        The same request is used by the polling timer, the auto-refresh
        timer, stale-read revalidation and manual refreshes.
        """
        _logger.debug("Fetching snapshot topic=%s", topic)
        return await self._request("GET", self._config.snapshot_path)

    async def apply_suggestions(self, suggestion_ids: list[str]) -> dict[str, Any]:
        """POST the ids of suggestions the user chose to apply."""
        return await self._request(
            "POST",
            self._config.apply_suggestions_path,
            payload={"suggestionIds": [str(sid) for sid in suggestion_ids]},
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        _logger.debug("%s %s body=%s", method, url, redact_for_log(payload))

        try:
            async with self._http.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise FlowSyncTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except FlowSyncTransportError:
            raise
        except TimeoutError as exc:
            raise FlowSyncTransportError(
                f"Request to {endpoint} timed out after {self._config.request_timeout}s",
                endpoint=endpoint,
            ) from exc
        except aiohttp.ClientError as exc:
            raise FlowSyncTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise FlowSyncTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

        if not isinstance(body, dict):
            raise FlowSyncTransportError(
                f"Expected a JSON object from {endpoint}, got {type(body).__name__}",
                endpoint=endpoint,
            )

        _logger.debug("Response %s %s: %s", method, endpoint, redact_for_log(body))
        return body
