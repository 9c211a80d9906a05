"""Optimistic update ledger.

Holds locally applied mutations until the caller confirms or rolls them
back. Entries never expire: a mutation that is never removed is a caller
bug, and it has to stay visible (see :meth:`OptimisticLedger.pending_ids`)
so it can be diagnosed.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from flowsync.state.events import utcnow

_logger = logging.getLogger(__name__)


class OptimisticEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    update_id: str
    patch: dict[str, Any] = Field(default_factory=dict)
    applied_at: datetime


class OptimisticLedger:
    """Insertion-ordered map of pending optimistic patches."""

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, OptimisticEntry] = {}

    def apply(self, update_id: str, patch: Mapping[str, Any]) -> OptimisticEntry:
        """Record *patch* under *update_id*.

        Re-applying an existing id replaces its patch in place; the entry
        keeps its original position and ``applied_at``.
        """
        if not isinstance(update_id, str) or not update_id.strip():
            raise ValueError("update_id must be a non-empty string")
        if not isinstance(patch, Mapping):
            raise ValueError(f"patch must be a mapping, got {type(patch).__name__}")

        existing = self._entries.get(update_id)
        entry = OptimisticEntry(
            update_id=update_id,
            patch=copy.deepcopy(dict(patch)),
            applied_at=existing.applied_at if existing is not None else self._clock(),
        )
        self._entries[update_id] = entry
        return entry

    def remove(self, update_id: str) -> bool:
        """Drop the entry for *update_id*; returns whether one existed."""
        entry = self._entries.pop(update_id, None)
        if entry is None:
            _logger.debug("Optimistic update %s was not pending", update_id)
            return False
        return True

    def get(self, update_id: str) -> OptimisticEntry | None:
        return self._entries.get(update_id)

    def pending_patches(self) -> list[dict[str, Any]]:
        """Patches oldest-first, as copies."""
        return [copy.deepcopy(entry.patch) for entry in self._entries.values()]

    def pending_ids(self) -> list[str]:
        return list(self._entries)

    def entries(self) -> list[OptimisticEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, update_id: object) -> bool:
        return update_id in self._entries
