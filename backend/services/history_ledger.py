"""Append-only, most-recent-first record of settled batches."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from services.slots import Slot


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HistoryEntry:
    """Snapshot of one fully settled batch.

    Slots are frozen values, so the tuples below can never change even while
    the live store keeps evolving the same slot ids (guide runs, new batches).
    """

    input_image_ref: str
    fast_results: tuple[Slot, ...]
    pro_results: tuple[Slot, ...]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def results(self) -> tuple[Slot, ...]:
        return self.fast_results + self.pro_results

    @property
    def success_count(self) -> int:
        return sum(1 for slot in self.results if slot.primary_result is not None)


class HistoryLedger:
    def __init__(self) -> None:
        self._entries: list[HistoryEntry] = []

    def append(self, entry: HistoryEntry) -> None:
        self._entries.insert(0, entry)

    def all(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def latest(self) -> Optional[HistoryEntry]:
        return self._entries[0] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)
