"""Change notifications emitted by the generation core for live clients."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from services.history_ledger import HistoryEntry
from services.slots import Slot

logger = logging.getLogger(__name__)


class SlotEventType(str, Enum):
    BATCH_STARTED = "batch_started"
    SLOT_UPDATED = "slot_updated"
    HISTORY_APPENDED = "history_appended"


@dataclass(frozen=True)
class SlotEvent:
    type: SlotEventType
    slots: tuple[Slot, ...] = ()
    entry: Optional[HistoryEntry] = None


Listener = Callable[[SlotEvent], Awaitable[None]]


async def notify(listener: Optional[Listener], event: SlotEvent) -> None:
    """Deliver an event; a failing listener is logged and never reaches the caller."""
    if listener is None:
        return
    try:
        await listener(event)
    except Exception:
        logger.exception("Slot event listener failed (event=%s)", event.type.value)


class EventPublisher:
    """
    Delivers events to a listener in background tasks.

    ``publish`` never suspends, so a slow client cannot hold up dispatch or
    settlement of generation tasks. Deliveries start in publish order.
    """

    def __init__(self, listener: Optional[Listener] = None):
        self.listener = listener
        self._pending: set[asyncio.Task] = set()

    def publish(self, event: SlotEvent) -> None:
        if self.listener is None:
            return
        task = asyncio.create_task(notify(self.listener, event), name=f"event-{event.type.value}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait until every delivery published so far has finished."""
        while self._pending:
            await asyncio.gather(*tuple(self._pending))
