"""
Step-by-step plating guide for a generated dish.

A guide is requested per slot, at any time after the slot's primary image
succeeded, and runs independently of batches. At most one guide task per slot
is outstanding: the slot's own ``GuideLoading`` state is the guard, and it is
set before the first suspension point so duplicate triggers see it.
"""

import asyncio
import logging
from typing import Optional, Sequence

from services.error_sanitizer import sanitize_public_error_message
from services.events import EventPublisher, Listener, SlotEvent, SlotEventType
from services.gemini_backend import GenerationBackend
from services.slot_store import SlotGroupStore
from services.slots import (
    GuideFailed,
    GuideLoading,
    GuideReady,
    GuideState,
    Slot,
    SlotStatus,
)

logger = logging.getLogger(__name__)


class GuideWorkflow:
    def __init__(
        self,
        backend: GenerationBackend,
        stores: Sequence[SlotGroupStore],
        *,
        listener: Optional[Listener] = None,
    ):
        self.backend = backend
        self.stores = tuple(stores)
        self.events = EventPublisher(listener)
        self._running: set[asyncio.Task] = set()

    def _locate(self, slot_id: str) -> Optional[tuple[SlotGroupStore, int]]:
        for store in self.stores:
            index = store.index_of(slot_id)
            if index is not None:
                return store, index
        return None

    def rejection_reason(self, slot_id: str) -> Optional[str]:
        """Return why a guide cannot be requested for ``slot_id``, or None."""
        located = self._locate(slot_id)
        if located is None:
            return "not_found"
        store, index = located
        slot = store.slot_at(index)
        if slot.status != SlotStatus.SUCCESS:
            return "not_ready"
        if isinstance(slot.guide, GuideLoading):
            return "in_progress"
        if isinstance(slot.guide, GuideReady):
            return "already_generated"
        return None

    async def request_guide(self, slot_id: str) -> bool:
        """
        Generate the guide for one slot.

        Returns False without doing anything when the slot is unknown, has no
        successful image, already has a guide, or a guide is being generated.
        """
        primary_ref = self._begin(slot_id)
        if primary_ref is None:
            return False
        await self._run(slot_id, primary_ref)
        return True

    def start(self, slot_id: str) -> Optional[asyncio.Task]:
        """Mark the slot loading now and run the guide in a background task."""
        primary_ref = self._begin(slot_id)
        if primary_ref is None:
            return None
        task = asyncio.create_task(self._run(slot_id, primary_ref), name=f"guide-{slot_id}")
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        return task

    def _begin(self, slot_id: str) -> Optional[str]:
        reason = self.rejection_reason(slot_id)
        if reason is not None:
            logger.debug("Guide request for %s ignored: %s", slot_id, reason)
            return None
        store, index = self._locate(slot_id)
        slot = store.update_at(index, guide=GuideLoading())
        self._publish(slot)
        logger.info("Guide started for slot %s", slot_id)
        return slot.primary_result

    async def _run(self, slot_id: str, primary_ref: str) -> None:
        state: GuideState
        try:
            guide_ref = await self.backend.generate_guide(primary_ref)
            state = GuideReady(guide_ref)
        except Exception as e:
            logger.warning("Guide for slot %s failed: %s", slot_id, e)
            state = GuideFailed(sanitize_public_error_message(str(e)) or type(e).__name__)

        located = self._locate(slot_id)
        if located is None:
            logger.info("Discarding guide for slot %s: slot was replaced", slot_id)
            return
        store, index = located
        updated = store.update_at(index, guide=state)
        self._publish(updated)

    def _publish(self, slot: Slot) -> None:
        self.events.publish(SlotEvent(SlotEventType.SLOT_UPDATED, slots=(slot,)))
