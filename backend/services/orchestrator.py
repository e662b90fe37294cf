"""
Batch generation orchestrator.

One batch = one slot per position in both variant groups, all generated from
the same uploaded dish photo:

1. Fresh idle slots (new ids) are installed into both stores, then every slot
   is marked loading.
2. One task per slot is dispatched; all tasks of both groups run concurrently.
3. Each task settles into a tagged outcome that a single dispatcher applies to
   its own slot, after checking that the slot still belongs to the live batch.
4. Once every task has settled (join-all, partial failure is fine) the
   terminal slots captured by the tasks themselves become a HistoryEntry.

Only one batch may be in flight per orchestrator; further calls are rejected
while it runs. Failures of individual tasks never escape ``run_batch``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from config import Settings, get_settings
from services.error_sanitizer import sanitize_public_error_message
from services.events import EventPublisher, Listener, SlotEvent, SlotEventType
from services.gemini_backend import GenerationBackend
from services.history_ledger import HistoryEntry, HistoryLedger
from services.image_validation import EncodedInput
from services.slot_store import SlotGroupStore
from services.slots import (
    Failed,
    Loading,
    Slot,
    Succeeded,
    Variant,
    VariantProfile,
    create_slots,
    new_batch_id,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_WIDTH = 3


def default_profiles(settings: Optional[Settings] = None) -> dict[Variant, VariantProfile]:
    settings = settings or get_settings()
    return {
        Variant.FAST: VariantProfile(
            variant=Variant.FAST,
            label="Nano Banana",
            backend_name=settings.FAST_IMAGE_MODEL,
            description="Fast reimagining",
        ),
        Variant.PRO: VariantProfile(
            variant=Variant.PRO,
            label="Nano Banana Pro",
            backend_name=settings.PRO_IMAGE_MODEL,
            description="High-fidelity plating",
        ),
    }


@dataclass(frozen=True)
class TaskHandle:
    """Identifies the slot a generation task writes to."""

    batch_id: str
    variant: Variant
    index: int
    slot_id: str


@dataclass(frozen=True)
class TaskSucceeded:
    handle: TaskHandle
    image_ref: str


@dataclass(frozen=True)
class TaskFailed:
    handle: TaskHandle
    message: str


TaskOutcome = Union[TaskSucceeded, TaskFailed]


@dataclass(frozen=True)
class _Batch:
    batch_id: str
    input: EncodedInput
    # Loading slots in dispatch order, FAST group first.
    slots: tuple[tuple[TaskHandle, Slot], ...]


class GenerationOrchestrator:
    """
    Session-wide owner of the live slot stores, the history and the busy flag.

    Example:
        >>> orchestrator = GenerationOrchestrator(backend)
        >>> orchestrator.load_input(encode_input(photo_bytes, "image/jpeg"))
        >>> entry = await orchestrator.run_batch()
    """

    def __init__(
        self,
        backend: GenerationBackend,
        *,
        batch_width: int = DEFAULT_BATCH_WIDTH,
        profiles: Optional[dict[Variant, VariantProfile]] = None,
        history: Optional[HistoryLedger] = None,
        listener: Optional[Listener] = None,
    ):
        if batch_width < 1:
            raise ValueError(f"batch_width must be positive, got {batch_width}")
        self.backend = backend
        self.batch_width = batch_width
        self.profiles = profiles or default_profiles()
        self.history = history if history is not None else HistoryLedger()
        self.events = EventPublisher(listener)
        self.fast = SlotGroupStore(Variant.FAST)
        self.pro = SlotGroupStore(Variant.PRO)
        self._input: Optional[EncodedInput] = None
        self._batch_id = self._install_idle_batch()
        self._busy = False
        self._running: set[asyncio.Task] = set()

    @property
    def is_generating(self) -> bool:
        return self._busy

    @property
    def current_input(self) -> Optional[EncodedInput]:
        return self._input

    @property
    def batch_id(self) -> str:
        return self._batch_id

    @property
    def stores(self) -> tuple[SlotGroupStore, SlotGroupStore]:
        return self.fast, self.pro

    def store_for(self, variant: Variant) -> SlotGroupStore:
        return self.fast if variant == Variant.FAST else self.pro

    def find_slot(self, slot_id: str) -> Optional[Slot]:
        for store in self.stores:
            slot = store.find(slot_id)
            if slot is not None:
                return slot
        return None

    def load_input(self, encoded_input: EncodedInput) -> None:
        """Remember a new upload and reset both groups to fresh idle slots.

        Allowed while a batch is running: the running batch is superseded and
        its late settlements are discarded.
        """
        self._input = encoded_input
        self._batch_id = self._install_idle_batch()
        logger.info(
            "Input loaded (%s, %dx%d); slots reset for batch %s",
            encoded_input.mime_type,
            encoded_input.width,
            encoded_input.height,
            self._batch_id,
        )

    async def run_batch(self, encoded_input: Optional[EncodedInput] = None) -> Optional[HistoryEntry]:
        """
        Generate one full batch and record it in history.

        Returns the new HistoryEntry, or None if the call was rejected because
        a batch is already in flight or no input has been loaded.
        """
        batch = self._begin(encoded_input)
        if batch is None:
            return None
        return await self._settle(batch)

    def start_batch(self, encoded_input: Optional[EncodedInput] = None) -> Optional[asyncio.Task]:
        """Like ``run_batch`` but returns the running task right after dispatch.

        The guard and the slot reset happen before this returns, so a second
        call made immediately afterwards is already rejected.
        """
        batch = self._begin(encoded_input)
        if batch is None:
            return None
        task = asyncio.create_task(self._settle(batch), name=f"batch-{batch.batch_id}")
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        return task

    def _install_idle_batch(self) -> str:
        batch_id = new_batch_id()
        for variant in (Variant.FAST, Variant.PRO):
            self.store_for(variant).replace_all(
                create_slots(self.profiles[variant], self.batch_width, batch_id)
            )
        return batch_id

    def _begin(self, encoded_input: Optional[EncodedInput]) -> Optional[_Batch]:
        if self._busy:
            logger.info("Batch rejected: another batch is still in flight")
            return None
        if encoded_input is not None:
            self._input = encoded_input
        if self._input is None:
            logger.info("Batch rejected: no input loaded")
            return None

        self._busy = True
        batch_id = self._install_idle_batch()
        self._batch_id = batch_id

        slots: list[tuple[TaskHandle, Slot]] = []
        for variant in (Variant.FAST, Variant.PRO):
            store = self.store_for(variant)
            for index in range(len(store)):
                loading = store.update_at(index, primary=Loading())
                handle = TaskHandle(batch_id, variant, index, loading.id)
                slots.append((handle, loading))

        logger.info("Batch %s started: %d tasks", batch_id, len(slots))
        return _Batch(batch_id=batch_id, input=self._input, slots=tuple(slots))

    async def _settle(self, batch: _Batch) -> HistoryEntry:
        try:
            self.events.publish(
                SlotEvent(SlotEventType.BATCH_STARTED, slots=tuple(s for _, s in batch.slots))
            )
            settled = await asyncio.gather(
                *(self._run_task(batch, handle, slot) for handle, slot in batch.slots)
            )
            entry = HistoryEntry(
                input_image_ref=batch.input.preview_ref,
                fast_results=tuple(s for s in settled if s.variant == Variant.FAST),
                pro_results=tuple(s for s in settled if s.variant == Variant.PRO),
            )
            self.history.append(entry)
        finally:
            self._busy = False

        logger.info(
            "Batch %s settled: %d/%d succeeded, history entry %s",
            batch.batch_id,
            entry.success_count,
            len(settled),
            entry.id,
        )
        self.events.publish(SlotEvent(SlotEventType.HISTORY_APPENDED, entry=entry))
        return entry

    async def _run_task(self, batch: _Batch, handle: TaskHandle, slot: Slot) -> Slot:
        if handle.variant == Variant.FAST:
            generate = self.backend.generate_fast
        else:
            generate = self.backend.generate_pro

        outcome: TaskOutcome
        try:
            image_ref = await generate(batch.input.data, batch.input.mime_type)
            outcome = TaskSucceeded(handle, image_ref)
        except Exception as e:
            logger.warning("Slot %s failed: %s", handle.slot_id, e)
            message = sanitize_public_error_message(str(e)) or type(e).__name__
            outcome = TaskFailed(handle, message)

        self._apply(outcome)
        if isinstance(outcome, TaskSucceeded):
            return slot.evolve(primary=Succeeded(outcome.image_ref))
        return slot.evolve(primary=Failed(outcome.message))

    def _apply(self, outcome: TaskOutcome) -> None:
        """Write a settled outcome into its slot unless that slot was superseded."""
        handle = outcome.handle
        store = self.store_for(handle.variant)
        live_id = store.slot_at(handle.index).id if handle.index < len(store) else None
        if handle.batch_id != self._batch_id or live_id != handle.slot_id:
            logger.info(
                "Discarding stale result for slot %s (batch %s superseded)",
                handle.slot_id,
                handle.batch_id,
            )
            return

        if isinstance(outcome, TaskSucceeded):
            updated = store.update_at(handle.index, primary=Succeeded(outcome.image_ref))
        else:
            updated = store.update_at(handle.index, primary=Failed(outcome.message))
        self.events.publish(SlotEvent(SlotEventType.SLOT_UPDATED, slots=(updated,)))
