"""Live, position-addressed store of the slots of one variant group."""

from __future__ import annotations

import logging
from typing import Iterator, Optional, Sequence

from services.slots import GuideState, PrimaryState, Slot, Variant

logger = logging.getLogger(__name__)


class SlotGroupStore:
    """
    Ordered, fixed-length sequence of slots for one variant.

    All operations are synchronous and never suspend, so with a single event
    loop an ``update_at`` on one index cannot interleave with an update on
    another. Each position is written only by the task that owns it.
    """

    def __init__(self, variant: Variant, slots: Sequence[Slot] = ()):
        self.variant = variant
        self._slots: list[Slot] = []
        if slots:
            self.replace_all(slots)

    def replace_all(self, slots: Sequence[Slot]) -> None:
        """Swap in a whole new batch of slots."""
        for slot in slots:
            if slot.variant != self.variant:
                raise ValueError(
                    f"Slot {slot.id} has variant {slot.variant.value}, "
                    f"store holds {self.variant.value}"
                )
        self._slots = list(slots)

    def update_at(
        self,
        index: int,
        *,
        primary: Optional[PrimaryState] = None,
        guide: Optional[GuideState] = None,
    ) -> Slot:
        """Merge new state into the slot at ``index`` and return the result."""
        updated = self._slots[index].evolve(primary=primary, guide=guide)
        self._slots[index] = updated
        return updated

    def slot_at(self, index: int) -> Slot:
        return self._slots[index]

    def index_of(self, slot_id: str) -> Optional[int]:
        for index, slot in enumerate(self._slots):
            if slot.id == slot_id:
                return index
        return None

    def find(self, slot_id: str) -> Optional[Slot]:
        index = self.index_of(slot_id)
        return None if index is None else self._slots[index]

    def snapshot(self) -> tuple[Slot, ...]:
        return tuple(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[Slot]:
        return iter(tuple(self._slots))
