from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from services.history_ledger import HistoryEntry
from services.slots import GuideStatus, Slot, SlotStatus, Variant


class SlotResponse(BaseModel):
    """One generation slot as shown to clients."""

    id: str
    variant: Variant
    status: SlotStatus
    label: str
    backend_name: str
    description: str
    image_url: Optional[str] = None
    error: Optional[str] = None
    guide_status: GuideStatus = GuideStatus.ABSENT
    guide_url: Optional[str] = None
    guide_error: Optional[str] = None

    @classmethod
    def from_slot(cls, slot: Slot) -> "SlotResponse":
        return cls(
            id=slot.id,
            variant=slot.variant,
            status=slot.status,
            label=slot.label,
            backend_name=slot.backend_name,
            description=slot.description,
            image_url=slot.primary_result,
            error=slot.primary_error,
            guide_status=slot.guide_status,
            guide_url=slot.guide_result,
            guide_error=slot.guide_error,
        )


class KitchenResponse(BaseModel):
    """Live state of both slot groups."""

    batch_id: str
    is_generating: bool
    has_input: bool
    fast: List[SlotResponse]
    pro: List[SlotResponse]


class UploadResponse(BaseModel):
    mime_type: str
    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)
    batch_id: str


class RunBatchResponse(BaseModel):
    batch_id: str
    status: str = "generating"
    slot_count: int = Field(..., ge=0)


class GuideRequestResponse(BaseModel):
    slot_id: str
    guide_status: GuideStatus


class HistoryEntryResponse(BaseModel):
    """Immutable record of one settled batch."""

    id: str
    created_at: datetime
    input_image_url: str
    fast_results: List[SlotResponse]
    pro_results: List[SlotResponse]

    @classmethod
    def from_entry(cls, entry: HistoryEntry) -> "HistoryEntryResponse":
        return cls(
            id=entry.id,
            created_at=entry.created_at,
            input_image_url=entry.input_image_ref,
            fast_results=[SlotResponse.from_slot(s) for s in entry.fast_results],
            pro_results=[SlotResponse.from_slot(s) for s in entry.pro_results],
        )


class HistoryListResponse(BaseModel):
    items: List[HistoryEntryResponse]
    total: int = Field(..., ge=0, description="Number of recorded batches")
