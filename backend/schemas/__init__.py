from .kitchen import (
    GuideRequestResponse,
    HistoryEntryResponse,
    HistoryListResponse,
    KitchenResponse,
    RunBatchResponse,
    SlotResponse,
    UploadResponse,
)

__all__ = [
    "GuideRequestResponse",
    "HistoryEntryResponse",
    "HistoryListResponse",
    "KitchenResponse",
    "RunBatchResponse",
    "SlotResponse",
    "UploadResponse",
]
