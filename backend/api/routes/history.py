from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.dependencies import get_orchestrator
from schemas.kitchen import HistoryEntryResponse, HistoryListResponse
from services.orchestrator import GenerationOrchestrator

router = APIRouter(prefix="/history", tags=["history"])


@router.get("", response_model=HistoryListResponse)
async def list_history(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Settled batches, most recent first."""
    entries = orchestrator.history.all()
    return HistoryListResponse(
        items=[HistoryEntryResponse.from_entry(e) for e in entries[skip : skip + limit]],
        total=len(entries),
    )


@router.get("/{entry_id}", response_model=HistoryEntryResponse)
async def get_history_entry(
    entry_id: str,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    entry = orchestrator.history.get(entry_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="History entry not found",
        )
    return HistoryEntryResponse.from_entry(entry)
