import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from api.dependencies import get_guide_workflow, get_orchestrator
from config import get_settings
from schemas.kitchen import (
    GuideRequestResponse,
    KitchenResponse,
    RunBatchResponse,
    SlotResponse,
    UploadResponse,
)
from services.guide_workflow import GuideWorkflow
from services.image_validation import encode_input
from services.orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/kitchen", tags=["kitchen"])

_GUIDE_REJECTIONS = {
    "not_ready": "Guide is only available for a successfully generated dish",
    "in_progress": "Guide is already being generated for this slot",
    "already_generated": "Guide already exists for this slot",
}


def _kitchen_state(orchestrator: GenerationOrchestrator) -> KitchenResponse:
    return KitchenResponse(
        batch_id=orchestrator.batch_id,
        is_generating=orchestrator.is_generating,
        has_input=orchestrator.current_input is not None,
        fast=[SlotResponse.from_slot(s) for s in orchestrator.fast],
        pro=[SlotResponse.from_slot(s) for s in orchestrator.pro],
    )


@router.post("/upload", response_model=UploadResponse)
async def upload_dish(
    file: UploadFile = File(...),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Upload the dish photo that the next batch reinterprets.

    Resets both slot groups to fresh idle slots.
    """
    settings = get_settings()
    content = await file.read(settings.max_upload_size_bytes + 1)
    encoded = encode_input(
        content,
        file.content_type,
        max_size_bytes=settings.max_upload_size_bytes,
    )
    orchestrator.load_input(encoded)
    return UploadResponse(
        mime_type=encoded.mime_type,
        width=encoded.width,
        height=encoded.height,
        batch_id=orchestrator.batch_id,
    )


@router.post(
    "/run",
    response_model=RunBatchResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def run_batch(orchestrator: GenerationOrchestrator = Depends(get_orchestrator)):
    """Start a batch for the uploaded photo; results arrive via /slots or the WebSocket."""
    if orchestrator.current_input is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Upload a photo of your dish first",
        )
    task = orchestrator.start_batch()
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A batch is already being generated",
        )
    return RunBatchResponse(
        batch_id=orchestrator.batch_id,
        slot_count=len(orchestrator.fast) + len(orchestrator.pro),
    )


@router.get("/slots", response_model=KitchenResponse)
async def get_slots(orchestrator: GenerationOrchestrator = Depends(get_orchestrator)):
    return _kitchen_state(orchestrator)


@router.post(
    "/slots/{slot_id}/guide",
    response_model=GuideRequestResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_guide(
    slot_id: str,
    workflow: GuideWorkflow = Depends(get_guide_workflow),
):
    """Generate the step-by-step plating guide for one successful slot."""
    reason = workflow.rejection_reason(slot_id)
    if reason == "not_found":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Slot not found in the current batch",
        )
    if reason is not None or workflow.start(slot_id) is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=_GUIDE_REJECTIONS.get(reason or "in_progress"),
        )
    return GuideRequestResponse(slot_id=slot_id, guide_status="loading")
