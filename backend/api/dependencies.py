"""
Session-wide generation objects shared by all routes.

The orchestrator owns the live slot stores and the history for the lifetime of
the process; the guide workflow works on the same stores. Both push changes to
the WebSocket connection manager.
"""

from functools import lru_cache

from config import get_settings
from services.gemini_backend import GeminiImageBackend, GenerationBackend
from services.guide_workflow import GuideWorkflow
from services.orchestrator import GenerationOrchestrator, default_profiles
from services.websocket_manager import get_connection_manager


@lru_cache()
def get_backend() -> GenerationBackend:
    return GeminiImageBackend.from_settings(get_settings())


@lru_cache()
def get_orchestrator() -> GenerationOrchestrator:
    settings = get_settings()
    return GenerationOrchestrator(
        get_backend(),
        batch_width=settings.BATCH_WIDTH,
        profiles=default_profiles(settings),
        listener=get_connection_manager().broadcast_event,
    )


@lru_cache()
def get_guide_workflow() -> GuideWorkflow:
    orchestrator = get_orchestrator()
    return GuideWorkflow(
        orchestrator.backend,
        orchestrator.stores,
        listener=get_connection_manager().broadcast_event,
    )
