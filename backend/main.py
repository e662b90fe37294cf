import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from api.dependencies import get_orchestrator
from api.routes import history, kitchen, websocket
from config import AppMode, get_settings
from services.gemini_backend import GeminiImageBackend
from services.orchestrator import GenerationOrchestrator

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Silence noisy SDK loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("google_genai").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown."""
    logger.info(f"Starting Plating Studio in {settings.APP_MODE.value} mode...")

    orchestrator = get_orchestrator()
    logger.info(
        "Generation session ready: batch width %d, models fast=%s pro=%s",
        orchestrator.batch_width,
        settings.FAST_IMAGE_MODEL,
        settings.PRO_IMAGE_MODEL,
    )
    if not GeminiImageBackend.is_available(settings):
        logger.warning("No GOOGLE_API_KEY configured. Set it in .env")

    yield

    logger.info("Shutting down Plating Studio...")


app = FastAPI(
    title="Plating Studio",
    description="AI culinary reimagining: fast and pro plating variations of a dish photo",
    version="1.0.0",
    lifespan=lifespan,
    debug=(settings.APP_MODE == AppMode.DEV),
)

MAX_ERROR_STRING_CHARS = 400
MAX_ERROR_CONTAINER_ITEMS = 50
MAX_ERROR_DEPTH = 8


def _truncate_string(value: str, max_chars: int = MAX_ERROR_STRING_CHARS) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}…(truncated)"


def _sanitize_for_json(value: Any, *, _depth: int = 0) -> Any:
    """
    Make sure validation error payloads are always UTF-8 encodable and small.

    RequestValidationError details echo user input back, which may contain
    unpaired surrogates or megabytes of data (e.g. a data URL in a form field).
    """
    if _depth > MAX_ERROR_DEPTH:
        return "<max depth reached>"
    if value is None or isinstance(value, (int, float, bool)):
        return value
    if isinstance(value, str):
        safe = value.encode("utf-8", errors="replace").decode("utf-8", errors="replace")
        return _truncate_string(safe)
    if isinstance(value, bytes):
        return _truncate_string(value.decode("utf-8", errors="replace"))
    if isinstance(value, (list, tuple, set)):
        items = list(value)
        out = [_sanitize_for_json(v, _depth=_depth + 1) for v in items[:MAX_ERROR_CONTAINER_ITEMS]]
        if len(items) > MAX_ERROR_CONTAINER_ITEMS:
            out.append(f"... ({len(items) - MAX_ERROR_CONTAINER_ITEMS} more items truncated)")
        return out
    if isinstance(value, dict):
        pairs = list(value.items())
        result: dict[str, Any] = {}
        for k, v in pairs[:MAX_ERROR_CONTAINER_ITEMS]:
            result[str(_sanitize_for_json(k, _depth=_depth + 1))] = _sanitize_for_json(
                v, _depth=_depth + 1
            )
        if len(pairs) > MAX_ERROR_CONTAINER_ITEMS:
            result["__truncated__"] = f"{len(pairs) - MAX_ERROR_CONTAINER_ITEMS} more keys truncated"
        return result
    return _sanitize_for_json(str(value), _depth=_depth + 1)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": _sanitize_for_json(exc.errors())},
    )


# Request logging (development only)
if settings.APP_MODE == AppMode.DEV:
    from middleware.logging import RequestLoggingMiddleware, configure_request_logging

    configure_request_logging(settings.LOG_LEVEL)
    app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - must be last (first to process incoming requests)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API Routes - versioned under /api/v1/
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(kitchen.router)
api_v1_router.include_router(history.router)
api_v1_router.include_router(websocket.router)
app.include_router(api_v1_router)


@app.get("/")
async def root():
    return {
        "name": "Plating Studio API",
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health")
async def health_check(orchestrator: GenerationOrchestrator = Depends(get_orchestrator)):
    return {
        "status": "healthy",
        "mode": settings.APP_MODE.value,
        "ai_enabled": GeminiImageBackend.is_available(settings),
        "is_generating": orchestrator.is_generating,
        "history_entries": len(orchestrator.history),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=(settings.APP_MODE == AppMode.DEV),
    )
