"""Request/response logging middleware for development.

Logs one line per request with a short request id, which is echoed back in the
X-Request-ID header so client-side reports can be matched to server logs.
Enabled from main.py only when APP_MODE is DEV.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger("api.requests")

# Paths to exclude from logging (noisy endpoints)
EXCLUDED_PATHS = {
    "/health",
    "/",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
}

# Prefixes to exclude from logging (slot polling while a batch runs)
EXCLUDED_PREFIXES = (
    "/api/v1/kitchen/slots",
    "/api/v1/ws/",
)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs HTTP requests and responses.

    For each request, logs:
    - Request ID (for correlation)
    - HTTP method and path
    - Request duration
    - Response status code

    GET requests under /api/v1/kitchen/slots and /api/v1/ws/ (live state
    polling and WebSocket stats) are not logged.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in EXCLUDED_PATHS:
            return await call_next(request)

        if request.method == "GET" and any(path.startswith(p) for p in EXCLUDED_PREFIXES):
            return await call_next(request)

        request_id = str(uuid.uuid4())[:8]
        start_time = time.time()

        client_ip = request.client.host if request.client else "unknown"
        request_desc = f"[{request_id}] {request.method} {path} client={client_ip}"

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"{request_desc} - ERROR ({duration:.3f}s): {e}")
            raise

        duration = time.time() - start_time
        status_class = response.status_code // 100

        if status_class == 5:
            log_func = logger.error
        elif status_class == 4:
            log_func = logger.warning
        elif request.method == "GET":
            log_func = logger.debug
        else:
            log_func = logger.info

        log_func(f"{request_desc} - {response.status_code} ({duration:.3f}s)")

        response.headers["X-Request-ID"] = request_id
        return response


def configure_request_logging(log_level: str = "INFO") -> None:
    """
    Configure the request logger.

    Call once during application startup.
    """
    request_logger = logging.getLogger("api.requests")
    request_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    # Prevent duplicate emission via root logger handlers.
    request_logger.propagate = False

    if not request_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        request_logger.addHandler(handler)
