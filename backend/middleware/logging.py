"""Request/Response logging middleware for development.

Logs one line per request with method, path, client, status and duration,
and echoes a short correlation id as ``X-Request-ID``. Only enabled in dev
mode; bodies are never logged since auth requests carry passwords and tokens.
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

SENSITIVE_PARAMS = {"token", "access_token", "refresh_token", "password", "key"}


def mask_params(params: dict) -> dict:
    return {k: ("***" if k.lower() in SENSITIVE_PARAMS else v) for k, v in params.items()}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request once it completes, at a level matching its status."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        request_id = str(uuid.uuid4())[:8]
        start_time = time.time()

        method = request.method
        log_parts = [f"[{request_id}]", f"{method} {request.url.path}"]
        query_params = dict(request.query_params)
        if query_params:
            log_parts.append(f"params={mask_params(query_params)}")
        log_parts.append(f"client={request.client.host if request.client else 'unknown'}")
        request_desc = " ".join(log_parts)

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error("%s - ERROR (%.3fs): %s", request_desc, duration, e)
            raise

        duration = time.time() - start_time
        status_class = response.status_code // 100

        if status_class == 5:
            log_func = logger.error
        elif status_class == 4:
            log_func = logger.warning
        elif method == "GET":
            log_func = logger.debug
        else:
            log_func = logger.info

        log_func("%s - %d (%.3fs)", request_desc, response.status_code, duration)

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
