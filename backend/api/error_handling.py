"""Exception handlers rendering every failure as ``{error, message, details?}``."""

import logging
from typing import Any

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from services.errors import AuthServiceError

logger = logging.getLogger(__name__)

MAX_ERROR_STRING_CHARS = 400
MAX_ERROR_FIELDS = 50


def _truncate_string(value: str, max_chars: int = MAX_ERROR_STRING_CHARS) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}...(truncated)"


def _safe_text(value: Any) -> str:
    """
    Make a reflected value UTF-8 encodable and bounded.

    SECURITY/ROBUSTNESS: validation messages can echo user input. Unpaired
    surrogates would crash the JSON encoder, and large inputs would be
    amplified into large error bodies.
    """
    text = value if isinstance(value, str) else str(value)
    text = text.encode("utf-8", errors="replace").decode("utf-8", errors="replace")
    return _truncate_string(text)


def _field_name(loc: tuple) -> str:
    # ("body", "email") -> "email"; ("body",) -> "body"
    parts = [str(p) for p in loc if p != "body"]
    return ".".join(parts) if parts else "body"


def validation_details(exc: RequestValidationError) -> dict[str, str]:
    details: dict[str, str] = {}
    for error in exc.errors()[:MAX_ERROR_FIELDS]:
        field = _safe_text(_field_name(tuple(error.get("loc", ()))))
        details.setdefault(field, _safe_text(error.get("msg", "Invalid value")))
    return details


def auth_error_response(exc: AuthServiceError) -> JSONResponse:
    headers = {}
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers or None,
    )


async def auth_service_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s", request.method, request.url.path, exc.message,
            exc_info=exc.__cause__ or exc,
        )
    return auth_error_response(exc)


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "validation_error",
            "message": "Invalid request body",
            "details": validation_details(exc),
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error", "message": "Internal server error"},
    )


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthServiceError, auth_service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
