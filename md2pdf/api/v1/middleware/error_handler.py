"""Translate ``Md2PdfError`` subclasses into JSON error responses.

``generate_pdf`` reports engine failures in its result body, so what reaches
this middleware is mostly lookup errors (unknown engine or alert), bad
configuration, and start-up problems surfaced by the engine layer.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from md2pdf.api.v1.schemas.common import ErrorResponse
from md2pdf.utils.exceptions import (
    AlertNotFoundError,
    ConfigurationError,
    EngineConstructionError,
    EngineGenerationError,
    EngineInitializationError,
    Md2PdfError,
    NoHealthyEngineError,
    RetriesExhaustedError,
    UnknownEngineError,
)
from md2pdf.utils.logging import get_logger

logger = get_logger(__name__)

_STATUS_BY_ERROR: dict[type[Md2PdfError], int] = {
    AlertNotFoundError: 404,
    UnknownEngineError: 404,
    ConfigurationError: 400,
    EngineConstructionError: 500,
    EngineInitializationError: 503,
    NoHealthyEngineError: 503,
    EngineGenerationError: 502,
    RetriesExhaustedError: 502,
}

# Seconds a client should wait before retrying when no engine can serve it.
RETRY_AFTER_SECONDS = 30


def status_for(exc: Md2PdfError) -> int:
    """HTTP status for *exc*, using the nearest mapped base class."""
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return 500


def error_body(exc: Md2PdfError) -> dict:
    body = ErrorResponse(
        error=type(exc).__name__,
        detail=str(exc),
        engine=getattr(exc, "engine_name", None),
    )
    return body.model_dump(exclude_none=True)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except Md2PdfError as exc:
            status_code = status_for(exc)
            logger.warning(
                "request_error",
                error_type=type(exc).__name__,
                status_code=status_code,
                detail=str(exc),
            )
            headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if status_code == 503 else None
            return JSONResponse(status_code=status_code, content=error_body(exc), headers=headers)
        except Exception:
            logger.exception("unhandled_error", path=request.url.path)
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(
                    error="InternalServerError",
                    detail="Unexpected server error",
                ).model_dump(exclude_none=True),
            )
