"""Per-request logging with a request id bound into the structlog context.

Every log line emitted while a request is being served (engine selection,
retries, fallbacks) carries the same ``request_id``; the id is echoed back
in the ``X-Request-ID`` response header.
"""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from md2pdf.utils.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        ):
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("request_failed", duration_ms=_elapsed_ms(started))
                raise

            duration_ms = _elapsed_ms(started)
            if response.status_code >= 500:
                logger.error("request_completed", status_code=response.status_code, duration_ms=duration_ms)
            elif response.status_code >= 400:
                logger.warning("request_completed", status_code=response.status_code, duration_ms=duration_ms)
            else:
                logger.info("request_completed", status_code=response.status_code, duration_ms=duration_ms)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
