"""API request middleware: request correlation, timing, structured logging, error wrapping."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from chatrelay.runtime.logging_config import ctx_client_id, ctx_request_id
from chatrelay.runtime.rate_limiter import client_identifier

log = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Times requests, logs them, and wraps unhandled errors.

    For every request:
    1. Binds a request id and the caller identity to the logging context
    2. Calls the route handler
    3. Logs method, path, status, and duration
    4. Catches unhandled exceptions and returns ``{error, details}`` with HTTP 500
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        start = time.monotonic()
        method = request.method
        path = request.url.path

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        rid_token = ctx_request_id.set(request_id)
        cid_token = ctx_client_id.set(client_identifier(request.headers))

        try:
            response = await call_next(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            response.headers[REQUEST_ID_HEADER] = request_id

            log.info(
                "api.request method=%s path=%s status=%d duration_ms=%.1f",
                method,
                path,
                response.status_code,
                elapsed_ms,
            )
            return response

        except Exception as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            log.error(
                "api.unhandled_error method=%s path=%s error=%s duration_ms=%.1f",
                method,
                path,
                str(exc),
                elapsed_ms,
            )
            return JSONResponse(
                {"error": "Internal Server Error", "details": str(exc) or "Unknown error"},
                status_code=500,
                headers={REQUEST_ID_HEADER: request_id},
            )
        finally:
            ctx_client_id.reset(cid_token)
            ctx_request_id.reset(rid_token)
