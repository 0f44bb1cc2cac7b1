"""Request context: request id, acting user and organization for logging.

Three context variables follow a request through the async call chain:

  request_id_var        set here, from X-Request-ID or a fresh UUID
  user_id_var           set by identity resolution once a token is verified
  organization_id_var   set by the tenant-context injector

A logging filter on the root logger copies them onto every LogRecord, so
an "Access denied" warning from deep inside a guard carries the request
id, the user and the tenant without anyone passing them along.
ContextVars (not thread-locals) because concurrent requests share the
event loop thread.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
organization_id_var: ContextVar[str | None] = ContextVar(
    "organization_id", default=None
)


class _RequestContextFilter(logging.Filter):
    """Attach the current request context to every LogRecord.

    A filter rather than a formatter because only filters can add fields
    to the record before it is formatted.  Fields already passed through
    ``extra=`` win.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if getattr(record, "user_id", None) is None:
            record.user_id = user_id_var.get()  # type: ignore[attr-defined]
        if getattr(record, "organization_id", None) is None:
            record.organization_id = organization_id_var.get()  # type: ignore[attr-defined]
        return True


# Installed on the root logger so every logger inherits it; guarded
# against duplicate installation across module reloads.
root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, time the request and log one summary line.

    The id comes from the client's X-Request-ID header when present and is
    echoed back on the response for correlation.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        user_id_var.set(None)
        organization_id_var.set(None)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
