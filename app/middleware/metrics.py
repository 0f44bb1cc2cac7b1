"""Prometheus metrics middleware.

Records ACTIVE_REQUESTS, REQUEST_COUNT and REQUEST_DURATION for every
request except the /metrics scrape itself.

The endpoint label is the matched route template ("/api/v1/teams/{team_id}")
rather than the raw path: team, organization and invitation ids in the
URL would otherwise create one time series per resource.  Requests that
match no route are labelled "unmatched".
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION

UNMATCHED = "unmatched"


def _endpoint_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or UNMATCHED


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code = "500"

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            duration = time.monotonic() - start
            ACTIVE_REQUESTS.dec()
            endpoint = _endpoint_label(request)
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()
            REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
                duration
            )

        return response
