"""Prometheus metrics middleware: instruments every HTTP request.

Ledger-level outcomes (AlreadyHeldError, UnauthorizedError, ...) are
counted separately in badge_operations_total; this layer only sees
status codes.
"""

from __future__ import annotations

import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION

# Badge types, holders and metadata keys are unbounded; collapse them so
# the endpoint label keeps a fixed cardinality.
_BADGE_TYPE_RE = re.compile(r"/[0-9a-f]{64}(?=/|$)")
_HOLDER_RE = re.compile(r"^(/v1/badges/\{type\}/(?:holders|proposals))/[^/]+$")
_HOLDER_LIST_RE = re.compile(r"^/v1/holders/[^/]+/badges$")
_METADATA_RE = re.compile(r"^/v1/metadata/[^/]+$")


def endpoint_label(path: str) -> str:
    path = _BADGE_TYPE_RE.sub("/{type}", path)
    path = _HOLDER_RE.sub(r"\1/{identity}", path)
    if _HOLDER_LIST_RE.match(path):
        return "/v1/holders/{holder}/badges"
    if _METADATA_RE.match(path):
        return "/v1/metadata/{key}"
    return path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus metrics for every HTTP request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Scrapes would otherwise count themselves.
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = endpoint_label(request.url.path)
        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code: str | None = None

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        except Exception:
            status_code = "500"
            raise
        finally:
            duration = time.monotonic() - start
            ACTIVE_REQUESTS.dec()
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code if status_code is not None else "500",
            ).inc()
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration)

        return response
