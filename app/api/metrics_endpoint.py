"""Prometheus scrape endpoint.

Serves every metric in app.core.metrics in text exposition format.
Restrict access at the ingress in production: badge operation counts
and hook failure rates are internal data.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
