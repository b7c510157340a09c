"""Health and readiness endpoints.

  /health (liveness): always 200 while the process answers.  The body
    reports Redis status, the installed hook chains, and how many badge
    events are waiting for the worker.

  /ready (readiness): 503 when Redis is configured but unreachable.
    Ledger state lives in Redis in that setup, so an instance that
    cannot reach it must not take traffic.
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from app.db.redis import redis_pool
from app.services.badges import ledger
from app.services.event_log import BADGE_EVENTS_QUEUE
from app.services.task_queue import task_queue

router = APIRouter(tags=["health"])


async def _redis_status() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    redis_status = await _redis_status()
    overall = "degraded" if redis_status == "degraded" else "ok"

    try:
        pending_events: int | None = await task_queue.queue_length(BADGE_EVENTS_QUEUE)
    except Exception:
        pending_events = None
        overall = "degraded"

    return {
        "status": overall,
        "checks": {"redis": redis_status},
        "hooks": {
            "after_award": ledger.hooks.after_award_names,
            "after_return": ledger.hooks.after_return_names,
        },
        "pending_events": pending_events,
    }


@router.get("/ready")
async def ready() -> Response:
    if await _redis_status() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
