"""Background worker: follow-up work for committed badge events.

RUN:  python -m app.worker

The API enqueues every committed ledger event on the badge_events queue.
The worker runs the indexing workflow for awards and claims:

  1. take the badge type from the event
  2. derive metadata_key(type)
  3. read the descriptor from the metadata store
  4. log the resolved descriptor (or its absence) for the indexer

Proposals and returns are logged and otherwise ignored.  The worker
never touches ledger state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.models.events import BadgeAwarded, BadgeClaimed, event_from_payload
from app.services.badges import badge_metadata
from app.services.event_log import BADGE_EVENTS_QUEUE
from app.services.metadata_store import metadata_key
from app.services.task_queue import task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, Any]]

logger = logging.getLogger("worker")

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(BADGE_EVENTS_QUEUE)
async def handle_badge_event(payload: dict) -> dict | None:
    """Resolve the metadata descriptor for award and claim events.

    Returns the descriptor (None when unset or not applicable) so the
    indexing result can be asserted on without scraping logs.
    """
    event = event_from_payload(payload)
    if not isinstance(event, BadgeAwarded | BadgeClaimed):
        logger.info("Observed %s for badge=%s", event.name, event.badge_type)
        return None

    key = metadata_key(event.badge_type)
    descriptor = await badge_metadata.get_metadata(event.badge_type)
    if descriptor is None:
        logger.info(
            "%s for badge=%s has no metadata at key=%s",
            event.name,
            event.badge_type,
            key,
        )
        return None

    logger.info(
        "%s for badge=%s resolved metadata key=%s descriptor=%s",
        event.name,
        event.badge_type,
        key,
        descriptor,
    )
    return descriptor


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while True:
        for queue_name in queues:
            task = await task_queue.dequeue(queue_name, timeout=1)
            if task is None:
                continue

            handler = HANDLERS[queue_name]
            try:
                await handler(task.payload)
                logger.info("Task %s on [%s] completed", task.id, queue_name)
            except Exception:
                # At-most-once: a failed task is logged and dropped.
                logger.exception("Task %s on [%s] failed", task.id, queue_name)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
