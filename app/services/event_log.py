"""Append-only log of committed badge events.

The ledger publishes each event after its operation commits, in commit
order.  Subscribers are called in registration order; a failing
subscriber is logged and skipped because the event it was handed is
already part of the record.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from app.core.metrics import QUEUE_DEPTH
from app.models.events import BadgeEvent, event_to_payload
from app.services.task_queue import task_queue

logger = logging.getLogger(__name__)

BADGE_EVENTS_QUEUE = "badge_events"

Subscriber = Callable[[BadgeEvent], Awaitable[None]]


class EventLog:
    def __init__(self) -> None:
        self._events: list[BadgeEvent] = []
        self._subscribers: list[Subscriber] = []

    @property
    def events(self) -> list[BadgeEvent]:
        return list(self._events)

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    async def publish(self, event: BadgeEvent) -> None:
        self._events.append(event)
        for subscriber in self._subscribers:
            try:
                await subscriber(event)
            except Exception:
                logger.exception(
                    "Event subscriber %s failed on %s",
                    getattr(subscriber, "__name__", subscriber),
                    event.name,
                )


async def enqueue_badge_event(event: BadgeEvent) -> None:
    """Subscriber: hand the event to the worker via the task queue."""
    await task_queue.enqueue(BADGE_EVENTS_QUEUE, event_to_payload(event))
    QUEUE_DEPTH.labels(queue_name=BADGE_EVENTS_QUEUE).set(
        await task_queue.queue_length(BADGE_EVENTS_QUEUE)
    )
