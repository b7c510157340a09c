"""Fallible calls to collaborators outside the service.

The authorization delegate and recipient notification targets live in
other processes and fail in ways the ledger must not inherit: timeouts,
refused connections, malformed answers.  ``call_boundary`` runs one such
call and hands back a BoundaryResult instead of raising, so the calling
extension decides explicitly whether a failure propagates (never, today)
or falls back.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BoundaryResult(Generic[T]):
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def call_boundary(target: str, call: Awaitable[T]) -> BoundaryResult[T]:
    """Await ``call``; capture any exception as the result's error."""
    try:
        value = await call
    except Exception as e:
        logger.warning("Boundary call to %s failed: %r", target, e)
        return BoundaryResult(error=e)
    return BoundaryResult(value=value)
