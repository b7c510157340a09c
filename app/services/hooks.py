"""Post-transition hook pipeline.

The ledger exposes two extension points, after-award and after-return.
Each is an ordered chain of HookHandler entries fixed when the pipeline
is assembled, and every handler carries an explicit ``critical`` flag:

  critical=True   runs inside the operation, under the ledger lock,
                  after the mutation is applied and the event staged.
                  A raised exception aborts the operation: the ledger
                  undoes its mutation and drops the staged event and
                  store writes.  Enumeration runs this way so the
                  holder list can never disagree with holder state.

  critical=False  deferred until the operation has committed, its
                  events are published and the lock is released.  A
                  raised exception is logged and counted, then the next
                  handler runs.  Notification runs this way: a webhook
                  never fires for an aborted operation, and a slow one
                  never holds up anyone else's.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from app.core.metrics import HOOK_FAILURES
from app.models.badge import BadgeType, Identity
from app.services.metadata_store import StagedMetadataStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HookContext:
    """What a handler sees of a committed transition.

    holder:    identity whose holder state changed
    credited:  awarder (award) or original proposer (claim); for
               returns, the holder themselves
    store:     the operation's staged view of the metadata store
    """

    holder: Identity
    badge_type: BadgeType
    credited: Identity
    store: StagedMetadataStore


HookFn = Callable[[HookContext], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class HookHandler:
    name: str
    fn: HookFn
    critical: bool


class HookPipeline:
    def __init__(
        self,
        after_award: Sequence[HookHandler] = (),
        after_return: Sequence[HookHandler] = (),
    ) -> None:
        self._after_award = tuple(after_award)
        self._after_return = tuple(after_return)

    @property
    def after_award_names(self) -> list[str]:
        return [h.name for h in self._after_award]

    @property
    def after_return_names(self) -> list[str]:
        return [h.name for h in self._after_return]

    async def run_after_award(self, ctx: HookContext) -> list[HookHandler]:
        """Run the critical after-award handlers; return the deferred ones."""
        return await self._run_critical(self._after_award, ctx)

    async def run_after_return(self, ctx: HookContext) -> list[HookHandler]:
        """Run the critical after-return handlers; return the deferred ones."""
        return await self._run_critical(self._after_return, ctx)

    async def _run_critical(
        self, chain: tuple[HookHandler, ...], ctx: HookContext
    ) -> list[HookHandler]:
        for handler in chain:
            if not handler.critical:
                continue
            try:
                await handler.fn(ctx)
            except Exception:
                HOOK_FAILURES.labels(hook=handler.name, critical="true").inc()
                logger.error(
                    "Critical hook %s failed for holder=%s",
                    handler.name,
                    ctx.holder,
                    extra={"hook": handler.name, "badge_type": ctx.badge_type},
                )
                raise
        return [h for h in chain if not h.critical]

    async def run_deferred(
        self, handlers: Sequence[HookHandler], ctx: HookContext
    ) -> None:
        """Run best-effort handlers after commit.

        Each handler's store writes are committed when it returns and
        discarded when it raises.
        """
        for handler in handlers:
            try:
                await handler.fn(ctx)
                await ctx.store.commit()
            except Exception:
                ctx.store.discard()
                HOOK_FAILURES.labels(hook=handler.name, critical="false").inc()
                logger.warning(
                    "Best-effort hook %s failed for holder=%s",
                    handler.name,
                    ctx.holder,
                    exc_info=True,
                    extra={"hook": handler.name, "badge_type": ctx.badge_type},
                )


def chain(*handlers: HookHandler | None) -> list[HookHandler]:
    """Assemble a chain in order, skipping extensions that are not installed."""
    return [h for h in handlers if h is not None]
