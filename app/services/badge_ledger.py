"""Badge ledger: the credential state machine.

STATE
------
Three mappings, owned here and nowhere else (see BadgeRepo):

  holder state   (holder, type) -> bool
  creator        type -> identity, written once
  proposal       (recipient, type) -> proposer

TRANSITIONS
------------
  award(caller, recipient, type)    authorized; false -> true
  propose(caller, recipient, type)  authorized; records a proposal
  claim(caller, type)               caller's own proposal -> held
                                    (a stale proposal for a type the
                                    caller already holds is just spent)
  return_badge(caller, type)        caller's own badge: true -> false

Award and propose go through the injected AuthorizationPolicy; claim and
return do not.  A proposal is only ever removed by claim.  Re-proposing
overwrites the proposer (last write wins), and a direct award leaves an
outstanding proposal for the same pair in place.

ATOMICITY
----------
Each operation runs under the ledger lock as one unit:

  1. check preconditions
  2. apply the core mutation, registering its inverse
  3. stage the event
  4. run the critical hooks against a staged metadata store
  5. commit staged store writes, publish the event

Any exception before 5 completes (a rejected precondition, a refused
authorization, a critical hook, a failed store commit) undoes step 2 and
drops steps 3-4, then propagates.  Callers never observe half an
operation.  Best-effort hooks run only after 5, once the lock is
released.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import TypeVar

from app.core.metrics import BADGE_OPERATIONS
from app.models.badge import BadgeType, Identity, is_null_identity, parse_badge_type
from app.models.events import (
    BadgeAwarded,
    BadgeClaimed,
    BadgeEvent,
    BadgeProposed,
    BadgeReturned,
)
from app.repos.badge_repo import BadgeRepo
from app.services.authorization import AuthorizationPolicy
from app.services.event_log import EventLog
from app.services.hooks import HookContext, HookHandler, HookPipeline
from app.services.metadata_store import MetadataStore, StagedMetadataStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BadgeError(Exception):
    """Base class for rejected ledger operations.  Nothing was changed."""


class UnauthorizedError(BadgeError):
    def __init__(self, caller: Identity) -> None:
        super().__init__(f"caller {caller!r} may not award badges")
        self.caller = caller


class InvalidRecipientError(BadgeError):
    def __init__(self) -> None:
        super().__init__("recipient must be a non-null identity")


class AlreadyHeldError(BadgeError):
    def __init__(self, holder: Identity, badge_type: BadgeType) -> None:
        super().__init__(f"{holder!r} already holds badge {badge_type}")
        self.holder = holder
        self.badge_type = badge_type


class NotProposedError(BadgeError):
    def __init__(self, recipient: Identity, badge_type: BadgeType) -> None:
        super().__init__(f"badge {badge_type} was not proposed to {recipient!r}")
        self.recipient = recipient
        self.badge_type = badge_type


class NotHolderError(BadgeError):
    def __init__(self, holder: Identity, badge_type: BadgeType) -> None:
        super().__init__(f"{holder!r} does not hold badge {badge_type}")
        self.holder = holder
        self.badge_type = badge_type


Undo = Callable[[], Awaitable[None]]


class _Transaction:
    def __init__(self, store: StagedMetadataStore) -> None:
        self.store = store
        self.events: list[BadgeEvent] = []
        self.deferred: list[tuple[list[HookHandler], HookContext]] = []
        self._undo: list[Undo] = []

    def defer(self, handlers: list[HookHandler], ctx: HookContext) -> None:
        if handlers:
            self.deferred.append((handlers, ctx))

    def on_rollback(self, undo: Undo) -> None:
        self._undo.append(undo)

    async def rollback(self) -> None:
        self.store.discard()
        self.events.clear()
        self.deferred.clear()
        for undo in reversed(self._undo):
            try:
                await undo()
            except Exception:
                logger.exception("Ledger rollback step failed")
        self._undo.clear()


class BadgeLedger:
    def __init__(
        self,
        repo: BadgeRepo,
        policy: AuthorizationPolicy,
        store: MetadataStore,
        *,
        hooks: HookPipeline | None = None,
        events: EventLog | None = None,
    ) -> None:
        self._repo = repo
        self._policy = policy
        self._store = store
        self._hooks = hooks or HookPipeline()
        self._events = events or EventLog()
        self._lock = asyncio.Lock()

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def hooks(self) -> HookPipeline:
        return self._hooks

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    async def has_badge(self, holder: Identity, badge_type: BadgeType) -> bool:
        return await self._repo.has_badge(holder, parse_badge_type(badge_type))

    async def is_proposed(self, recipient: Identity, badge_type: BadgeType) -> bool:
        return await self.proposer_of(recipient, badge_type) is not None

    async def proposer_of(
        self, recipient: Identity, badge_type: BadgeType
    ) -> Identity | None:
        return await self._repo.get_proposer(recipient, parse_badge_type(badge_type))

    async def creator_of(self, badge_type: BadgeType) -> Identity | None:
        return await self._repo.get_creator(parse_badge_type(badge_type))

    # -----------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------

    async def award(
        self, caller: Identity, recipient: Identity, badge_type: BadgeType
    ) -> BadgeAwarded:
        badge_type = parse_badge_type(badge_type)

        async def body(tx: _Transaction) -> BadgeAwarded:
            await self._authorize(caller)
            if is_null_identity(recipient):
                raise InvalidRecipientError()
            if await self._repo.has_badge(recipient, badge_type):
                raise AlreadyHeldError(recipient, badge_type)

            await self._set_held(tx, recipient, badge_type, True)
            await self._attribute(tx, badge_type, caller)
            event = BadgeAwarded(badge_type=badge_type, recipient=recipient, credited=caller)
            tx.events.append(event)
            ctx = HookContext(recipient, badge_type, caller, tx.store)
            tx.defer(await self._hooks.run_after_award(ctx), ctx)
            return event

        return await self._run("award", caller, recipient, badge_type, body)

    async def propose(
        self, caller: Identity, recipient: Identity, badge_type: BadgeType
    ) -> BadgeProposed:
        badge_type = parse_badge_type(badge_type)

        async def body(tx: _Transaction) -> BadgeProposed:
            await self._authorize(caller)
            if is_null_identity(recipient):
                raise InvalidRecipientError()
            if await self._repo.has_badge(recipient, badge_type):
                raise AlreadyHeldError(recipient, badge_type)

            previous = await self._repo.get_proposer(recipient, badge_type)
            await self._repo.set_proposer(recipient, badge_type, caller)
            tx.on_rollback(
                lambda: self._repo.set_proposer(recipient, badge_type, previous)
            )
            event = BadgeProposed(badge_type=badge_type, recipient=recipient, proposer=caller)
            tx.events.append(event)
            return event

        return await self._run("propose", caller, recipient, badge_type, body)

    async def claim(self, caller: Identity, badge_type: BadgeType) -> BadgeClaimed:
        badge_type = parse_badge_type(badge_type)

        async def body(tx: _Transaction) -> BadgeClaimed:
            proposer = await self._repo.get_proposer(caller, badge_type)
            if proposer is None:
                raise NotProposedError(caller, badge_type)

            await self._repo.set_proposer(caller, badge_type, None)
            tx.on_rollback(lambda: self._repo.set_proposer(caller, badge_type, proposer))
            event = BadgeClaimed(badge_type=badge_type, claimer=caller)
            tx.events.append(event)

            if await self._repo.has_badge(caller, badge_type):
                # Stale proposal: a direct award got there first.  Claiming
                # spends the proposal; holder state and hooks are untouched.
                return event

            await self._set_held(tx, caller, badge_type, True)
            # Credit goes to whoever proposed, not to the claimer.
            await self._attribute(tx, badge_type, proposer)
            ctx = HookContext(caller, badge_type, proposer, tx.store)
            tx.defer(await self._hooks.run_after_award(ctx), ctx)
            return event

        return await self._run("claim", caller, caller, badge_type, body)

    async def return_badge(self, caller: Identity, badge_type: BadgeType) -> BadgeReturned:
        badge_type = parse_badge_type(badge_type)

        async def body(tx: _Transaction) -> BadgeReturned:
            if is_null_identity(caller):
                raise InvalidRecipientError()
            if not await self._repo.has_badge(caller, badge_type):
                raise NotHolderError(caller, badge_type)

            await self._set_held(tx, caller, badge_type, False)
            event = BadgeReturned(badge_type=badge_type, holder=caller)
            tx.events.append(event)
            ctx = HookContext(caller, badge_type, caller, tx.store)
            tx.defer(await self._hooks.run_after_return(ctx), ctx)
            return event

        return await self._run("return", caller, caller, badge_type, body)

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    async def _authorize(self, caller: Identity) -> None:
        if not await self._policy.authorize(caller):
            raise UnauthorizedError(caller)

    async def _set_held(
        self, tx: _Transaction, holder: Identity, badge_type: BadgeType, held: bool
    ) -> None:
        previous = await self._repo.has_badge(holder, badge_type)
        await self._repo.set_held(holder, badge_type, held)
        tx.on_rollback(lambda: self._repo.set_held(holder, badge_type, previous))

    async def _attribute(
        self, tx: _Transaction, badge_type: BadgeType, creator: Identity
    ) -> None:
        if await self._repo.get_creator(badge_type) is not None:
            return
        await self._repo.set_creator(badge_type, creator)
        tx.on_rollback(lambda: self._repo.set_creator(badge_type, None))

    async def _run(
        self,
        operation: str,
        caller: Identity,
        holder: Identity,
        badge_type: BadgeType,
        body: Callable[[_Transaction], Awaitable[T]],
    ) -> T:
        log_ctx = {
            "operation": operation,
            "caller": caller,
            "holder": holder,
            "badge_type": badge_type,
        }
        async with self._lock:
            tx = _Transaction(StagedMetadataStore(self._store))
            try:
                result = await body(tx)
                await tx.store.commit()
            except BadgeError as e:
                await tx.rollback()
                BADGE_OPERATIONS.labels(operation=operation, outcome=type(e).__name__).inc()
                logger.warning("Rejected %s: %s", operation, e, extra=log_ctx)
                raise
            except Exception as e:
                await tx.rollback()
                BADGE_OPERATIONS.labels(operation=operation, outcome=type(e).__name__).inc()
                logger.error("Aborted %s for holder=%s", operation, holder, extra=log_ctx)
                raise

            for event in tx.events:
                await self._events.publish(event)

        BADGE_OPERATIONS.labels(operation=operation, outcome="ok").inc()
        logger.info(
            "%s badge=%s holder=%s caller=%s",
            operation,
            badge_type,
            holder,
            caller,
            extra=log_ctx,
        )

        # Best-effort hooks see committed state and run outside the lock.
        for handlers, ctx in tx.deferred:
            await self._hooks.run_deferred(
                handlers, replace(ctx, store=StagedMetadataStore(self._store))
            )
        return result
