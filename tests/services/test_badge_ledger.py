"""Badge ledger state machine tests.

Each test builds its own ledger over fresh in-memory collaborators, so
nothing here depends on the module-level singletons.
"""

from __future__ import annotations

import asyncio

import pytest

from app.models.badge import badge_type_for
from app.models.events import BadgeAwarded, BadgeClaimed, BadgeProposed, BadgeReturned
from app.repos.badge_repo import InMemoryBadgeRepo
from app.services.authorization import OwnerAuthorizationPolicy, StaticOwnerResolver
from app.services.badge_ledger import (
    AlreadyHeldError,
    BadgeLedger,
    InvalidRecipientError,
    NotHolderError,
    NotProposedError,
    UnauthorizedError,
)
from app.services.badges import build_ledger
from app.services.enumeration import EnumerationExtension
from app.services.event_log import EventLog
from app.services.hooks import HookContext, HookHandler, HookPipeline
from app.services.metadata_store import InMemoryMetadataStore

OWNER = "owner"
R1 = "recipient-1"
R2 = "recipient-2"
T1 = badge_type_for("t1")
T2 = badge_type_for("t2")


class CountingPolicy:
    """Owner policy that records every caller it was asked about."""

    def __init__(self, owner: str = OWNER) -> None:
        self.owner = owner
        self.calls: list[str] = []

    async def authorize(self, caller: str) -> bool:
        self.calls.append(caller)
        return caller == self.owner


def _ledger(**kwargs) -> BadgeLedger:
    return BadgeLedger(
        InMemoryBadgeRepo(),
        kwargs.pop("policy", OwnerAuthorizationPolicy(StaticOwnerResolver(OWNER))),
        kwargs.pop("store", InMemoryMetadataStore()),
        **kwargs,
    )


# ---- award ----


def test_award_sets_holder_state_and_creator() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        event = await ledger.award(OWNER, R1, T1)
        assert event == BadgeAwarded(badge_type=T1, recipient=R1, credited=OWNER)
        assert await ledger.has_badge(R1, T1) is True
        assert await ledger.creator_of(T1) == OWNER

    asyncio.run(scenario())


def test_second_award_for_same_pair_fails() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        await ledger.award(OWNER, R1, T1)
        with pytest.raises(AlreadyHeldError):
            await ledger.award(OWNER, R1, T1)

    asyncio.run(scenario())


def test_award_to_null_recipient_fails() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        with pytest.raises(InvalidRecipientError):
            await ledger.award(OWNER, "", T1)
        with pytest.raises(InvalidRecipientError):
            await ledger.award(OWNER, "   ", T1)
        assert await ledger.creator_of(T1) is None

    asyncio.run(scenario())


def test_award_by_non_owner_is_unauthorized_and_changes_nothing() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        with pytest.raises(UnauthorizedError):
            await ledger.award("mallory", R1, T1)
        assert await ledger.has_badge(R1, T1) is False
        assert await ledger.creator_of(T1) is None
        assert ledger.events.events == []

    asyncio.run(scenario())


def test_award_accepts_prefixed_upper_case_type() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        await ledger.award(OWNER, R1, "0x" + T1.upper())
        assert await ledger.has_badge(R1, T1) is True

    asyncio.run(scenario())


def test_award_rejects_malformed_type() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        with pytest.raises(ValueError, match="64 hex"):
            await ledger.award(OWNER, R1, "not-a-badge")

    asyncio.run(scenario())


# ---- propose / claim ----


def test_propose_then_claim_holds_badge_and_clears_proposal() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        proposed = await ledger.propose(OWNER, R1, T2)
        assert proposed == BadgeProposed(badge_type=T2, recipient=R1, proposer=OWNER)
        assert await ledger.is_proposed(R1, T2) is True
        assert await ledger.has_badge(R1, T2) is False

        claimed = await ledger.claim(R1, T2)
        assert claimed == BadgeClaimed(badge_type=T2, claimer=R1)
        assert await ledger.has_badge(R1, T2) is True
        assert await ledger.is_proposed(R1, T2) is False

    asyncio.run(scenario())


def test_claim_by_other_identity_fails() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        await ledger.propose(OWNER, R1, T2)
        with pytest.raises(NotProposedError):
            await ledger.claim(R2, T2)
        assert await ledger.is_proposed(R1, T2) is True

    asyncio.run(scenario())


def test_claim_without_proposal_fails() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        with pytest.raises(NotProposedError):
            await ledger.claim(R1, T1)

    asyncio.run(scenario())


def test_propose_to_holder_fails() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        await ledger.award(OWNER, R1, T1)
        with pytest.raises(AlreadyHeldError):
            await ledger.propose(OWNER, R1, T1)
        assert await ledger.is_proposed(R1, T1) is False

    asyncio.run(scenario())


def test_propose_by_non_owner_is_unauthorized() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        with pytest.raises(UnauthorizedError):
            await ledger.propose("mallory", R1, T1)
        assert await ledger.is_proposed(R1, T1) is False

    asyncio.run(scenario())


def test_propose_to_null_recipient_fails() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        with pytest.raises(InvalidRecipientError):
            await ledger.propose(OWNER, "", T1)

    asyncio.run(scenario())


def test_reproposing_replaces_proposer() -> None:
    async def scenario() -> None:
        policy = CountingPolicy()
        ledger = _ledger(policy=policy)
        await ledger.propose(OWNER, R1, T1)
        policy.owner = "new-owner"
        await ledger.propose("new-owner", R1, T1)
        assert await ledger.proposer_of(R1, T1) == "new-owner"

        await ledger.claim(R1, T1)
        assert await ledger.creator_of(T1) == "new-owner"

    asyncio.run(scenario())


# ---- creator attribution ----


def test_claim_attributes_proposer_not_claimer() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        await ledger.propose(OWNER, R1, T2)
        await ledger.claim(R1, T2)
        assert await ledger.creator_of(T2) == OWNER

    asyncio.run(scenario())


def test_attribution_is_never_overwritten() -> None:
    async def scenario() -> None:
        policy = CountingPolicy()
        ledger = _ledger(policy=policy)
        await ledger.award(OWNER, R1, T1)

        policy.owner = "successor"
        await ledger.award("successor", R2, T1)
        await ledger.propose("successor", "recipient-3", T1)
        await ledger.claim("recipient-3", T1)

        assert await ledger.creator_of(T1) == OWNER

    asyncio.run(scenario())


# ---- return ----


def test_return_clears_holding_and_allows_reaward() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        await ledger.award(OWNER, R1, T1)
        event = await ledger.return_badge(R1, T1)
        assert event == BadgeReturned(badge_type=T1, holder=R1)
        assert await ledger.has_badge(R1, T1) is False

        await ledger.award(OWNER, R1, T1)
        assert await ledger.has_badge(R1, T1) is True

    asyncio.run(scenario())


def test_return_by_non_holder_fails() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        await ledger.award(OWNER, R1, T1)
        with pytest.raises(NotHolderError):
            await ledger.return_badge(R2, T1)
        assert await ledger.has_badge(R1, T1) is True

    asyncio.run(scenario())


def test_return_keeps_creator() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        await ledger.award(OWNER, R1, T1)
        await ledger.return_badge(R1, T1)
        assert await ledger.creator_of(T1) == OWNER

    asyncio.run(scenario())


# ---- authorization call sites ----


def test_claim_and_return_never_consult_policy() -> None:
    async def scenario() -> None:
        policy = CountingPolicy()
        ledger = _ledger(policy=policy)
        await ledger.propose(OWNER, R1, T1)
        assert policy.calls == [OWNER]

        await ledger.claim(R1, T1)
        await ledger.return_badge(R1, T1)
        assert policy.calls == [OWNER]

    asyncio.run(scenario())


# ---- stale proposals ----


def test_direct_award_leaves_outstanding_proposal() -> None:
    async def scenario() -> None:
        ledger = _ledger()
        await ledger.propose(OWNER, R1, T1)
        await ledger.award(OWNER, R1, T1)

        assert await ledger.has_badge(R1, T1) is True
        assert await ledger.is_proposed(R1, T1) is True

    asyncio.run(scenario())


def _enumerated_ledger(store: InMemoryMetadataStore | None = None) -> BadgeLedger:
    store = store or InMemoryMetadataStore()
    return build_ledger(
        repo=InMemoryBadgeRepo(),
        store=store,
        policy=OwnerAuthorizationPolicy(StaticOwnerResolver(OWNER)),
        enumeration=EnumerationExtension(store),
    )


@pytest.mark.parametrize("enumerated", [False, True])
def test_claiming_stale_proposal_spends_it_without_touching_holding(
    enumerated: bool,
) -> None:
    async def scenario() -> None:
        store = InMemoryMetadataStore()
        ledger = _enumerated_ledger(store) if enumerated else _ledger(store=store)
        await ledger.propose(OWNER, R1, T1)
        await ledger.award(OWNER, R1, T1)

        event = await ledger.claim(R1, T1)

        assert event == BadgeClaimed(badge_type=T1, claimer=R1)
        assert await ledger.is_proposed(R1, T1) is False
        assert await ledger.has_badge(R1, T1) is True
        assert await ledger.creator_of(T1) == OWNER
        if enumerated:
            enumeration = EnumerationExtension(store)
            assert await enumeration.badges_of(R1) == [T1]
        with pytest.raises(NotProposedError):
            await ledger.claim(R1, T1)

    asyncio.run(scenario())


def test_stale_claim_runs_no_hooks() -> None:
    async def scenario() -> None:
        seen: list[str] = []

        async def record(ctx: HookContext) -> None:
            seen.append(ctx.holder)

        hooks = HookPipeline(
            after_award=[
                HookHandler("hard", record, critical=True),
                HookHandler("soft", record, critical=False),
            ]
        )
        ledger = _ledger(hooks=hooks)
        await ledger.propose(OWNER, R1, T1)
        await ledger.award(OWNER, R1, T1)
        seen.clear()

        await ledger.claim(R1, T1)
        assert seen == []

    asyncio.run(scenario())


# ---- failed store commit ----


class FailingStore(InMemoryMetadataStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail = False

    async def set(self, key: str, value: str) -> None:
        if self.fail:
            raise ConnectionError("store down")
        await super().set(key, value)

    async def delete(self, key: str) -> None:
        if self.fail:
            raise ConnectionError("store down")
        await super().delete(key)


def test_failed_commit_reverts_award() -> None:
    async def scenario() -> None:
        store = FailingStore()
        ledger = _enumerated_ledger(store)
        store.fail = True

        with pytest.raises(ConnectionError):
            await ledger.award(OWNER, R1, T1)

        assert await ledger.has_badge(R1, T1) is False
        assert await ledger.creator_of(T1) is None
        assert ledger.events.events == []

    asyncio.run(scenario())


def test_failed_commit_reverts_claim_and_restores_proposal() -> None:
    async def scenario() -> None:
        store = FailingStore()
        ledger = _enumerated_ledger(store)
        await ledger.propose(OWNER, R1, T2)
        store.fail = True

        with pytest.raises(ConnectionError):
            await ledger.claim(R1, T2)

        assert await ledger.proposer_of(R1, T2) == OWNER
        assert await ledger.has_badge(R1, T2) is False
        assert await ledger.creator_of(T2) is None
        assert [e.name for e in ledger.events.events] == ["BadgeProposed"]

    asyncio.run(scenario())


def test_failed_commit_reverts_return() -> None:
    async def scenario() -> None:
        store = FailingStore()
        ledger = _enumerated_ledger(store)
        await ledger.award(OWNER, R1, T1)
        store.fail = True

        with pytest.raises(ConnectionError):
            await ledger.return_badge(R1, T1)

        store.fail = False
        assert await ledger.has_badge(R1, T1) is True
        assert await ledger.creator_of(T1) == OWNER
        assert await EnumerationExtension(store).badges_of(R1) == [T1]

    asyncio.run(scenario())


# ---- events ----


def test_events_published_in_commit_order() -> None:
    async def scenario() -> None:
        events = EventLog()
        ledger = _ledger(events=events)
        await ledger.award(OWNER, R1, T1)
        await ledger.propose(OWNER, R1, T2)
        await ledger.claim(R1, T2)
        await ledger.return_badge(R1, T1)

        assert [e.name for e in events.events] == [
            "BadgeAwarded",
            "BadgeProposed",
            "BadgeClaimed",
            "BadgeReturned",
        ]

    asyncio.run(scenario())


def test_rejected_operation_emits_no_event() -> None:
    async def scenario() -> None:
        events = EventLog()
        ledger = _ledger(events=events)
        await ledger.award(OWNER, R1, T1)
        with pytest.raises(AlreadyHeldError):
            await ledger.award(OWNER, R1, T1)
        assert len(events.events) == 1

    asyncio.run(scenario())


# ---- atomicity with hooks ----


async def _explode(ctx: HookContext) -> None:
    raise RuntimeError("hook down")


def test_critical_hook_failure_reverts_award() -> None:
    async def scenario() -> None:
        store = InMemoryMetadataStore()
        events = EventLog()
        staged_write = HookHandler(
            name="writer",
            fn=lambda ctx: ctx.store.set("written", "yes"),
            critical=True,
        )
        hooks = HookPipeline(
            after_award=[staged_write, HookHandler("boom", _explode, critical=True)]
        )
        ledger = _ledger(store=store, hooks=hooks, events=events)

        with pytest.raises(RuntimeError, match="hook down"):
            await ledger.award(OWNER, R1, T1)

        assert await ledger.has_badge(R1, T1) is False
        assert await ledger.creator_of(T1) is None
        assert await store.get("written") is None
        assert events.events == []

    asyncio.run(scenario())


def test_critical_hook_failure_reverts_claim_and_restores_proposal() -> None:
    async def scenario() -> None:
        hooks = HookPipeline(after_award=[HookHandler("boom", _explode, critical=True)])
        ledger = _ledger(hooks=hooks)
        await ledger.propose(OWNER, R1, T2)

        with pytest.raises(RuntimeError):
            await ledger.claim(R1, T2)

        assert await ledger.proposer_of(R1, T2) == OWNER
        assert await ledger.has_badge(R1, T2) is False
        assert await ledger.creator_of(T2) is None

    asyncio.run(scenario())


def test_critical_hook_failure_reverts_return() -> None:
    async def scenario() -> None:
        hooks = HookPipeline(after_return=[HookHandler("boom", _explode, critical=True)])
        ledger = _ledger(hooks=hooks)
        await ledger.award(OWNER, R1, T1)

        with pytest.raises(RuntimeError):
            await ledger.return_badge(R1, T1)
        assert await ledger.has_badge(R1, T1) is True

    asyncio.run(scenario())


def test_best_effort_hook_failure_keeps_award() -> None:
    async def scenario() -> None:
        seen: list[str] = []

        async def record(ctx: HookContext) -> None:
            seen.append(ctx.holder)

        hooks = HookPipeline(
            after_award=[
                HookHandler("flaky", _explode, critical=False),
                HookHandler("recorder", record, critical=True),
            ]
        )
        ledger = _ledger(hooks=hooks)
        await ledger.award(OWNER, R1, T1)

        assert await ledger.has_badge(R1, T1) is True
        assert seen == [R1]

    asyncio.run(scenario())


def test_hook_context_carries_credited_party() -> None:
    async def scenario() -> None:
        contexts: list[HookContext] = []

        async def record(ctx: HookContext) -> None:
            contexts.append(ctx)

        hooks = HookPipeline(
            after_award=[HookHandler("recorder", record, critical=True)],
            after_return=[HookHandler("recorder", record, critical=True)],
        )
        ledger = _ledger(hooks=hooks)
        await ledger.award(OWNER, R1, T1)
        await ledger.propose(OWNER, R2, T1)
        await ledger.claim(R2, T1)
        await ledger.return_badge(R1, T1)

        assert [(c.holder, c.credited) for c in contexts] == [
            (R1, OWNER),
            (R2, OWNER),
            (R1, R1),
        ]

    asyncio.run(scenario())
