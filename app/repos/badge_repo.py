"""Storage for the three core ledger mappings.

holder state:  (holder, badge_type) -> held?
creators:      badge_type -> identity first credited
proposals:     (recipient, badge_type) -> proposer

Only BadgeLedger writes through this interface.  The repo enforces no
business rules; every method is a plain read or write so the ledger can
apply and undo mutations symmetrically.
"""

from __future__ import annotations

from typing import Protocol

from app.models.badge import BadgeType, Identity


class BadgeRepo(Protocol):
    async def has_badge(self, holder: Identity, badge_type: BadgeType) -> bool: ...
    async def set_held(
        self, holder: Identity, badge_type: BadgeType, held: bool
    ) -> None: ...
    async def get_creator(self, badge_type: BadgeType) -> Identity | None: ...
    async def set_creator(
        self, badge_type: BadgeType, creator: Identity | None
    ) -> None: ...
    async def get_proposer(
        self, recipient: Identity, badge_type: BadgeType
    ) -> Identity | None: ...
    async def set_proposer(
        self, recipient: Identity, badge_type: BadgeType, proposer: Identity | None
    ) -> None: ...


class InMemoryBadgeRepo:
    def __init__(self) -> None:
        self._held: set[tuple[Identity, BadgeType]] = set()
        self._creators: dict[BadgeType, Identity] = {}
        self._proposals: dict[tuple[Identity, BadgeType], Identity] = {}

    async def has_badge(self, holder: Identity, badge_type: BadgeType) -> bool:
        return (holder, badge_type) in self._held

    async def set_held(self, holder: Identity, badge_type: BadgeType, held: bool) -> None:
        if held:
            self._held.add((holder, badge_type))
        else:
            self._held.discard((holder, badge_type))

    async def get_creator(self, badge_type: BadgeType) -> Identity | None:
        return self._creators.get(badge_type)

    async def set_creator(self, badge_type: BadgeType, creator: Identity | None) -> None:
        if creator is None:
            self._creators.pop(badge_type, None)
        else:
            self._creators[badge_type] = creator

    async def get_proposer(
        self, recipient: Identity, badge_type: BadgeType
    ) -> Identity | None:
        return self._proposals.get((recipient, badge_type))

    async def set_proposer(
        self, recipient: Identity, badge_type: BadgeType, proposer: Identity | None
    ) -> None:
        if proposer is None:
            self._proposals.pop((recipient, badge_type), None)
        else:
            self._proposals[(recipient, badge_type)] = proposer


class RedisBadgeRepo:
    """Redis-backed ledger mappings, shared across API instances.

    Holder state is one SET per holder so a holder's membership check is
    a single SISMEMBER.  Creators and proposals are plain string keys.
    """

    _PREFIX = "badges:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    def _held_key(self, holder: Identity) -> str:
        return f"{self._PREFIX}held:{holder}"

    def _creator_key(self, badge_type: BadgeType) -> str:
        return f"{self._PREFIX}creator:{badge_type}"

    def _proposal_key(self, recipient: Identity, badge_type: BadgeType) -> str:
        return f"{self._PREFIX}proposal:{recipient}:{badge_type}"

    async def has_badge(self, holder: Identity, badge_type: BadgeType) -> bool:
        return bool(await self._redis.sismember(self._held_key(holder), badge_type))

    async def set_held(self, holder: Identity, badge_type: BadgeType, held: bool) -> None:
        if held:
            await self._redis.sadd(self._held_key(holder), badge_type)
        else:
            await self._redis.srem(self._held_key(holder), badge_type)

    async def get_creator(self, badge_type: BadgeType) -> Identity | None:
        return await self._redis.get(self._creator_key(badge_type))

    async def set_creator(self, badge_type: BadgeType, creator: Identity | None) -> None:
        if creator is None:
            await self._redis.delete(self._creator_key(badge_type))
        else:
            await self._redis.set(self._creator_key(badge_type), creator)

    async def get_proposer(
        self, recipient: Identity, badge_type: BadgeType
    ) -> Identity | None:
        return await self._redis.get(self._proposal_key(recipient, badge_type))

    async def set_proposer(
        self, recipient: Identity, badge_type: BadgeType, proposer: Identity | None
    ) -> None:
        key = self._proposal_key(recipient, badge_type)
        if proposer is None:
            await self._redis.delete(key)
        else:
            await self._redis.set(key, proposer)
