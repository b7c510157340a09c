"""Per-holder badge enumeration.

The ledger answers "does X hold T?" but not "what does X hold?".  This
extension keeps that list in the metadata store, driven purely by the
hook pipeline:

  held_badges_key(holder)              JSON array of badge types
  held_badge_index_key(holder, type)   position of type in that array

Removal is swap-with-last then truncate, so it costs O(1) whatever the
list length.  The price is that order is only insertion order until the
first return.

Both handlers are critical.  If either fails, the triggering award,
claim or return is aborted, so the list never disagrees with the
ledger's holder state.
"""

from __future__ import annotations

import json

from app.models.badge import BadgeType, Identity
from app.services.hooks import HookContext, HookHandler
from app.services.metadata_store import (
    MetadataStore,
    held_badge_index_key,
    held_badges_key,
)


class EnumerationCorruptedError(RuntimeError):
    """The stored list and its index disagree with the transition."""


async def _load(store: MetadataStore, holder: Identity) -> list[BadgeType]:
    raw = await store.get(held_badges_key(holder))
    return json.loads(raw) if raw else []


class EnumerationExtension:
    def __init__(self, store: MetadataStore) -> None:
        # Reads outside an operation go straight to the store; inside an
        # operation the handlers use the staged store from the context.
        self._store = store

    async def badges_of(self, holder: Identity) -> list[BadgeType]:
        return await _load(self._store, holder)

    async def on_award(self, ctx: HookContext) -> None:
        index_key = held_badge_index_key(ctx.holder, ctx.badge_type)
        if await ctx.store.get(index_key) is not None:
            raise EnumerationCorruptedError(
                f"{ctx.badge_type} already enumerated for {ctx.holder!r}"
            )

        badges = await _load(ctx.store, ctx.holder)
        badges.append(ctx.badge_type)
        await ctx.store.set(index_key, str(len(badges) - 1))
        await ctx.store.set(held_badges_key(ctx.holder), json.dumps(badges))

    async def on_return(self, ctx: HookContext) -> None:
        index_key = held_badge_index_key(ctx.holder, ctx.badge_type)
        raw_position = await ctx.store.get(index_key)
        badges = await _load(ctx.store, ctx.holder)
        if raw_position is None:
            raise EnumerationCorruptedError(
                f"{ctx.badge_type} not enumerated for {ctx.holder!r}"
            )

        position = int(raw_position)
        if position >= len(badges) or badges[position] != ctx.badge_type:
            raise EnumerationCorruptedError(
                f"index for {ctx.badge_type} points at {position}, list has {len(badges)}"
            )

        last = badges[-1]
        if last != ctx.badge_type:
            badges[position] = last
            await ctx.store.set(held_badge_index_key(ctx.holder, last), str(position))
        badges.pop()

        await ctx.store.delete(index_key)
        await ctx.store.set(held_badges_key(ctx.holder), json.dumps(badges))

    def award_handler(self) -> HookHandler:
        return HookHandler(name="enumeration", fn=self.on_award, critical=True)

    def return_handler(self) -> HookHandler:
        return HookHandler(name="enumeration", fn=self.on_return, critical=True)
