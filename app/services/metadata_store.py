"""Generic key-value metadata store.

The ledger core never calls this directly.  The metadata extension
writes badge descriptors here, the enumeration extension mirrors each
holder's badge list here, and off-service indexers read it back through
GET /v1/metadata/{key}.

KEY SCHEME
-----------
Keys are deterministic and fixed-width (64 hex chars) so an indexer can
derive them without asking the service:

    sha256(namespace)[:20] + "0000" + identifier[:40]

For badge metadata the identifier is the badge type itself.  For
per-holder data the identifier is the SHA-256 of the holder identity,
since identities are arbitrary strings.

STAGING
--------
Every ledger operation writes through a StagedMetadataStore.  Writes
are buffered and become visible to later reads in the same operation,
but reach the real store only on commit().  An operation that aborts
calls discard() and leaves the store untouched.
"""

from __future__ import annotations

import hashlib
from typing import Protocol, runtime_checkable

from app.db.redis import redis_pool
from app.models.badge import BadgeType, Identity

METADATA_NAMESPACE = "BadgeMetadata"
HELD_BADGES_NAMESPACE = "BadgesHeld"
HELD_BADGE_INDEX_NAMESPACE = "BadgesHeldIndex"


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def mapping_key(namespace: str, identifier: str) -> str:
    return f"{_sha256_hex(namespace)[:20]}0000{identifier[:40]}"


def metadata_key(badge_type: BadgeType) -> str:
    return mapping_key(METADATA_NAMESPACE, badge_type)


def held_badges_key(holder: Identity) -> str:
    return mapping_key(HELD_BADGES_NAMESPACE, _sha256_hex(holder))


def held_badge_index_key(holder: Identity, badge_type: BadgeType) -> str:
    return mapping_key(HELD_BADGE_INDEX_NAMESPACE, _sha256_hex(f"{holder}:{badge_type}"))


@runtime_checkable
class MetadataStore(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a value.  Returns None when the key is absent."""
        ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryMetadataStore:
    """In-memory store for tests and local dev.

    The autouse fixture in conftest.py clears the store between tests.
    """

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)


class RedisMetadataStore:
    """Redis-backed store, shared across all API instances and the worker."""

    _PREFIX = "meta:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(f"{self._PREFIX}{key}", value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")


class StagedMetadataStore:
    """Write buffer over a MetadataStore for the span of one operation."""

    def __init__(self, backend: MetadataStore) -> None:
        self._backend = backend
        # None marks a staged delete.
        self._pending: dict[str, str | None] = {}

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending)

    async def get(self, key: str) -> str | None:
        if key in self._pending:
            return self._pending[key]
        return await self._backend.get(key)

    async def set(self, key: str, value: str) -> None:
        self._pending[key] = value

    async def delete(self, key: str) -> None:
        self._pending[key] = None

    async def commit(self) -> None:
        for key, value in self._pending.items():
            if value is None:
                await self._backend.delete(key)
            else:
                await self._backend.set(key, value)
        self._pending.clear()

    def discard(self) -> None:
        self._pending.clear()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    metadata_store: MetadataStore = RedisMetadataStore(redis_pool)
else:
    metadata_store = InMemoryMetadataStore()
