"""Badge metadata: a descriptor per badge type, kept in the metadata store.

Writes are gated by the same AuthorizationPolicy as award and propose.
There is no dedicated read path; indexers derive metadata_key(type) and
query the store, typically after seeing a BadgeAwarded or BadgeClaimed
event.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from app.core.metrics import BADGE_OPERATIONS
from app.models.badge import BadgeType, Identity, parse_badge_type
from app.services.authorization import AuthorizationPolicy
from app.services.badge_ledger import UnauthorizedError
from app.services.metadata_store import MetadataStore, metadata_key

logger = logging.getLogger(__name__)


class BadgeMetadataExtension:
    def __init__(self, policy: AuthorizationPolicy, store: MetadataStore) -> None:
        self._policy = policy
        self._store = store

    async def set_metadata(
        self, caller: Identity, badge_type: BadgeType, blob: Any
    ) -> str:
        """Store ``blob`` (any JSON value) for the badge type; return its key."""
        badge_type = parse_badge_type(badge_type)
        if not await self._policy.authorize(caller):
            BADGE_OPERATIONS.labels(
                operation="set_metadata", outcome="UnauthorizedError"
            ).inc()
            logger.warning(
                "Rejected set_metadata: caller=%s not authorized",
                caller,
                extra={"caller": caller, "badge_type": badge_type},
            )
            raise UnauthorizedError(caller)

        key = metadata_key(badge_type)
        await self._store.set(key, json.dumps(blob, sort_keys=True))
        BADGE_OPERATIONS.labels(operation="set_metadata", outcome="ok").inc()
        logger.info(
            "Metadata set for badge=%s key=%s",
            badge_type,
            key,
            extra={"caller": caller, "badge_type": badge_type},
        )
        return key

    async def get_metadata(self, badge_type: BadgeType) -> Any | None:
        raw = await self._store.get(metadata_key(parse_badge_type(badge_type)))
        return json.loads(raw) if raw is not None else None
