"""Assembly of the badge ledger and its extensions.

Everything is wired once, at import, from SETTINGS.  The hook chains
are fixed here and nowhere else:

  after_award:   enumeration (critical) -> notification (best-effort)
  after_return:  enumeration (critical)

Critical handlers come first so a best-effort side effect (a webhook
call) never goes out for an award that a later critical handler aborts.
"""

from __future__ import annotations

import logging

from app.core.config import SETTINGS, Settings
from app.db.redis import redis_pool
from app.repos.badge_repo import BadgeRepo, InMemoryBadgeRepo, RedisBadgeRepo
from app.services.authorization import (
    AuthorizationDelegate,
    AuthorizationPolicy,
    DelegatedAuthorizationPolicy,
    HttpAuthorizationDelegate,
    OwnerAuthorizationPolicy,
    OwnerResolver,
    StaticOwnerResolver,
)
from app.services.badge_ledger import BadgeLedger
from app.services.badge_metadata import BadgeMetadataExtension
from app.services.enumeration import EnumerationExtension
from app.services.event_log import EventLog, enqueue_badge_event
from app.services.hooks import HookPipeline, chain
from app.services.metadata_store import MetadataStore, metadata_store
from app.services.notification import (
    NotificationDirectory,
    NotificationExtension,
    default_directory,
)

logger = logging.getLogger(__name__)


def build_policy(
    settings: Settings,
    owners: OwnerResolver,
    delegates: dict[str, AuthorizationDelegate] | None = None,
) -> AuthorizationPolicy:
    if not settings.uses_delegated_authz:
        return OwnerAuthorizationPolicy(owners)

    if delegates is None:
        delegates = {}
        if settings.authz_delegate_url:
            delegates[owners.current_owner()] = HttpAuthorizationDelegate(
                settings.authz_delegate_url,
                timeout=settings.authz_delegate_timeout_seconds,
            )
        else:
            logger.warning(
                "AUTHZ_MODE=delegated without AUTHZ_DELEGATE_URL, owner-only awards"
            )
    return DelegatedAuthorizationPolicy(owners, delegates)


def build_ledger(
    *,
    repo: BadgeRepo,
    store: MetadataStore,
    policy: AuthorizationPolicy,
    enumeration: EnumerationExtension | None = None,
    notification: NotificationExtension | None = None,
    events: EventLog | None = None,
) -> BadgeLedger:
    """Build a ledger with whichever extensions are passed in."""
    hooks = HookPipeline(
        after_award=chain(
            enumeration.award_handler() if enumeration else None,
            notification.award_handler() if notification else None,
        ),
        after_return=chain(
            enumeration.return_handler() if enumeration else None,
        ),
    )
    return BadgeLedger(repo, policy, store, hooks=hooks, events=events)


# ---------------------------------------------------------------------------
# Module-level singletons
# ---------------------------------------------------------------------------

owner_resolver = StaticOwnerResolver(SETTINGS.badge_owner)
authorization_policy = build_policy(SETTINGS, owner_resolver)

if redis_pool is not None:
    badge_repo: BadgeRepo = RedisBadgeRepo(redis_pool)
else:
    badge_repo = InMemoryBadgeRepo()

notification_directory: NotificationDirectory = default_directory(
    SETTINGS.notify_timeout_seconds
)

event_log = EventLog()
event_log.subscribe(enqueue_badge_event)

enumeration = EnumerationExtension(metadata_store)
badge_metadata = BadgeMetadataExtension(authorization_policy, metadata_store)

ledger = build_ledger(
    repo=badge_repo,
    store=metadata_store,
    policy=authorization_policy,
    enumeration=enumeration,
    notification=NotificationExtension(notification_directory),
    events=event_log,
)
