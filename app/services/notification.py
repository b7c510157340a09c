"""Best-effort recipient notification.

A recipient opts in by registering a notification target (a webhook)
and declaring which notification types it accepts.  On every award or
claim the extension looks the recipient up and, if the target accepts
BADGE_RECEIVED, delivers:

    {"type": "badges:received",
     "payload": {"badge_type": "<hex>", "from": "<awarder or proposer>"}}

Nothing here can fail the award.  Lookup and delivery both go through
call_boundary, and the hook is registered as best-effort on top of that.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import logging
from typing import Protocol
from urllib.parse import urlsplit

import httpx

from app.core.metrics import NOTIFICATIONS
from app.db.redis import redis_pool
from app.models.badge import Identity
from app.services.boundary import call_boundary
from app.services.hooks import HookContext, HookHandler

logger = logging.getLogger(__name__)

BADGE_RECEIVED = "badges:received"


class UnsafeWebhookError(ValueError):
    """The webhook URL points at a host the service must not call."""


def _is_public(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return address.is_global and not address.is_multicast


def check_webhook_url(url: str) -> str:
    """Reject URLs aimed at loopback, private or link-local hosts.

    IP literals and localhost names are refused here.  Other host names
    are resolved and checked again on every delivery.
    """
    parts = urlsplit(url)
    host = parts.hostname
    if parts.scheme not in ("http", "https") or not host:
        raise UnsafeWebhookError("webhook URL must be http(s) with a host")
    if host == "localhost" or host.endswith(".localhost"):
        raise UnsafeWebhookError(f"webhook host {host!r} is not public")
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return url
    if not _is_public(address):
        raise UnsafeWebhookError(f"webhook host {host!r} is not public")
    return url


async def _require_public_host(url: str) -> None:
    host = urlsplit(check_webhook_url(url)).hostname
    infos = await asyncio.get_running_loop().getaddrinfo(host, None)
    for *_, sockaddr in infos:
        if not _is_public(ipaddress.ip_address(sockaddr[0])):
            raise UnsafeWebhookError(f"webhook host {host!r} resolves to {sockaddr[0]}")


class NotificationTarget(Protocol):
    @property
    def capabilities(self) -> frozenset[str]: ...

    async def notify(self, type_tag: str, payload: dict) -> None: ...


class WebhookNotificationTarget:
    def __init__(
        self, url: str, capabilities: frozenset[str], *, timeout: float = 2.0
    ) -> None:
        self.url = url
        self._capabilities = capabilities
        self._timeout = timeout

    @property
    def capabilities(self) -> frozenset[str]:
        return self._capabilities

    async def notify(self, type_tag: str, payload: dict) -> None:
        await _require_public_host(self.url)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(self.url, json={"type": type_tag, "payload": payload})
            resp.raise_for_status()


# ---------------------------------------------------------------------------
# Directory: identity -> registered target
# ---------------------------------------------------------------------------


class NotificationDirectory(Protocol):
    async def lookup(self, identity: Identity) -> NotificationTarget | None: ...
    async def register(
        self, identity: Identity, url: str, capabilities: frozenset[str]
    ) -> None: ...
    async def unregister(self, identity: Identity) -> bool: ...


class InMemoryNotificationDirectory:
    def __init__(self, *, timeout: float = 2.0) -> None:
        self._targets: dict[Identity, NotificationTarget] = {}
        self._timeout = timeout

    def add_target(self, identity: Identity, target: NotificationTarget) -> None:
        self._targets[identity] = target

    async def lookup(self, identity: Identity) -> NotificationTarget | None:
        return self._targets.get(identity)

    async def register(
        self, identity: Identity, url: str, capabilities: frozenset[str]
    ) -> None:
        check_webhook_url(url)
        self._targets[identity] = WebhookNotificationTarget(
            url, capabilities, timeout=self._timeout
        )

    async def unregister(self, identity: Identity) -> bool:
        return self._targets.pop(identity, None) is not None


class RedisNotificationDirectory:
    _PREFIX = "notify:target:"

    def __init__(self, redis_client, *, timeout: float = 2.0) -> None:
        self._redis = redis_client
        self._timeout = timeout

    async def lookup(self, identity: Identity) -> NotificationTarget | None:
        raw = await self._redis.get(f"{self._PREFIX}{identity}")
        if raw is None:
            return None
        data = json.loads(raw)
        return WebhookNotificationTarget(
            data["url"], frozenset(data["capabilities"]), timeout=self._timeout
        )

    async def register(
        self, identity: Identity, url: str, capabilities: frozenset[str]
    ) -> None:
        check_webhook_url(url)
        await self._redis.set(
            f"{self._PREFIX}{identity}",
            json.dumps({"url": url, "capabilities": sorted(capabilities)}),
        )

    async def unregister(self, identity: Identity) -> bool:
        return bool(await self._redis.delete(f"{self._PREFIX}{identity}"))


# ---------------------------------------------------------------------------
# Extension
# ---------------------------------------------------------------------------


class NotificationExtension:
    def __init__(self, directory: NotificationDirectory) -> None:
        self._directory = directory

    async def on_award(self, ctx: HookContext) -> None:
        found = await call_boundary(
            f"directory:{ctx.holder}", self._directory.lookup(ctx.holder)
        )
        target = found.value if found.ok else None
        if target is None:
            NOTIFICATIONS.labels(result="no_target").inc()
            return
        if BADGE_RECEIVED not in target.capabilities:
            NOTIFICATIONS.labels(result="unsupported").inc()
            logger.debug("Recipient %s does not accept %s", ctx.holder, BADGE_RECEIVED)
            return

        sent = await call_boundary(
            f"notify:{ctx.holder}",
            target.notify(
                BADGE_RECEIVED, {"badge_type": ctx.badge_type, "from": ctx.credited}
            ),
        )
        if sent.ok:
            NOTIFICATIONS.labels(result="delivered").inc()
        else:
            NOTIFICATIONS.labels(result="failed").inc()
            logger.warning(
                "Notification to %s dropped",
                ctx.holder,
                extra={"holder": ctx.holder, "badge_type": ctx.badge_type},
            )

    def award_handler(self) -> HookHandler:
        return HookHandler(name="notification", fn=self.on_award, critical=False)


def default_directory(timeout: float) -> NotificationDirectory:
    if redis_pool is not None:
        return RedisNotificationDirectory(redis_pool, timeout=timeout)
    return InMemoryNotificationDirectory(timeout=timeout)
