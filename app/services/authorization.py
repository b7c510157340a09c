"""Who may award badges.

The ledger consults exactly one AuthorizationPolicy, chosen when the
ledger is built, before award, propose and set_metadata.  Claim and
return never consult it: accepting or giving back a badge is the
holder's own business.

Two policies:

  OwnerAuthorizationPolicy: caller must be the designated owner.

  DelegatedAuthorizationPolicy: if the owner identity is backed by an
    AuthorizationDelegate (a permission manager acting for the owner),
    ask it whether the caller holds the CAN_AWARD_BADGES capability.
    If the delegate cannot be reached or answers garbage, fall back to
    caller == owner.  The fallback never grants more than the plain
    owner policy would.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from app.core.metrics import DELEGATE_QUERIES
from app.models.badge import Identity
from app.services.boundary import call_boundary

logger = logging.getLogger(__name__)

CAN_AWARD_BADGES = "badges:award"


class OwnerResolver(Protocol):
    def current_owner(self) -> Identity: ...


class StaticOwnerResolver:
    """Owner fixed at startup (BADGE_OWNER)."""

    def __init__(self, owner: Identity) -> None:
        self._owner = owner

    def current_owner(self) -> Identity:
        return self._owner


@runtime_checkable
class AuthorizationPolicy(Protocol):
    async def authorize(self, caller: Identity) -> bool: ...


class OwnerAuthorizationPolicy:
    def __init__(self, owners: OwnerResolver) -> None:
        self._owners = owners

    async def authorize(self, caller: Identity) -> bool:
        return caller == self._owners.current_owner()


# ---------------------------------------------------------------------------
# Delegates
# ---------------------------------------------------------------------------


class AuthorizationDelegate(Protocol):
    async def has_capability(self, caller: Identity, capability: str) -> bool: ...


class StaticAuthorizationDelegate:
    """In-process delegate with a fixed grant table."""

    def __init__(self, grants: Mapping[Identity, Iterable[str]] | None = None) -> None:
        self._grants: dict[Identity, set[str]] = {
            identity: set(caps) for identity, caps in (grants or {}).items()
        }

    def grant(self, caller: Identity, capability: str) -> None:
        self._grants.setdefault(caller, set()).add(capability)

    def revoke(self, caller: Identity, capability: str) -> None:
        self._grants.get(caller, set()).discard(capability)

    async def has_capability(self, caller: Identity, capability: str) -> bool:
        return capability in self._grants.get(caller, set())


class HttpAuthorizationDelegate:
    """Remote permission manager.

    GET {base_url}/permissions/{caller}/{capability} -> {"granted": bool}
    Both path segments are percent-encoded, so no caller identity can
    change the request target.
    Any non-2xx status or a body without a boolean "granted" raises, which
    the delegated policy treats as "delegate unavailable".
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def has_capability(self, caller: Identity, capability: str) -> bool:
        url = (
            f"{self._base_url}/permissions/"
            f"{quote(caller, safe='')}/{quote(capability, safe='')}"
        )
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            granted = resp.json().get("granted")
        if not isinstance(granted, bool):
            raise ValueError(f"delegate returned non-boolean grant: {granted!r}")
        return granted


class DelegatedAuthorizationPolicy:
    def __init__(
        self,
        owners: OwnerResolver,
        delegates: Mapping[Identity, AuthorizationDelegate],
    ) -> None:
        self._owners = owners
        self._delegates = delegates

    async def authorize(self, caller: Identity) -> bool:
        owner = self._owners.current_owner()
        delegate = self._delegates.get(owner)
        if delegate is None:
            return caller == owner

        result = await call_boundary(
            f"delegate:{owner}", delegate.has_capability(caller, CAN_AWARD_BADGES)
        )
        if not result.ok:
            DELEGATE_QUERIES.labels(result="fallback").inc()
            logger.warning(
                "Delegate for owner=%s unavailable, requiring caller == owner",
                owner,
                extra={"caller": caller},
            )
            return caller == owner

        DELEGATE_QUERIES.labels(result="granted" if result.value else "denied").inc()
        return bool(result.value)
