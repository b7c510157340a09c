from __future__ import annotations

from dataclasses import dataclass

from app.models.badge import Identity


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller extracted from a validated JWT.

    ``user_id`` is the token subject and doubles as the ledger Identity.
    """

    user_id: Identity
    roles: frozenset[str]
