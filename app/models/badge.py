from __future__ import annotations

import hashlib
import re

# Identities are opaque strings (the JWT subject).  The empty string is
# the null identity; surrounding whitespace does not make it non-null.
Identity = str
NULL_IDENTITY: Identity = ""

# A badge type is a 256-bit identifier rendered as lowercase hex.
BadgeType = str
BADGE_TYPE_PATTERN = r"^[0-9a-f]{64}$"
_BADGE_TYPE_RE = re.compile(BADGE_TYPE_PATTERN)


def is_null_identity(identity: Identity | None) -> bool:
    return identity is None or not identity.strip()


def parse_badge_type(value: str) -> BadgeType:
    """Normalize and validate a badge type identifier.

    Accepts an optional ``0x`` prefix and upper-case hex.
    Raises ValueError for anything that is not 32 bytes of hex.
    """
    normalized = value.strip().lower()
    if normalized.startswith("0x"):
        normalized = normalized[2:]
    if not _BADGE_TYPE_RE.match(normalized):
        raise ValueError(f"badge type must be 64 hex characters (got {value!r})")
    return normalized


def badge_type_for(name: str) -> BadgeType:
    """Derive a badge type identifier from a human-readable name."""
    return hashlib.sha256(name.encode("utf-8")).hexdigest()
