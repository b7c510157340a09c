from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Union

from app.models.badge import BadgeType, Identity


@dataclass(frozen=True, slots=True)
class BadgeAwarded:
    """A badge was recorded against a recipient by direct award."""

    badge_type: BadgeType
    recipient: Identity
    credited: Identity  # the awarder

    name = "BadgeAwarded"


@dataclass(frozen=True, slots=True)
class BadgeProposed:
    badge_type: BadgeType
    recipient: Identity
    proposer: Identity

    name = "BadgeProposed"


@dataclass(frozen=True, slots=True)
class BadgeClaimed:
    badge_type: BadgeType
    claimer: Identity

    name = "BadgeClaimed"


@dataclass(frozen=True, slots=True)
class BadgeReturned:
    badge_type: BadgeType
    holder: Identity

    name = "BadgeReturned"


BadgeEvent = Union[BadgeAwarded, BadgeProposed, BadgeClaimed, BadgeReturned]

_EVENT_TYPES: dict[str, type] = {
    cls.name: cls
    for cls in (BadgeAwarded, BadgeProposed, BadgeClaimed, BadgeReturned)
}


def event_to_payload(event: BadgeEvent) -> dict:
    """Flatten an event into a JSON-serializable task payload."""
    return {"event": event.name, **asdict(event)}


def event_from_payload(payload: dict) -> BadgeEvent:
    data = dict(payload)
    name = data.pop("event", None)
    cls = _EVENT_TYPES.get(name)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(f"unknown badge event {name!r}")
    return cls(**data)
