"""Holder enumeration: GET /v1/holders/{holder}/badges.

Order is award order until the holder returns a badge; a return moves
the last badge into the freed slot.
"""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from app.services.badges import enumeration

router = APIRouter(prefix="/v1/holders", tags=["holders"])


class HeldBadgesOut(BaseModel):
    holder: str
    badges: list[str]


@router.get("/{holder}/badges", response_model=HeldBadgesOut)
async def list_held_badges(holder: str) -> HeldBadgesOut:
    return HeldBadgesOut(holder=holder, badges=await enumeration.badges_of(holder))
