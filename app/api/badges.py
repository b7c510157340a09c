"""Badge ledger endpoints.

- POST /v1/badges/{type}/award      owner (or delegate-approved) awards
- POST /v1/badges/{type}/propose    owner proposes; recipient must claim
- POST /v1/badges/{type}/claim      recipient accepts their own proposal
- POST /v1/badges/{type}/return     holder gives their own badge back
- PUT  /v1/badges/{type}/metadata   owner sets the type's descriptor
- GET  /v1/badges/{type}/holders/{holder}       public query
- GET  /v1/badges/{type}/proposals/{recipient}  public query
- GET  /v1/badges/{type}/creator                public query

The caller identity is always the bearer token's subject.  Claim and
return take no identity in the body: nobody claims or returns on
someone else's behalf.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel

from app.api.dependencies import require_user
from app.models.badge import BADGE_TYPE_PATTERN
from app.models.principal import Principal
from app.services.badge_ledger import (
    AlreadyHeldError,
    BadgeError,
    InvalidRecipientError,
    NotHolderError,
    NotProposedError,
    UnauthorizedError,
)
from app.services.badges import badge_metadata, ledger

router = APIRouter(prefix="/v1/badges", tags=["badges"])

BadgeTypePath = Annotated[str, Path(pattern=BADGE_TYPE_PATTERN)]

_ERROR_STATUS: dict[type[BadgeError], int] = {
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    InvalidRecipientError: 422,
    AlreadyHeldError: status.HTTP_409_CONFLICT,
    NotProposedError: status.HTTP_404_NOT_FOUND,
    NotHolderError: status.HTTP_409_CONFLICT,
}


def _http_error(e: BadgeError) -> HTTPException:
    return HTTPException(
        status_code=_ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST),
        detail=str(e),
    )


class RecipientIn(BaseModel):
    recipient: str


class MetadataIn(BaseModel):
    metadata: Any


class AwardOut(BaseModel):
    badge_type: str
    recipient: str
    credited: str


class ProposalOut(BaseModel):
    badge_type: str
    recipient: str
    proposer: str


class ClaimOut(BaseModel):
    badge_type: str
    claimer: str


class ReturnOut(BaseModel):
    badge_type: str
    holder: str


class HoldingOut(BaseModel):
    badge_type: str
    holder: str
    held: bool


class ProposalStatusOut(BaseModel):
    badge_type: str
    recipient: str
    proposed: bool


class CreatorOut(BaseModel):
    badge_type: str
    creator: str


class MetadataOut(BaseModel):
    badge_type: str
    key: str


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post(
    "/{badge_type}/award",
    response_model=AwardOut,
    status_code=status.HTTP_201_CREATED,
)
async def award_badge(
    badge_type: BadgeTypePath,
    body: RecipientIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AwardOut:
    try:
        event = await ledger.award(principal.user_id, body.recipient, badge_type)
    except BadgeError as e:
        raise _http_error(e) from None
    return AwardOut(**asdict(event))


@router.post(
    "/{badge_type}/propose",
    response_model=ProposalOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def propose_badge(
    badge_type: BadgeTypePath,
    body: RecipientIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProposalOut:
    """Offer a badge; it is recorded only once the recipient claims it.

    202 rather than 201: nothing is held yet.  Proposing again before
    the recipient claims replaces the proposer.
    """
    try:
        event = await ledger.propose(principal.user_id, body.recipient, badge_type)
    except BadgeError as e:
        raise _http_error(e) from None
    return ProposalOut(**asdict(event))


@router.post("/{badge_type}/claim", response_model=ClaimOut)
async def claim_badge(
    badge_type: BadgeTypePath,
    principal: Annotated[Principal, Depends(require_user)],
) -> ClaimOut:
    try:
        event = await ledger.claim(principal.user_id, badge_type)
    except BadgeError as e:
        raise _http_error(e) from None
    return ClaimOut(**asdict(event))


@router.post("/{badge_type}/return", response_model=ReturnOut)
async def return_badge(
    badge_type: BadgeTypePath,
    principal: Annotated[Principal, Depends(require_user)],
) -> ReturnOut:
    try:
        event = await ledger.return_badge(principal.user_id, badge_type)
    except BadgeError as e:
        raise _http_error(e) from None
    return ReturnOut(**asdict(event))


@router.put("/{badge_type}/metadata", response_model=MetadataOut)
async def set_badge_metadata(
    badge_type: BadgeTypePath,
    body: MetadataIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> MetadataOut:
    try:
        key = await badge_metadata.set_metadata(principal.user_id, badge_type, body.metadata)
    except BadgeError as e:
        raise _http_error(e) from None
    return MetadataOut(badge_type=badge_type, key=key)


# ---------------------------------------------------------------------------
# Queries (public, like credential verification)
# ---------------------------------------------------------------------------


@router.get("/{badge_type}/holders/{holder}", response_model=HoldingOut)
async def get_holding(badge_type: BadgeTypePath, holder: str) -> HoldingOut:
    return HoldingOut(
        badge_type=badge_type,
        holder=holder,
        held=await ledger.has_badge(holder, badge_type),
    )


@router.get("/{badge_type}/proposals/{recipient}", response_model=ProposalStatusOut)
async def get_proposal_status(
    badge_type: BadgeTypePath, recipient: str
) -> ProposalStatusOut:
    return ProposalStatusOut(
        badge_type=badge_type,
        recipient=recipient,
        proposed=await ledger.is_proposed(recipient, badge_type),
    )


@router.get("/{badge_type}/creator", response_model=CreatorOut)
async def get_creator(badge_type: BadgeTypePath) -> CreatorOut:
    creator = await ledger.creator_of(badge_type)
    if creator is None:
        raise HTTPException(status_code=404, detail="badge type has no creator yet")
    return CreatorOut(badge_type=badge_type, creator=creator)
