"""Recipient notification targets.

- PUT    /v1/notifications/webhook   register (or replace) my webhook
- DELETE /v1/notifications/webhook   stop notifying me

URLs aimed at loopback, private or link-local hosts are refused with
422.  Capabilities are declared by the recipient.  Omitting badges:received
registers a target that will not be notified of awards.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field, field_validator

from app.api.dependencies import require_user
from app.models.principal import Principal
from app.services.badges import notification_directory
from app.services.notification import BADGE_RECEIVED, check_webhook_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


class WebhookIn(BaseModel):
    url: str = Field(pattern=r"^https?://")
    capabilities: list[str] = Field(default_factory=lambda: [BADGE_RECEIVED])

    @field_validator("url")
    @classmethod
    def _public_host(cls, url: str) -> str:
        return check_webhook_url(url)


class WebhookOut(BaseModel):
    identity: str
    url: str
    capabilities: list[str]


@router.put("/webhook", response_model=WebhookOut)
async def register_webhook(
    body: WebhookIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> WebhookOut:
    capabilities = frozenset(body.capabilities)
    await notification_directory.register(principal.user_id, body.url, capabilities)
    logger.info("Webhook registered for user=%s", principal.user_id)
    return WebhookOut(
        identity=principal.user_id, url=body.url, capabilities=sorted(capabilities)
    )


@router.delete("/webhook", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_webhook(
    principal: Annotated[Principal, Depends(require_user)],
) -> Response:
    if not await notification_directory.unregister(principal.user_id):
        raise HTTPException(status_code=404, detail="no webhook registered")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
