"""Gateway webhook endpoint."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from minerpay.core.exceptions import DuplicateEvent
from minerpay.db import get_db
from minerpay.schemas.webhook import WebhookAck
from minerpay.services import webhook_handlers  # noqa: F401  registers handlers
from minerpay.services import webhooks as webhooks_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def receive_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    """Accept a signed gateway event.

    Processed and intentionally ignored events both return 200; verification
    or handler failures return non-2xx so the gateway redelivers.
    """

    raw_body = await request.body()
    try:
        result = webhooks_service.ingest_webhook(db, raw_body, request.headers.get("Stripe-Signature"))
    except DuplicateEvent as exc:
        return WebhookAck(event_id=exc.event_id, handled=exc.handled, duplicate=True)
    return WebhookAck(event_id=result.event_id, handled=result.handled)
