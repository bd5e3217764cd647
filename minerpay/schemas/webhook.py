"""Webhook acknowledgement schema."""
from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: bool = True
    event_id: str | None = None
    handled: bool = False
    duplicate: bool = False
