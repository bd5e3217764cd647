"""Payee account schemas."""
from datetime import datetime

from pydantic import BaseModel, Field


class PayeeAccountCreate(BaseModel):
    payee_id: int
    email: str = Field(min_length=3, max_length=255)
    display_name: str | None = Field(default=None, max_length=255)
    country: str | None = Field(default=None, min_length=2, max_length=2)


class PayeeAccountRead(BaseModel):
    external_account_id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    reused: bool = False


class OnboardingLinkCreate(BaseModel):
    refresh_url: str | None = Field(default=None, max_length=2048)
    return_url: str | None = Field(default=None, max_length=2048)


class OnboardingLinkRead(BaseModel):
    onboarding_url: str
    expires_at: datetime | None = None
