"""Payee account provisioning endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from minerpay.db import get_db
from minerpay.schemas.payee import OnboardingLinkCreate, OnboardingLinkRead, PayeeAccountCreate, PayeeAccountRead
from minerpay.services import payees as payees_service

router = APIRouter(prefix="/payee-accounts", tags=["payees"])


@router.post("", response_model=PayeeAccountRead, status_code=status.HTTP_201_CREATED)
def provision_payee_account(payload: PayeeAccountCreate, db: Session = Depends(get_db)) -> PayeeAccountRead:
    """Create or reuse the owner's connected account."""

    result = payees_service.provision_payee_account(
        db,
        owner_id=payload.payee_id,
        email=payload.email,
        display_name=payload.display_name,
        country=payload.country,
    )
    return PayeeAccountRead(
        external_account_id=result.account.external_account_id,
        charges_enabled=result.charges_enabled,
        payouts_enabled=result.payouts_enabled,
        details_submitted=result.details_submitted,
        reused=result.reused,
    )


@router.post("/{account_id}/onboarding-link", response_model=OnboardingLinkRead)
def create_onboarding_link(
    account_id: str,
    payload: OnboardingLinkCreate | None = None,
    db: Session = Depends(get_db),
) -> OnboardingLinkRead:
    payload = payload or OnboardingLinkCreate()
    link = payees_service.create_onboarding_link(
        db, account_id, refresh_url=payload.refresh_url, return_url=payload.return_url
    )
    return OnboardingLinkRead(onboarding_url=link.url, expires_at=link.expires_at)
