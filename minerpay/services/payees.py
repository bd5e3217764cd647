"""Payee Account Provisioner.

Creates (or reuses) an owner's connected account and hands out onboarding
links. Capability flags are persisted as false here and are only ever raised
by the ``account.updated`` webhook handler.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from minerpay.config import get_settings
from minerpay.core.exceptions import PersistenceError, RecordNotFoundError, ValidationError
from minerpay.models import PayeeAccount, User
from minerpay.services.gateway import StripeGateway
from minerpay.utils.audit import log_audit

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    account: PayeeAccount
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    reused: bool


@dataclass
class OnboardingLink:
    url: str
    expires_at: datetime | None


def _reused(account: PayeeAccount) -> ProvisionResult:
    return ProvisionResult(
        account=account,
        charges_enabled=account.charges_enabled,
        payouts_enabled=account.payout_enabled,
        details_submitted=account.details_submitted,
        reused=True,
    )


def get_by_owner(db: Session, owner_id: int) -> PayeeAccount | None:
    return db.scalars(select(PayeeAccount).where(PayeeAccount.owner_id == owner_id)).first()


def get_by_external_id(db: Session, external_account_id: str) -> PayeeAccount | None:
    return db.scalars(
        select(PayeeAccount).where(PayeeAccount.external_account_id == external_account_id)
    ).first()


def _validate(db: Session, *, owner_id: int, email: str, country: str) -> None:
    local, _, domain = (email or "").strip().partition("@")
    if not local or "." not in domain:
        raise ValidationError("A valid e-mail is required.", details={"field": "email"})
    if len(country) != 2 or not country.isalpha():
        raise ValidationError("Country must be a two-letter ISO code.", details={"country": country})
    if db.get(User, owner_id) is None:
        raise ValidationError("Unknown payee.", details={"payee_id": owner_id})


def provision_payee_account(
    db: Session,
    *,
    owner_id: int,
    email: str,
    display_name: str | None = None,
    country: str | None = None,
) -> ProvisionResult:
    """Return the owner's connected account, creating it on first call."""

    settings = get_settings()
    country = (country or settings.CONNECT_DEFAULT_COUNTRY).upper()
    _validate(db, owner_id=owner_id, email=email, country=country)

    existing = get_by_owner(db, owner_id)
    if existing is not None:
        logger.info(
            "Reusing payee account",
            extra={"owner_id": owner_id, "external_account_id": existing.external_account_id},
        )
        return _reused(existing)

    gateway = StripeGateway(settings)
    account = gateway.create_payee_account(
        owner_id=owner_id, email=email.strip(), display_name=display_name, country=country
    )

    payee = PayeeAccount(
        owner_id=owner_id,
        external_account_id=account.id,
        email=email.strip(),
        display_name=display_name,
        country=country,
        payout_enabled=False,
        bank_verified=False,
        charges_enabled=False,
        details_submitted=False,
    )
    try:
        db.add(payee)
        db.flush()
        log_audit(
            db,
            actor=f"owner:{owner_id}",
            action="PAYEE_ACCOUNT_CREATED",
            entity="PayeeAccount",
            entity_id=payee.id,
            data={"external_account_id": account.id, "email": payee.email, "country": country},
        )
        db.commit()
    except IntegrityError:
        # Concurrent provisioning for the same owner committed first.
        db.rollback()
        winner = get_by_owner(db, owner_id)
        if winner is None:
            logger.error(
                "Payee account created but not recorded",
                extra={"reconciliation_candidate": True, "owner_id": owner_id, "external_account_id": account.id},
            )
            raise PersistenceError(
                "Failed to record payee account.",
                external_ids={"owner_id": owner_id, "external_account_id": account.id},
            )
        if winner.external_account_id != account.id:
            logger.warning(
                "Discarding duplicate connected account",
                extra={
                    "reconciliation_candidate": True,
                    "owner_id": owner_id,
                    "kept_account_id": winner.external_account_id,
                    "orphan_account_id": account.id,
                },
            )
        return _reused(winner)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Payee account created but not recorded",
            extra={"reconciliation_candidate": True, "owner_id": owner_id, "external_account_id": account.id},
        )
        raise PersistenceError(
            "Failed to record payee account.",
            external_ids={"owner_id": owner_id, "external_account_id": account.id},
        ) from exc

    logger.info("Payee account provisioned", extra={"owner_id": owner_id, "external_account_id": account.id})
    return ProvisionResult(
        account=payee,
        charges_enabled=bool(getattr(account, "charges_enabled", False)),
        payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
        details_submitted=bool(getattr(account, "details_submitted", False)),
        reused=False,
    )


def create_onboarding_link(
    db: Session,
    external_account_id: str,
    *,
    refresh_url: str | None = None,
    return_url: str | None = None,
) -> OnboardingLink:
    """Generate a time-bound onboarding link for a provisioned account."""

    payee = get_by_external_id(db, external_account_id)
    if payee is None:
        raise RecordNotFoundError("Payee account not found.", details={"external_account_id": external_account_id})

    settings = get_settings()
    gateway = StripeGateway(settings)
    link = gateway.create_onboarding_link(
        payee.external_account_id,
        refresh_url=refresh_url or settings.CONNECT_REFRESH_URL,
        return_url=return_url or settings.CONNECT_RETURN_URL,
    )
    expires_at = getattr(link, "expires_at", None)
    logger.info("Onboarding link issued", extra={"payee_account_id": payee.id})
    return OnboardingLink(
        url=link.url,
        expires_at=datetime.fromtimestamp(expires_at, tz=UTC) if expires_at else None,
    )


__all__ = [
    "OnboardingLink",
    "ProvisionResult",
    "create_onboarding_link",
    "get_by_external_id",
    "get_by_owner",
    "provision_payee_account",
]
