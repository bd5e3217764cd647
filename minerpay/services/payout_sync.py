"""Payout State Sync: mirrors connected-account capabilities locally."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.orm import Session

from minerpay.models import PayeeAccount
from minerpay.services.payees import get_by_external_id
from minerpay.utils.audit import log_audit

logger = logging.getLogger(__name__)


def sync_account_capabilities(db: Session, account: Mapping[str, Any]) -> PayeeAccount | None:
    """Apply an ``account.updated`` payload to the matching payee.

    Unknown account ids are a no-op. ``bank_verified`` follows
    ``payouts_enabled``: Stripe only enables payouts once an external bank
    account has been verified.
    """

    account_id = account.get("id")
    if not account_id:
        logger.info("Account update without id; skipping")
        return None

    payee = get_by_external_id(db, account_id)
    if payee is None:
        logger.info("Account update for unknown payee", extra={"external_account_id": account_id})
        return None

    payouts_enabled = bool(account.get("payouts_enabled"))
    desired = {
        "payout_enabled": payouts_enabled,
        "bank_verified": payouts_enabled,
        "charges_enabled": bool(account.get("charges_enabled")),
        "details_submitted": bool(account.get("details_submitted")),
    }
    changes = {key: value for key, value in desired.items() if getattr(payee, key) != value}
    if not changes:
        logger.info("Payee capabilities unchanged", extra={"payee_account_id": payee.id})
        return payee

    for key, value in changes.items():
        setattr(payee, key, value)
    db.add(payee)
    log_audit(
        db,
        actor="stripe",
        action="PAYEE_CAPABILITIES_SYNCED",
        entity="PayeeAccount",
        entity_id=payee.id,
        data={"external_account_id": account_id, **changes},
    )
    logger.info("Payee capabilities synced", extra={"payee_account_id": payee.id, **changes})
    return payee


__all__ = ["sync_account_capabilities"]
