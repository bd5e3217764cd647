"""Settlement Ledger.

A pure recorder: it is handed a rental whose split was decided earlier and
writes the matching append-only rows. At most one row per
``(rental, entry type)`` ever exists, backed by a unique constraint.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from minerpay.core.exceptions import LedgerInvariantError
from minerpay.models import LedgerEntry, LedgerEntryStatus, LedgerEntryType, PayeeAccount, Rental
from minerpay.services.pricing import to_decimal
from minerpay.utils.audit import log_audit
from minerpay.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    payment_entry: LedgerEntry
    payout_entry: LedgerEntry | None
    created: bool


def assert_split_balances(total: Decimal, platform_fee: Decimal | None, owner_payout: Decimal | None) -> None:
    """Raise unless ``platform_fee + owner_payout == total``."""

    if platform_fee is None or owner_payout is None:
        raise LedgerInvariantError("Split has not been captured.", details={"total": str(total)})
    fee, payout, total = to_decimal(platform_fee), to_decimal(owner_payout), to_decimal(total)
    if fee < 0 or payout < 0 or fee + payout != total:
        raise LedgerInvariantError(
            "Platform fee and owner payout do not add up to the total.",
            details={"total": str(total), "platform_fee": str(fee), "owner_payout": str(payout)},
        )


def get_entry(db: Session, rental_id: int, entry_type: LedgerEntryType) -> LedgerEntry | None:
    stmt = select(LedgerEntry).where(LedgerEntry.rental_id == rental_id, LedgerEntry.entry_type == entry_type)
    return db.scalars(stmt).first()


def record_entry(
    db: Session,
    *,
    rental: Rental,
    entry_type: LedgerEntryType,
    amount: Decimal,
    status: LedgerEntryStatus,
    external_payment_id: str | None = None,
    destination_account_id: str | None = None,
) -> tuple[LedgerEntry, bool]:
    """Insert a ledger row unless one already exists; returns ``(entry, created)``."""

    existing = get_entry(db, rental.id, entry_type)
    if existing is not None:
        return existing, False

    entry = LedgerEntry(
        rental_id=rental.id,
        entry_type=entry_type,
        amount=to_decimal(amount),
        currency=rental.currency,
        status=status,
        external_payment_id=external_payment_id,
        destination_account_id=destination_account_id,
        completed_at=utcnow() if status == LedgerEntryStatus.COMPLETED else None,
    )
    # A concurrent delivery that wins the insert surfaces here as an
    # IntegrityError; the webhook ingestor rolls back and re-checks.
    db.add(entry)
    db.flush()

    log_audit(
        db,
        actor="ledger",
        action=f"LEDGER_{entry_type.name}_RECORDED",
        entity="LedgerEntry",
        entity_id=entry.id,
        data={
            "rental_id": rental.id,
            "amount": str(entry.amount),
            "status": status.value,
            "external_payment_id": external_payment_id,
        },
    )
    return entry, True


def record_settlement(
    db: Session,
    rental: Rental,
    *,
    amount_received: Decimal,
    external_payment_id: str,
) -> SettlementResult:
    """Write the ``rental_payment`` row and, when eligible, a pending ``owner_payout``.

    The payout amount is the one frozen on the rental at charge time; no fee
    rate is read here.
    """

    assert_split_balances(rental.total_amount, rental.platform_fee, rental.owner_payout)
    received = to_decimal(amount_received)
    if received != to_decimal(rental.total_amount):
        logger.error(
            "Charged amount differs from rental total",
            extra={
                "reconciliation_candidate": True,
                "rental_id": rental.id,
                "external_payment_id": external_payment_id,
                "amount_received": str(received),
                "rental_total": str(rental.total_amount),
            },
        )

    payment_entry, payment_created = record_entry(
        db,
        rental=rental,
        entry_type=LedgerEntryType.RENTAL_PAYMENT,
        amount=received,
        status=LedgerEntryStatus.COMPLETED,
        external_payment_id=external_payment_id,
    )

    payout_entry: LedgerEntry | None = None
    payout_created = False
    if to_decimal(rental.owner_payout) > 0:
        payee = db.scalars(select(PayeeAccount).where(PayeeAccount.owner_id == rental.owner_id)).first()
        payout_entry, payout_created = record_entry(
            db,
            rental=rental,
            entry_type=LedgerEntryType.OWNER_PAYOUT,
            amount=rental.owner_payout,
            status=LedgerEntryStatus.PENDING,
            external_payment_id=external_payment_id,
            destination_account_id=payee.external_account_id if payee else None,
        )

    return SettlementResult(
        payment_entry=payment_entry,
        payout_entry=payout_entry,
        created=payment_created or payout_created,
    )


def mark_payout_completed(db: Session, *, rental_id: int, transfer_id: str) -> LedgerEntry | None:
    """Flip the rental's pending payout to completed. Safe to call repeatedly."""

    entry = get_entry(db, rental_id, LedgerEntryType.OWNER_PAYOUT)
    if entry is None:
        logger.warning(
            "Transfer paid for rental without a payout entry",
            extra={"rental_id": rental_id, "transfer_id": transfer_id, "reconciliation_candidate": True},
        )
        return None
    if entry.status == LedgerEntryStatus.COMPLETED:
        logger.info("Payout already completed", extra={"ledger_entry_id": entry.id, "transfer_id": transfer_id})
        return entry

    entry.status = LedgerEntryStatus.COMPLETED
    entry.external_transfer_id = transfer_id
    entry.completed_at = utcnow()
    db.add(entry)
    log_audit(
        db,
        actor="ledger",
        action="LEDGER_OWNER_PAYOUT_COMPLETED",
        entity="LedgerEntry",
        entity_id=entry.id,
        data={"rental_id": rental_id, "transfer_id": transfer_id, "amount": str(entry.amount)},
    )
    return entry


__all__ = [
    "SettlementResult",
    "assert_split_balances",
    "get_entry",
    "mark_payout_completed",
    "record_entry",
    "record_settlement",
]
