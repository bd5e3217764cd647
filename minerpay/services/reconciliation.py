"""Report-only reconciliation sweep.

Cross-checks local state for gaps a lost write or a missed webhook would
leave behind. Nothing is mutated: every finding is logged as a
reconciliation candidate for manual follow-up.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from minerpay import db as db_module
from minerpay.config import get_settings
from minerpay.models import (
    LedgerEntry,
    LedgerEntryStatus,
    LedgerEntryType,
    Order,
    OrderStatus,
    PayeeAccount,
    Rental,
    RentalPaymentStatus,
)
from minerpay.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    missing_payment_entries: list[int] = field(default_factory=list)
    missing_payout_entries: list[int] = field(default_factory=list)
    payouts_without_destination: list[int] = field(default_factory=list)
    # Informational: ready for the external transfer run, not a gap.
    payouts_awaiting_transfer: list[int] = field(default_factory=list)
    stale_orders: list[int] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (
            self.missing_payment_entries
            or self.missing_payout_entries
            or self.payouts_without_destination
            or self.stale_orders
        )


def _entry_types_by_rental(db: Session, rental_ids: list[int]) -> dict[int, set[LedgerEntryType]]:
    found: dict[int, set[LedgerEntryType]] = {rental_id: set() for rental_id in rental_ids}
    if not rental_ids:
        return found
    rows = db.execute(
        select(LedgerEntry.rental_id, LedgerEntry.entry_type).where(LedgerEntry.rental_id.in_(rental_ids))
    )
    for rental_id, entry_type in rows:
        found[rental_id].add(entry_type)
    return found


def reconcile(db: Session, *, stale_after_minutes: int | None = None) -> ReconciliationReport:
    """Collect settlement gaps.

    Stale checkouts are only reported when ``stale_after_minutes`` is given.
    """

    report = ReconciliationReport()

    paid = db.scalars(select(Rental).where(Rental.payment_status == RentalPaymentStatus.PAID)).all()
    entries = _entry_types_by_rental(db, [rental.id for rental in paid])
    for rental in paid:
        types = entries[rental.id]
        if LedgerEntryType.RENTAL_PAYMENT not in types:
            report.missing_payment_entries.append(rental.id)
        if rental.owner_payout and rental.owner_payout > 0 and LedgerEntryType.OWNER_PAYOUT not in types:
            report.missing_payout_entries.append(rental.id)

    report.payouts_without_destination = list(
        db.scalars(
            select(LedgerEntry.rental_id).where(
                LedgerEntry.entry_type == LedgerEntryType.OWNER_PAYOUT,
                LedgerEntry.status == LedgerEntryStatus.PENDING,
                LedgerEntry.destination_account_id.is_(None),
            )
        )
    )

    report.payouts_awaiting_transfer = list(
        db.scalars(
            select(LedgerEntry.rental_id)
            .join(Rental, Rental.id == LedgerEntry.rental_id)
            .join(PayeeAccount, PayeeAccount.owner_id == Rental.owner_id)
            .where(
                LedgerEntry.entry_type == LedgerEntryType.OWNER_PAYOUT,
                LedgerEntry.status == LedgerEntryStatus.PENDING,
                PayeeAccount.payout_enabled.is_(True),
            )
        )
    )

    if stale_after_minutes is not None:
        cutoff = utcnow() - timedelta(minutes=stale_after_minutes)
        report.stale_orders = list(
            db.scalars(
                select(Order.id).where(
                    Order.status.in_((OrderStatus.PENDING, OrderStatus.PROCESSING)),
                    Order.created_at <= cutoff,
                )
            )
        )

    if report.payouts_awaiting_transfer:
        logger.info(
            "Payouts awaiting transfer",
            extra={"rental_ids": report.payouts_awaiting_transfer, "count": len(report.payouts_awaiting_transfer)},
        )
    if report.clean:
        logger.info("Reconciliation sweep clean")
    else:
        logger.warning(
            "Reconciliation sweep found gaps",
            extra={
                "reconciliation_candidate": True,
                "missing_payment_entries": report.missing_payment_entries,
                "missing_payout_entries": report.missing_payout_entries,
                "payouts_without_destination": report.payouts_without_destination,
                "stale_orders": report.stale_orders,
            },
        )
    return report


def reconcile_once() -> None:
    """Scheduler entrypoint: run one sweep on a fresh session."""

    settings = get_settings()
    db = db_module.get_sessionmaker()()
    try:
        reconcile(db, stale_after_minutes=settings.STALE_CHECKOUT_AFTER_MINUTES)
    finally:
        db.close()


__all__ = ["ReconciliationReport", "reconcile", "reconcile_once"]
