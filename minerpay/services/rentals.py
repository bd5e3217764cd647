"""Rental creation, quoting and payment-status transitions."""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from minerpay.config import get_settings
from minerpay.core.exceptions import RecordNotFoundError, ValidationError
from minerpay.models import Rental, RentalPaymentStatus, RentalStatus, User
from minerpay.services import pricing
from minerpay.utils.audit import log_audit
from minerpay.utils.time import utcnow

logger = logging.getLogger(__name__)


def get_rental(db: Session, rental_id: int) -> Rental:
    rental = db.get(Rental, rental_id)
    if rental is None:
        raise RecordNotFoundError("Rental not found.", details={"rental_id": rental_id})
    return rental


def find_by_payment(db: Session, payment_id: str) -> Rental | None:
    return db.scalars(select(Rental).where(Rental.external_payment_id == payment_id)).first()


def apply_quote(rental: Rental, quote: pricing.RentalQuote) -> None:
    """Copy a decided split onto the rental. Frozen afterwards."""

    if rental.has_split:
        raise ValidationError("Rental split is already captured.", details={"rental_id": rental.id})
    if quote.total != pricing.to_decimal(rental.total_amount):
        raise ValidationError(
            "Quote total does not match the rental total.",
            details={"rental_total": str(rental.total_amount), "quote_total": str(quote.total)},
        )
    rental.fee_schedule = quote.schedule
    rental.fee_rate = quote.fee_rate
    rental.platform_fee = quote.platform_fee
    rental.owner_payout = quote.owner_payout


def create_rental(
    db: Session,
    *,
    machine_id: int,
    renter_id: int,
    owner_id: int,
    start_date: date,
    end_date: date,
    daily_rate: Decimal,
    fee_rate: Decimal | None = None,
    flat_fee_per_day: Decimal | None = None,
    currency: str = "usd",
) -> Rental:
    """Persist a pending rental with its fee split already captured.

    ``flat_fee_per_day`` selects the flat schedule; otherwise ``fee_rate`` is
    applied as a percentage of ``days * daily_rate``. With neither given the
    configured schedule is resolved once here and frozen onto the rental.
    """

    if end_date < start_date:
        raise ValidationError("Rental end date precedes its start date.")
    if renter_id == owner_id:
        raise ValidationError("Owners cannot rent their own equipment.")
    for user_id in (renter_id, owner_id):
        if db.get(User, user_id) is None:
            raise ValidationError("Unknown user.", details={"user_id": user_id})

    if fee_rate is None and flat_fee_per_day is None:
        settings = get_settings()
        flat_fee_per_day = settings.RENTAL_FLAT_FEE_PER_DAY
        fee_rate = settings.PLATFORM_FEE_RATE

    days = (end_date - start_date).days + 1
    if flat_fee_per_day is not None:
        quote = pricing.quote_flat_per_day(daily_rate, days, flat_fee_per_day)
    else:
        quote = pricing.quote_percentage(daily_rate, days, fee_rate)

    rental = Rental(
        machine_id=machine_id,
        renter_id=renter_id,
        owner_id=owner_id,
        start_date=start_date,
        end_date=end_date,
        daily_rate=pricing.to_decimal(daily_rate),
        total_amount=quote.total,
        currency=currency.lower(),
        status=RentalStatus.PENDING,
        payment_status=RentalPaymentStatus.PENDING,
    )
    apply_quote(rental, quote)
    db.add(rental)
    db.flush()
    log_audit(
        db,
        actor="system",
        action="RENTAL_CREATED",
        entity="Rental",
        entity_id=rental.id,
        data={
            "days": days,
            "total": str(quote.total),
            "platform_fee": str(quote.platform_fee),
            "owner_payout": str(quote.owner_payout),
            "fee_schedule": quote.schedule.value,
            "fee_rate": str(quote.fee_rate),
        },
    )
    db.commit()
    db.refresh(rental)
    logger.info("Rental created", extra={"rental_id": rental.id, "total": str(quote.total)})
    return rental


def mark_paid(db: Session, rental: Rental, *, payment_id: str, actor: str) -> bool:
    """Record a verified successful charge. Returns ``False`` when already paid."""

    if rental.payment_status == RentalPaymentStatus.PAID:
        return False
    previous = rental.payment_status
    if previous == RentalPaymentStatus.FAILED:
        # The intent was retried after a decline and the money did arrive.
        logger.warning(
            "Rental paid after a recorded failure",
            extra={"rental_id": rental.id, "payment_id": payment_id},
        )
    rental.payment_status = RentalPaymentStatus.PAID
    rental.status = RentalStatus.CONFIRMED
    rental.paid_at = utcnow()
    if rental.external_payment_id is None:
        rental.external_payment_id = payment_id
    db.add(rental)
    log_audit(
        db,
        actor=actor,
        action="RENTAL_PAID",
        entity="Rental",
        entity_id=rental.id,
        data={"payment_id": payment_id, "previous_payment_status": previous.value},
    )
    return True


def mark_failed(db: Session, rental: Rental, *, payment_id: str, actor: str, reason: str | None = None) -> bool:
    """Record a verified failed charge unless the rental is already settled."""

    if rental.payment_status in (RentalPaymentStatus.PAID, RentalPaymentStatus.FAILED):
        return False
    rental.payment_status = RentalPaymentStatus.FAILED
    rental.status = RentalStatus.CANCELLED
    db.add(rental)
    log_audit(
        db,
        actor=actor,
        action="RENTAL_PAYMENT_FAILED",
        entity="Rental",
        entity_id=rental.id,
        data={"payment_id": payment_id, "reason": reason},
    )
    return True


__all__ = [
    "apply_quote",
    "create_rental",
    "find_by_payment",
    "get_rental",
    "mark_failed",
    "mark_paid",
]
