"""Fee schedules and money helpers.

The settlement ledger never decides which schedule applies; callers resolve a
``RentalQuote`` here and persist it. Two schedules exist:

* percentage of revenue: the fee is carved out of the total
  (``$100.00`` at ``3.5%`` -> fee ``$3.50``, payout ``$96.50``);
* flat per day: the fee is added on top of ``days * daily_rate``
  (``$25/day`` for 2 days at ``$1.25/day`` -> total ``$52.50``, payout ``$50.00``).
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from minerpay.core.exceptions import ValidationError
from minerpay.models.rental import FeeSchedule

CENT = Decimal("0.01")


def to_decimal(value: Any, *, field: str = "amount") -> Decimal:
    """Parse a money amount and normalise it to two decimals."""

    if isinstance(value, Decimal):
        parsed = value
    else:
        try:
            # str() avoids binary float artefacts
            parsed = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise ValidationError(f"Invalid money amount for {field}: {value!r}") from exc
    if not parsed.is_finite():
        raise ValidationError(f"Invalid money amount for {field}: {value!r}")
    return parsed.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to the smallest currency unit expected by Stripe."""

    return int((to_decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / Decimal("100")).quantize(CENT)


@dataclass(frozen=True)
class RentalQuote:
    """An already-decided split of a rental's total."""

    schedule: FeeSchedule
    fee_rate: Decimal
    total: Decimal
    platform_fee: Decimal
    owner_payout: Decimal

    def __post_init__(self) -> None:
        if self.platform_fee + self.owner_payout != self.total:
            raise ValidationError(
                "Quote does not balance.",
                details={
                    "total": str(self.total),
                    "platform_fee": str(self.platform_fee),
                    "owner_payout": str(self.owner_payout),
                },
            )


def _validate_rate(rate: Decimal) -> Decimal:
    rate = Decimal(str(rate))
    if not (Decimal("0") < rate < Decimal("1")):
        raise ValidationError("Fee rate must be strictly between 0 and 1.", details={"fee_rate": str(rate)})
    return rate


def split_percentage(total: Decimal, rate: Decimal) -> RentalQuote:
    """Carve a percentage fee out of ``total``; the payout takes the remainder."""

    total = to_decimal(total, field="total")
    if total <= 0:
        raise ValidationError("Total must be greater than zero.", details={"total": str(total)})
    rate = _validate_rate(rate)
    fee = (total * rate).quantize(CENT, rounding=ROUND_HALF_UP)
    return RentalQuote(
        schedule=FeeSchedule.PERCENTAGE,
        fee_rate=rate,
        total=total,
        platform_fee=fee,
        owner_payout=total - fee,
    )


def quote_flat_per_day(daily_rate: Decimal, days: int, fee_per_day: Decimal) -> RentalQuote:
    """Charge ``days * (daily_rate + fee_per_day)``; the owner gets ``days * daily_rate``."""

    daily_rate = to_decimal(daily_rate, field="daily_rate")
    fee_per_day = to_decimal(fee_per_day, field="fee_per_day")
    if daily_rate <= 0:
        raise ValidationError("Daily rate must be greater than zero.")
    if fee_per_day < 0:
        raise ValidationError("Flat fee cannot be negative.")
    if days < 1:
        raise ValidationError("Rental must span at least one day.", details={"days": days})
    payout = daily_rate * days
    fee = fee_per_day * days
    return RentalQuote(
        schedule=FeeSchedule.FLAT_PER_DAY,
        fee_rate=fee_per_day,
        total=payout + fee,
        platform_fee=fee,
        owner_payout=payout,
    )


def quote_percentage(daily_rate: Decimal, days: int, rate: Decimal) -> RentalQuote:
    daily_rate = to_decimal(daily_rate, field="daily_rate")
    if days < 1:
        raise ValidationError("Rental must span at least one day.", details={"days": days})
    return split_percentage(daily_rate * days, rate)


__all__ = [
    "CENT",
    "RentalQuote",
    "from_minor_units",
    "quote_flat_per_day",
    "quote_percentage",
    "split_percentage",
    "to_decimal",
    "to_minor_units",
]
