from decimal import Decimal

import pytest

from minerpay.core.exceptions import ValidationError
from minerpay.models import FeeSchedule
from minerpay.services import pricing


def test_percentage_split_carves_fee_out_of_total():
    quote = pricing.split_percentage(Decimal("100.00"), Decimal("0.035"))

    assert quote.schedule == FeeSchedule.PERCENTAGE
    assert quote.platform_fee == Decimal("3.50")
    assert quote.owner_payout == Decimal("96.50")
    assert quote.total == Decimal("100.00")


def test_flat_per_day_fee_is_added_on_top():
    quote = pricing.quote_flat_per_day(Decimal("25.00"), 2, Decimal("1.25"))

    assert quote.schedule == FeeSchedule.FLAT_PER_DAY
    assert quote.total == Decimal("52.50")
    assert quote.platform_fee == Decimal("2.50")
    assert quote.owner_payout == Decimal("50.00")


@pytest.mark.parametrize(
    "total, rate",
    [
        ("0.01", "0.999"),
        ("0.03", "0.5"),
        ("19.99", "0.0175"),
        ("1234.57", "0.123456"),
        ("100.00", "0.000001"),
    ],
)
def test_split_always_balances(total, rate):
    quote = pricing.split_percentage(Decimal(total), Decimal(rate))

    assert quote.platform_fee + quote.owner_payout == quote.total
    assert quote.platform_fee >= 0
    assert quote.owner_payout >= 0


@pytest.mark.parametrize("rate", ["0", "1", "-0.1", "1.5"])
def test_rate_outside_open_interval_rejected(rate):
    with pytest.raises(ValidationError):
        pricing.split_percentage(Decimal("100.00"), Decimal(rate))


def test_zero_total_rejected():
    with pytest.raises(ValidationError):
        pricing.split_percentage(Decimal("0"), Decimal("0.035"))


def test_unbalanced_quote_cannot_be_built():
    with pytest.raises(ValidationError):
        pricing.RentalQuote(
            schedule=FeeSchedule.PERCENTAGE,
            fee_rate=Decimal("0.035"),
            total=Decimal("100.00"),
            platform_fee=Decimal("3.50"),
            owner_payout=Decimal("96.49"),
        )


def test_minor_unit_conversion():
    assert pricing.to_minor_units(Decimal("52.50")) == 5250
    assert pricing.from_minor_units(5250) == Decimal("52.50")
    assert pricing.to_decimal("3.505") == Decimal("3.51")


def test_invalid_amount_is_a_validation_error():
    with pytest.raises(ValidationError):
        pricing.to_decimal("twelve")
    with pytest.raises(ValidationError):
        pricing.to_decimal(Decimal("NaN"))
