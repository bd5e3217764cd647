"""Checkout and rental payment schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from minerpay.models.order import CheckoutMode, OrderStatus
from minerpay.models.rental import FeeSchedule, RentalPaymentStatus, RentalStatus


class LineItem(BaseModel):
    product_ref: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    quantity: int = Field(ge=1)
    unit_amount: Decimal = Field(ge=Decimal("0"), decimal_places=2)
    product_type: Literal["product", "membership"] = "product"
    price_id: str | None = None
    recurring_interval: Literal["day", "week", "month", "year"] | None = None


class CheckoutSessionCreate(BaseModel):
    buyer_id: int
    payer_email: str = Field(min_length=3, max_length=255)
    line_items: list[LineItem] = Field(min_length=1)
    success_url: str = Field(min_length=1, max_length=2048)
    cancel_url: str = Field(min_length=1, max_length=2048)
    mode: CheckoutMode = CheckoutMode.PAYMENT
    currency: str = Field(default="usd", min_length=3, max_length=3)
    order_id: int | None = None


class CheckoutSessionRead(BaseModel):
    order_id: int
    external_session_id: str
    redirect_url: str
    external_customer_id: str | None = None


class RentalPaymentIntentCreate(BaseModel):
    rental_id: int
    amount_minor_units: int
    currency: str = Field(default="usd", min_length=3, max_length=3)
    metadata: dict[str, str] = Field(default_factory=dict)


class RentalPaymentIntentRead(BaseModel):
    rental_id: int
    external_payment_id: str
    client_secret: str
    amount_minor_units: int
    currency: str
    status: str
    platform_fee: Decimal
    owner_payout: Decimal


class OrderRead(BaseModel):
    id: int
    buyer_id: int
    total_amount: Decimal
    currency: str
    mode: CheckoutMode
    status: OrderStatus
    external_session_id: str | None
    external_payment_id: str | None
    line_items_json: list
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RentalRead(BaseModel):
    id: int
    machine_id: int
    renter_id: int
    owner_id: int
    start_date: date
    end_date: date
    daily_rate: Decimal
    total_amount: Decimal
    currency: str
    fee_schedule: FeeSchedule | None
    platform_fee: Decimal | None
    owner_payout: Decimal | None
    external_payment_id: str | None
    payment_status: RentalPaymentStatus
    status: RentalStatus
    paid_at: datetime | None

    model_config = ConfigDict(from_attributes=True)
