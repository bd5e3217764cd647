"""Checkout session and rental payment endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from minerpay.config import get_settings
from minerpay.db import get_db
from minerpay.schemas.checkout import (
    CheckoutSessionCreate,
    CheckoutSessionRead,
    OrderRead,
    RentalPaymentIntentCreate,
    RentalPaymentIntentRead,
    RentalRead,
)
from minerpay.services import checkout as checkout_service
from minerpay.services import orders as orders_service
from minerpay.services import rentals as rentals_service

router = APIRouter(tags=["checkout"])


@router.post("/checkout-sessions", response_model=CheckoutSessionRead, status_code=status.HTTP_201_CREATED)
def create_checkout_session(payload: CheckoutSessionCreate, db: Session = Depends(get_db)) -> CheckoutSessionRead:
    """Open a hosted checkout session for a cart."""

    result = checkout_service.create_checkout_session(db, payload)
    return CheckoutSessionRead(
        order_id=result.order.id,
        external_session_id=result.external_session_id,
        redirect_url=result.redirect_url,
        external_customer_id=result.external_customer_id,
    )


@router.post(
    "/rental-payment-intents", response_model=RentalPaymentIntentRead, status_code=status.HTTP_201_CREATED
)
def create_rental_payment_intent(
    payload: RentalPaymentIntentCreate, db: Session = Depends(get_db)
) -> RentalPaymentIntentRead:
    """Create the PaymentIntent that settles a rental."""

    # The configured rate is captured onto the rental only if it has no split yet.
    result = checkout_service.create_rental_payment(db, payload, fee_rate=get_settings().PLATFORM_FEE_RATE)
    return RentalPaymentIntentRead(
        rental_id=result.rental.id,
        external_payment_id=result.external_payment_id,
        client_secret=result.client_secret,
        amount_minor_units=result.amount_minor_units,
        currency=result.currency,
        status=result.status,
        platform_fee=result.rental.platform_fee,
        owner_payout=result.rental.owner_payout,
    )


@router.get("/orders/{order_id}", response_model=OrderRead)
def read_order(order_id: int, db: Session = Depends(get_db)):
    """Return the persisted order; the only source of truth for completion."""

    return orders_service.get_order(db, order_id)


@router.get("/rentals/{rental_id}", response_model=RentalRead)
def read_rental(rental_id: int, db: Session = Depends(get_db)):
    return rentals_service.get_rental(db, rental_id)
