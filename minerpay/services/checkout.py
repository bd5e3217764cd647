"""Checkout Session Service.

Turns a buyer's cart or rental intent into a gateway session/intent and
persists the pending record. The gateway is always called at most once per
invocation, and a gateway failure leaves the local record as it was.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from minerpay.config import get_settings
from minerpay.core.exceptions import GatewayError, PersistenceError, ValidationError
from minerpay.models import CheckoutMode, Order, OrderStatus, Rental, RentalPaymentStatus, RentalStatus, User
from minerpay.schemas.checkout import CheckoutSessionCreate, LineItem, RentalPaymentIntentCreate
from minerpay.services import orders as orders_service
from minerpay.services import pricing
from minerpay.services import rentals as rentals_service
from minerpay.services.gateway import StripeGateway
from minerpay.utils.audit import log_audit

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSessionResult:
    order: Order
    external_session_id: str
    redirect_url: str
    external_customer_id: str | None


@dataclass
class RentalPaymentResult:
    rental: Rental
    external_payment_id: str
    client_secret: str
    amount_minor_units: int
    currency: str
    status: str


def _looks_like_email(value: str | None) -> bool:
    if not value:
        return False
    local, _, domain = value.strip().partition("@")
    return bool(local) and "." in domain


def _order_total(items: list[LineItem]) -> Decimal:
    return sum((pricing.to_decimal(item.unit_amount) * item.quantity for item in items), Decimal("0.00"))


def _snapshot(items: list[LineItem]) -> list[dict[str, Any]]:
    return [
        {
            "product_ref": item.product_ref,
            "name": item.name,
            "quantity": item.quantity,
            "unit_amount": str(pricing.to_decimal(item.unit_amount)),
            "product_type": item.product_type,
            "price_id": item.price_id,
            "recurring_interval": item.recurring_interval,
        }
        for item in items
    ]


def _gateway_line_items(order: Order) -> list[dict[str, Any]]:
    """Build Stripe line items from the order snapshot."""

    line_items: list[dict[str, Any]] = []
    for item in order.line_items_json:
        if item.get("price_id"):
            line_items.append({"price": item["price_id"], "quantity": item["quantity"]})
            continue
        price_data: dict[str, Any] = {
            "currency": order.currency,
            "unit_amount": pricing.to_minor_units(Decimal(item["unit_amount"])),
            "product_data": {
                "name": item["name"],
                "metadata": {"product_ref": item["product_ref"], "product_type": item["product_type"]},
            },
        }
        if order.mode == CheckoutMode.SUBSCRIPTION:
            price_data["recurring"] = {"interval": item.get("recurring_interval") or "month"}
        line_items.append({"price_data": price_data, "quantity": item["quantity"]})
    return line_items


def _validate_checkout(db: Session, payload: CheckoutSessionCreate) -> tuple[User, Decimal]:
    if not _looks_like_email(payload.payer_email):
        raise ValidationError("A valid payer e-mail is required.", details={"field": "payer_email"})
    if not payload.line_items:
        raise ValidationError("At least one line item is required.", details={"field": "line_items"})
    total = _order_total(payload.line_items)
    if total <= 0:
        raise ValidationError("Checkout total must be greater than zero.", details={"total": str(total)})
    if payload.mode == CheckoutMode.SUBSCRIPTION and not any(
        item.price_id or item.recurring_interval for item in payload.line_items
    ):
        raise ValidationError("Subscription checkout needs a recurring price.", details={"field": "line_items"})
    buyer = db.get(User, payload.buyer_id)
    if buyer is None:
        raise ValidationError("Unknown buyer.", details={"buyer_id": payload.buyer_id})
    return buyer, total


def _pending_order(db: Session, payload: CheckoutSessionCreate, total: Decimal) -> Order:
    """Reuse the caller's pending order on retry, else create one."""

    if payload.order_id is not None:
        order = orders_service.get_order(db, payload.order_id)
        if order.buyer_id != payload.buyer_id:
            raise ValidationError("Order does not belong to this buyer.", details={"order_id": order.id})
        if order.status != OrderStatus.PENDING:
            raise ValidationError(
                "Order is not awaiting checkout.",
                details={"order_id": order.id, "status": order.status.value},
            )
        return order

    order = Order(
        buyer_id=payload.buyer_id,
        total_amount=total,
        currency=payload.currency.lower(),
        mode=payload.mode,
        status=OrderStatus.PENDING,
        payer_email=payload.payer_email.strip(),
        line_items_json=_snapshot(payload.line_items),
    )
    db.add(order)
    db.flush()
    log_audit(
        db,
        actor=f"buyer:{payload.buyer_id}",
        action="ORDER_CREATED",
        entity="Order",
        entity_id=order.id,
        data={"total": str(total), "mode": payload.mode.value, "payer_email": order.payer_email},
    )
    db.commit()
    return order


def create_checkout_session(db: Session, payload: CheckoutSessionCreate) -> CheckoutSessionResult:
    """Create exactly one gateway checkout session and mark the order processing."""

    _, total = _validate_checkout(db, payload)
    gateway = StripeGateway(get_settings())

    if payload.order_id is not None:
        existing = orders_service.get_order(db, payload.order_id)
        if existing.status == OrderStatus.PROCESSING and existing.external_session_id and existing.checkout_url:
            logger.info("Reusing open checkout session", extra={"order_id": existing.id})
            return CheckoutSessionResult(
                order=existing,
                external_session_id=existing.external_session_id,
                redirect_url=existing.checkout_url,
                external_customer_id=existing.external_customer_id,
            )

    order = _pending_order(db, payload, total)

    try:
        customer = gateway.find_or_create_customer(
            order.payer_email, metadata={"order_id": str(order.id), "buyer_id": str(order.buyer_id)}
        )
        session = gateway.create_checkout_session(
            order,
            line_items=_gateway_line_items(order),
            customer_id=customer.id,
            success_url=payload.success_url,
            cancel_url=payload.cancel_url,
        )
    except GatewayError:
        logger.warning("Checkout session creation failed; order left pending", extra={"order_id": order.id})
        raise

    try:
        order.external_session_id = session.id
        order.external_customer_id = customer.id
        order.checkout_url = session.url
        orders_service.transition_order(
            db,
            order,
            OrderStatus.PROCESSING,
            actor="checkout",
            data={"external_session_id": session.id},
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        external_ids = {"order_id": order.id, "external_session_id": session.id, "external_customer_id": customer.id}
        logger.error(
            "Checkout session created but order update failed",
            extra={"reconciliation_candidate": True, **external_ids},
        )
        raise PersistenceError("Failed to record checkout session.", external_ids=external_ids) from exc

    logger.info(
        "Checkout session created",
        extra={"order_id": order.id, "external_session_id": session.id, "mode": order.mode.value},
    )
    return CheckoutSessionResult(
        order=order,
        external_session_id=session.id,
        redirect_url=session.url,
        external_customer_id=customer.id,
    )


def create_rental_payment(
    db: Session, payload: RentalPaymentIntentCreate, *, fee_rate: Decimal
) -> RentalPaymentResult:
    """Create the rental's PaymentIntent, or hand back the one still open.

    A new intent is only created when none exists or the previous one was
    canceled. ``fee_rate`` only applies when the rental has no captured split
    yet; it is frozen onto the rental together with the payment id.
    """

    if payload.amount_minor_units <= 0:
        raise ValidationError("Amount must be greater than zero.", details={"amount_minor_units": payload.amount_minor_units})
    rental = rentals_service.get_rental(db, payload.rental_id)
    if rental.payment_status == RentalPaymentStatus.PAID:
        raise ValidationError("Rental is already paid.", details={"rental_id": rental.id})
    if rental.status == RentalStatus.CANCELLED:
        raise ValidationError("Rental is cancelled.", details={"rental_id": rental.id})
    currency = payload.currency.lower()
    if currency != rental.currency:
        raise ValidationError(
            "Currency does not match the rental.", details={"expected": rental.currency, "received": currency}
        )
    amount = pricing.from_minor_units(payload.amount_minor_units)
    if amount != pricing.to_decimal(rental.total_amount):
        raise ValidationError(
            "Amount does not match the rental total.",
            details={"expected": str(rental.total_amount), "received": str(amount)},
        )

    gateway = StripeGateway(get_settings())
    replaces: str | None = None
    if rental.external_payment_id:
        existing = gateway.retrieve_payment_intent(rental.external_payment_id)
        if existing.status != "canceled":
            # The renter keeps paying against the intent the webhook will confirm.
            logger.info(
                "Reusing open rental payment intent",
                extra={"rental_id": rental.id, "external_payment_id": existing.id, "status": existing.status},
            )
            return RentalPaymentResult(
                rental=rental,
                external_payment_id=existing.id,
                client_secret=existing.client_secret,
                amount_minor_units=payload.amount_minor_units,
                currency=currency,
                status=existing.status,
            )
        replaces = existing.id

    if not rental.has_split:
        rentals_service.apply_quote(rental, pricing.split_percentage(rental.total_amount, fee_rate))

    renter = db.get(User, rental.renter_id)
    try:
        intent = gateway.create_rental_payment_intent(
            rental,
            amount=amount,
            currency=currency,
            metadata=payload.metadata,
            receipt_email=renter.email if renter else None,
            replaces=replaces,
        )
    except GatewayError:
        db.rollback()
        logger.warning("Rental payment intent failed; rental left unchanged", extra={"rental_id": rental.id})
        raise

    try:
        rental.external_payment_id = intent.id
        log_audit(
            db,
            actor="checkout",
            action="RENTAL_PAYMENT_INTENT_CREATED",
            entity="Rental",
            entity_id=rental.id,
            data={
                "external_payment_id": intent.id,
                "amount": str(amount),
                "platform_fee": str(rental.platform_fee),
                "owner_payout": str(rental.owner_payout),
                "replaces": replaces,
            },
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        external_ids = {"rental_id": payload.rental_id, "external_payment_id": intent.id}
        logger.error(
            "Payment intent created but rental update failed",
            extra={"reconciliation_candidate": True, **external_ids},
        )
        raise PersistenceError("Failed to record rental payment.", external_ids=external_ids) from exc

    logger.info("Rental payment intent created", extra={"rental_id": rental.id, "external_payment_id": intent.id})
    return RentalPaymentResult(
        rental=rental,
        external_payment_id=intent.id,
        client_secret=intent.client_secret,
        amount_minor_units=payload.amount_minor_units,
        currency=currency,
        status=getattr(intent, "status", "requires_payment_method"),
    )


__all__ = [
    "CheckoutSessionResult",
    "RentalPaymentResult",
    "create_checkout_session",
    "create_rental_payment",
]
