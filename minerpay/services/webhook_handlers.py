"""Per-event-type webhook handlers.

Each handler checks whether its target already sits in the intended terminal
state before writing, and never commits: the ingestor commits once per event.
Events referring to records this service does not know about are ignored.
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from minerpay.models import CheckoutMode, Order, OrderStatus, Rental, User
from minerpay.services import ledger, orders, rentals
from minerpay.services.payout_sync import sync_account_capabilities
from minerpay.services.pricing import from_minor_units
from minerpay.services.webhooks import register
from minerpay.utils.audit import log_audit

logger = logging.getLogger(__name__)

ACTOR = "stripe"


def _object(event: Dict[str, Any]) -> Dict[str, Any]:
    return (event.get("data") or {}).get("object") or {}


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _order_for_session(db: Session, session: Dict[str, Any]) -> Order | None:
    order = orders.find_by_session(db, session.get("id") or "")
    if order is None:
        order_id = _int_or_none((session.get("metadata") or {}).get("order_id"))
        if order_id is not None:
            order = db.get(Order, order_id)
    return order


def _rental_for_intent(db: Session, intent: Dict[str, Any]) -> Rental | None:
    rental_id = _int_or_none((intent.get("metadata") or {}).get("rental_id"))
    if rental_id is not None:
        return db.get(Rental, rental_id)
    return rentals.find_by_payment(db, intent.get("id") or "")


def _member_for_customer(db: Session, customer_id: str | None, email: str | None) -> User | None:
    if customer_id:
        order = db.scalars(
            select(Order)
            .where(Order.external_customer_id == customer_id, Order.mode == CheckoutMode.SUBSCRIPTION)
            .order_by(Order.id.desc())
        ).first()
        if order is not None:
            return order.buyer
    if email:
        return db.scalars(select(User).where(func.lower(User.email) == email.strip().lower())).first()
    return None


def _set_membership(db: Session, user: User, active: bool, *, reason: str) -> None:
    if user.is_paid_member == active:
        logger.info("Membership already in desired state", extra={"user_id": user.id, "active": active})
        return
    user.is_paid_member = active
    db.add(user)
    log_audit(
        db,
        actor=ACTOR,
        action="MEMBERSHIP_GRANTED" if active else "MEMBERSHIP_REVOKED",
        entity="User",
        entity_id=user.id,
        data={"reason": reason},
    )
    logger.info("Membership updated", extra={"user_id": user.id, "active": active})


@register("checkout.session.completed", "checkout.session.async_payment_succeeded")
def handle_checkout_completed(db: Session, event: Dict[str, Any]) -> None:
    session = _object(event)
    order = _order_for_session(db, session)
    if order is None:
        logger.info("Checkout completed for unknown order", extra={"session_id": session.get("id")})
        return
    if order.status == OrderStatus.COMPLETED:
        logger.info("Order already completed", extra={"order_id": order.id})
        return
    if event.get("type") == "checkout.session.completed" and session.get("payment_status") == "unpaid":
        # Delayed payment methods report success later via async_payment_succeeded.
        logger.info("Checkout completed but payment pending", extra={"order_id": order.id})
        return

    payment_ref = session.get("payment_intent") or session.get("subscription")
    if payment_ref and not order.external_payment_id:
        order.external_payment_id = payment_ref
    if session.get("customer") and not order.external_customer_id:
        order.external_customer_id = session["customer"]
    if not orders.transition_order(
        db, order, OrderStatus.COMPLETED, actor=ACTOR, data={"event_id": event.get("id"), "payment_ref": payment_ref}
    ):
        return

    if order.grants_membership():
        _set_membership(db, order.buyer, True, reason=f"order:{order.id}")


@register("checkout.session.expired")
def handle_checkout_expired(db: Session, event: Dict[str, Any]) -> None:
    session = _object(event)
    order = _order_for_session(db, session)
    if order is None:
        logger.info("Checkout expired for unknown order", extra={"session_id": session.get("id")})
        return
    orders.transition_order(db, order, OrderStatus.CANCELLED, actor=ACTOR, data={"event_id": event.get("id")})


@register("checkout.session.async_payment_failed")
def handle_checkout_async_failed(db: Session, event: Dict[str, Any]) -> None:
    """A delayed payment method was declined after the session completed."""

    session = _object(event)
    order = _order_for_session(db, session)
    if order is None:
        logger.info("Delayed payment failed for unknown order", extra={"session_id": session.get("id")})
        return
    if orders.transition_order(
        db,
        order,
        OrderStatus.CANCELLED,
        actor=ACTOR,
        data={"event_id": event.get("id"), "reason": "async_payment_failed"},
    ):
        logger.warning("Delayed checkout payment failed", extra={"order_id": order.id})


@register("payment_intent.succeeded")
def handle_payment_succeeded(db: Session, event: Dict[str, Any]) -> None:
    """Confirm the rental and write its settlement rows."""

    intent = _object(event)
    intent_id = intent.get("id")
    rental = _rental_for_intent(db, intent)
    if rental is None:
        logger.info("Payment succeeded for non-rental intent", extra={"payment_intent_id": intent_id})
        return
    if rental.external_payment_id and rental.external_payment_id != intent_id:
        logger.error(
            "Payment intent does not match rental",
            extra={
                "reconciliation_candidate": True,
                "rental_id": rental.id,
                "payment_intent_id": intent_id,
                "expected_payment_id": rental.external_payment_id,
            },
        )
        return

    amount_minor = intent.get("amount_received")
    if amount_minor is None:
        amount_minor = intent.get("amount")
    amount = from_minor_units(amount_minor) if amount_minor is not None else rental.total_amount

    rentals.mark_paid(db, rental, payment_id=intent_id, actor=ACTOR)
    # Always re-run: the ledger skips rows that already exist.
    result = ledger.record_settlement(db, rental, amount_received=amount, external_payment_id=intent_id)
    logger.info(
        "Rental settlement recorded",
        extra={"rental_id": rental.id, "payment_intent_id": intent_id, "created": result.created},
    )


@register("payment_intent.payment_failed")
def handle_payment_failed(db: Session, event: Dict[str, Any]) -> None:
    intent = _object(event)
    rental = _rental_for_intent(db, intent)
    if rental is None:
        logger.info("Payment failed for non-rental intent", extra={"payment_intent_id": intent.get("id")})
        return
    reason = (intent.get("last_payment_error") or {}).get("message")
    if not rentals.mark_failed(db, rental, payment_id=intent.get("id"), actor=ACTOR, reason=reason):
        logger.info(
            "Rental payment already settled",
            extra={"rental_id": rental.id, "payment_status": rental.payment_status.value},
        )


@register("account.updated")
def handle_account_updated(db: Session, event: Dict[str, Any]) -> None:
    sync_account_capabilities(db, _object(event))


@register("transfer.paid")
def handle_transfer_paid(db: Session, event: Dict[str, Any]) -> None:
    transfer = _object(event)
    rental_id = _int_or_none((transfer.get("metadata") or {}).get("rental_id"))
    group = transfer.get("transfer_group") or ""
    if rental_id is None and group.startswith("rental_"):
        rental_id = _int_or_none(group[len("rental_"):])
    if rental_id is None:
        logger.info("Transfer without rental reference", extra={"transfer_id": transfer.get("id")})
        return
    ledger.mark_payout_completed(db, rental_id=rental_id, transfer_id=transfer.get("id"))


@register("invoice.payment_succeeded")
def handle_invoice_paid(db: Session, event: Dict[str, Any]) -> None:
    invoice = _object(event)
    user = _member_for_customer(db, invoice.get("customer"), invoice.get("customer_email"))
    if user is None:
        logger.info("Invoice paid for unknown customer", extra={"invoice_id": invoice.get("id")})
        return
    _set_membership(db, user, True, reason=f"invoice:{invoice.get('id')}")


@register("customer.subscription.deleted")
def handle_subscription_deleted(db: Session, event: Dict[str, Any]) -> None:
    subscription = _object(event)
    user = _member_for_customer(db, subscription.get("customer"), None)
    if user is None:
        logger.info("Subscription ended for unknown customer", extra={"subscription_id": subscription.get("id")})
        return
    _set_membership(db, user, False, reason=f"subscription:{subscription.get('id')}")


@register("invoice.payment_failed")
def handle_invoice_failed(db: Session, event: Dict[str, Any]) -> None:
    invoice = _object(event)
    user = _member_for_customer(db, invoice.get("customer"), invoice.get("customer_email"))
    logger.warning(
        "Membership invoice payment failed",
        extra={"invoice_id": invoice.get("id"), "user_id": user.id if user else None},
    )
    if user is not None:
        log_audit(
            db,
            actor=ACTOR,
            action="MEMBERSHIP_INVOICE_FAILED",
            entity="User",
            entity_id=user.id,
            data={"invoice_id": invoice.get("id"), "attempt_count": invoice.get("attempt_count")},
        )


__all__ = [
    "handle_account_updated",
    "handle_checkout_async_failed",
    "handle_checkout_completed",
    "handle_checkout_expired",
    "handle_invoice_failed",
    "handle_invoice_paid",
    "handle_payment_failed",
    "handle_payment_succeeded",
    "handle_subscription_deleted",
    "handle_transfer_paid",
]
