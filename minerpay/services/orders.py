"""Order lookups and forward-only status transitions."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from minerpay.core.exceptions import RecordNotFoundError
from minerpay.models import ORDER_TRANSITIONS, Order, OrderStatus
from minerpay.utils.audit import log_audit
from minerpay.utils.time import utcnow

logger = logging.getLogger(__name__)


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise RecordNotFoundError("Order not found.", details={"order_id": order_id})
    return order


def find_by_session(db: Session, session_id: str) -> Order | None:
    return db.scalars(select(Order).where(Order.external_session_id == session_id)).first()


def transition_order(db: Session, order: Order, target: OrderStatus, *, actor: str, data: dict | None = None) -> bool:
    """Move ``order`` to ``target`` if the lifecycle allows it.

    Returns ``False`` without writing when the order is already there or the
    move would go backwards; callers treat that as an idempotent no-op.
    """

    current = order.status
    if current == target:
        return False
    if target not in ORDER_TRANSITIONS[current]:
        logger.warning(
            "Refusing order status regression",
            extra={"order_id": order.id, "from": current.value, "to": target.value},
        )
        return False

    order.status = target
    now = utcnow()
    if target == OrderStatus.COMPLETED:
        order.completed_at = now
    elif target == OrderStatus.CANCELLED:
        order.cancelled_at = now
    db.add(order)
    log_audit(
        db,
        actor=actor,
        action=f"ORDER_{target.name}",
        entity="Order",
        entity_id=order.id,
        data={"from": current.value, "to": target.value, **(data or {})},
    )
    return True


__all__ = ["get_order", "find_by_session", "transition_order"]
