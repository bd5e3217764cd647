"""Order model definitions."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Enum as SqlEnum, ForeignKey, Index, JSON, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class OrderStatus(str, enum.Enum):
    """Lifecycle of a catalog order."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CheckoutMode(str, enum.Enum):
    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"


# Allowed forward moves; cancellation is the only sideways exit.
ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


class Order(Base):
    """A buyer's purchase of one or more catalog products."""

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_orders_positive_total"),
        Index("ix_orders_status", "status"),
        Index("ix_orders_buyer_id", "buyer_id"),
    )

    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    mode: Mapped[CheckoutMode] = mapped_column(SqlEnum(CheckoutMode), nullable=False, default=CheckoutMode.PAYMENT)
    status: Mapped[OrderStatus] = mapped_column(SqlEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    payer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    line_items_json: Mapped[list] = mapped_column(JSON, nullable=False)
    external_session_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    external_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checkout_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    buyer = relationship("User")

    def grants_membership(self) -> bool:
        return any(item.get("product_type") == "membership" for item in self.line_items_json or [])
