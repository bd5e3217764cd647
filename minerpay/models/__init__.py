"""ORM models package."""
from .audit import AuditLog
from .base import Base
from .ledger import LedgerEntry, LedgerEntryStatus, LedgerEntryType
from .order import ORDER_TRANSITIONS, CheckoutMode, Order, OrderStatus
from .payee import PayeeAccount
from .rental import FeeSchedule, Rental, RentalPaymentStatus, RentalStatus
from .user import User
from .webhook_event import WebhookEvent

__all__ = [
    "AuditLog",
    "Base",
    "CheckoutMode",
    "FeeSchedule",
    "LedgerEntry",
    "LedgerEntryStatus",
    "LedgerEntryType",
    "ORDER_TRANSITIONS",
    "Order",
    "OrderStatus",
    "PayeeAccount",
    "Rental",
    "RentalPaymentStatus",
    "RentalStatus",
    "User",
    "WebhookEvent",
]
