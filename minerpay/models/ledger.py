"""Settlement ledger model definitions."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from minerpay.core.exceptions import LedgerInvariantError

from .base import Base


class LedgerEntryType(str, enum.Enum):
    RENTAL_PAYMENT = "rental_payment"
    OWNER_PAYOUT = "owner_payout"


class LedgerEntryStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


# The only columns the pending -> completed transition may touch.
COMPLETION_COLUMNS = {"status", "external_transfer_id", "completed_at", "updated_at"}


class LedgerEntry(Base):
    """Append-only record of money movement tied to a rental."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("rental_id", "entry_type", name="uq_ledger_entries_rental_type"),
        CheckConstraint("amount > 0", name="ck_ledger_entries_positive_amount"),
        Index("ix_ledger_entries_status", "status"),
        Index("ix_ledger_entries_external_payment_id", "external_payment_id"),
    )

    rental_id: Mapped[int] = mapped_column(ForeignKey("rentals.id"), nullable=False)
    entry_type: Mapped[LedgerEntryType] = mapped_column(SqlEnum(LedgerEntryType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[LedgerEntryStatus] = mapped_column(
        SqlEnum(LedgerEntryStatus), nullable=False, default=LedgerEntryStatus.PENDING
    )
    external_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_transfer_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    destination_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rental = relationship("Rental", back_populates="ledger_entries")


@event.listens_for(LedgerEntry, "before_update")
def _enforce_append_only(mapper, connection, target: LedgerEntry) -> None:
    state = inspect(target)
    changed = {attr.key for attr in state.attrs if attr.history.has_changes()}
    forbidden = changed - COMPLETION_COLUMNS
    if forbidden:
        raise LedgerInvariantError(
            f"Ledger entry {target.id} is immutable.",
            details={"ledger_entry_id": target.id, "columns": sorted(forbidden)},
        )
    status_history = state.attrs.status.history
    if status_history.has_changes() and LedgerEntryStatus.COMPLETED in status_history.deleted:
        raise LedgerInvariantError(
            f"Ledger entry {target.id} is already completed.",
            details={"ledger_entry_id": target.id},
        )
