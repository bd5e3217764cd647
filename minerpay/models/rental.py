"""Rental model definitions."""
import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from minerpay.core.exceptions import LedgerInvariantError

from .base import Base


class RentalStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class RentalPaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class FeeSchedule(str, enum.Enum):
    """How the platform fee of a rental was derived."""

    PERCENTAGE = "percentage"
    FLAT_PER_DAY = "flat_per_day"


# Columns frozen once they hold a value.
IMMUTABLE_SPLIT_COLUMNS = ("fee_schedule", "fee_rate", "platform_fee", "owner_payout")


class Rental(Base):
    """A time-boxed lease of owner-listed hardware, settled on its own."""

    __tablename__ = "rentals"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_rentals_date_range"),
        CheckConstraint("daily_rate > 0", name="ck_rentals_positive_daily_rate"),
        CheckConstraint("total_amount > 0", name="ck_rentals_positive_total"),
        Index("ix_rentals_status", "status"),
        Index("ix_rentals_payment_status", "payment_status"),
        Index("ix_rentals_owner_id", "owner_id"),
    )

    machine_id: Mapped[int] = mapped_column(Integer, nullable=False)
    renter_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    fee_schedule: Mapped[FeeSchedule | None] = mapped_column(SqlEnum(FeeSchedule), nullable=True)
    fee_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 6), nullable=True)
    platform_fee: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    owner_payout: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    external_payment_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    payment_status: Mapped[RentalPaymentStatus] = mapped_column(
        SqlEnum(RentalPaymentStatus), nullable=False, default=RentalPaymentStatus.PENDING
    )
    status: Mapped[RentalStatus] = mapped_column(SqlEnum(RentalStatus), nullable=False, default=RentalStatus.PENDING)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    renter = relationship("User", foreign_keys=[renter_id])
    owner = relationship("User", foreign_keys=[owner_id])
    ledger_entries = relationship("LedgerEntry", back_populates="rental", order_by="LedgerEntry.id")

    @property
    def rental_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    @property
    def has_split(self) -> bool:
        return self.platform_fee is not None and self.owner_payout is not None


@event.listens_for(Rental, "before_update")
def _freeze_captured_split(mapper, connection, target: Rental) -> None:
    state = inspect(target)
    for column in IMMUTABLE_SPLIT_COLUMNS:
        history = state.attrs[column].history
        if not history.has_changes():
            continue
        previous = [value for value in history.deleted if value is not None]
        if previous and any(value != previous[0] for value in history.added):
            raise LedgerInvariantError(
                f"Rental {target.id} {column} is immutable once set.",
                details={"rental_id": target.id, "column": column},
            )
