"""Payee account model."""
from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class PayeeAccount(Base):
    """An equipment owner's external destination for split payouts.

    ``payout_enabled`` and ``bank_verified`` start false and are only ever
    changed by the account-status webhook handler.
    """

    __tablename__ = "payee_accounts"

    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    external_account_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str] = mapped_column(String(2), nullable=False)
    payout_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    bank_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    charges_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    details_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    owner = relationship("User")
