"""User model."""
from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class User(Base):
    """A marketplace account, acting as buyer, renter or equipment owner.

    Identity and sessions live upstream; this table only carries what the
    settlement pipeline reads or writes.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_paid_member: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
