"""Phone number model."""
from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .call import Call


class PhoneNumber(Base):
    """Number purchased through the telephony provider."""

    __tablename__ = "phone_numbers"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    number: Mapped[str] = mapped_column(String, nullable=False)
    external_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    country_code: Mapped[str] = mapped_column(String, default="US", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    calls: Mapped[list["Call"]] = relationship("Call", back_populates="phone_number")
