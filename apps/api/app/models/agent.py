"""AI agent model."""
from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .call import Call


class Agent(Base):
    """Assistant configuration a call is routed to."""

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    external_assistant_id: Mapped[str | None] = mapped_column(String, unique=True)
    model: Mapped[str] = mapped_column(String, default="gpt-4o", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    calls: Mapped[list["Call"]] = relationship("Call", back_populates="agent")
