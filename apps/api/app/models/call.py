"""Call model."""
from __future__ import annotations

from datetime import datetime, timezone
import enum
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .agent import Agent
    from .phone_number import PhoneNumber
    from .transcript import TranscriptEntry


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CallStatus(str, enum.Enum):
    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    TRANSFERRED = "transferred"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({CallStatus.COMPLETED, CallStatus.FAILED})
ACTIVE_STATUSES = frozenset({CallStatus.INITIATED, CallStatus.RINGING, CallStatus.ANSWERED})


class Call(Base):
    """One telephony session, mutated only by the call lifecycle."""

    __tablename__ = "calls"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    external_id: Mapped[str | None] = mapped_column(String, unique=True, index=True)
    campaign_id: Mapped[str | None] = mapped_column(String)
    phone_number_id: Mapped[str | None] = mapped_column(ForeignKey("phone_numbers.id", ondelete="SET NULL"))
    agent_id: Mapped[str | None] = mapped_column(ForeignKey("agents.id", ondelete="SET NULL"))
    caller_number: Mapped[str | None] = mapped_column(String)
    recipient_number: Mapped[str | None] = mapped_column(String)
    direction: Mapped[CallDirection] = mapped_column(Enum(CallDirection, name="call_direction"), nullable=False)
    status: Mapped[CallStatus] = mapped_column(
        Enum(CallStatus, name="call_status"), default=CallStatus.INITIATED, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_sec: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    recording_url: Mapped[str | None] = mapped_column(String)
    summary: Mapped[str | None] = mapped_column(Text)
    metadata_json: Mapped[dict] = mapped_column(JSONB, default=dict, nullable=False)
    last_event_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    phone_number: Mapped["PhoneNumber | None"] = relationship("PhoneNumber", back_populates="calls")
    agent: Mapped["Agent | None"] = relationship("Agent", back_populates="calls")
    transcripts: Mapped[list["TranscriptEntry"]] = relationship("TranscriptEntry", back_populates="call")
