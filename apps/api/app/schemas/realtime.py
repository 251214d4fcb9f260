"""Wire messages exchanged over the realtime bus."""
from __future__ import annotations

from datetime import datetime
import enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

METRICS_TOPIC = "metrics-update"
CALL_TOPIC_PREFIX = "call-"


def call_topic(call_id: str) -> str:
    """Return the topic carrying status and transcript events for one call."""

    return f"{CALL_TOPIC_PREFIX}{call_id}"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CallEventType(str, enum.Enum):
    CALL_STATUS = "call-status"
    TRANSCRIPT = "transcript"


class MetricsSnapshot(_WireModel):
    active_calls: int = Field(default=0, ge=0)
    calls_today: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0, le=100)


class CallEventMessage(_WireModel):
    type: CallEventType
    call_id: str
    data: dict[str, Any]
    timestamp: datetime


class MetricsMessage(_WireModel):
    type: Literal["metrics-update"] = METRICS_TOPIC
    data: MetricsSnapshot


class ClientFrame(BaseModel):
    """Frame sent by a dashboard viewer over the websocket."""

    action: Literal["subscribe", "unsubscribe", "ping"]
    topic: str | None = Field(default=None, min_length=1)
