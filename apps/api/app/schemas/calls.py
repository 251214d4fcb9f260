"""Schemas for the dashboard call API."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models.call import CallDirection, CallStatus
from ..models.transcript import Speaker


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CallOut(_ApiModel):
    id: str
    external_id: str | None = None
    campaign_id: str | None = None
    phone_number_id: str | None = None
    agent_id: str | None = None
    caller_number: str | None = None
    recipient_number: str | None = None
    direction: CallDirection
    status: CallStatus
    duration_sec: int = 0
    cost: float = 0.0
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    recording_url: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")


class TranscriptOut(_ApiModel):
    id: str
    call_id: str
    speaker: Speaker
    content: str
    timestamp_ms: int
    confidence: float | None = None
    is_final: bool = True
    created_at: datetime | None = None


class CallListResponse(_ApiModel):
    calls: list[CallOut]


class CallResponse(_ApiModel):
    call: CallOut


class TranscriptListResponse(_ApiModel):
    transcripts: list[TranscriptOut]


class OutboundCallRequest(_ApiModel):
    phone_number_id: str = Field(..., min_length=1)
    agent_id: str = Field(..., min_length=1)
    recipient_number: str = Field(..., min_length=3)
    campaign_id: str | None = None
    customer_name: str | None = None
