"""Raw telephony provider webhook payloads."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _ProviderModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class VapiCustomer(_ProviderModel):
    number: str | None = None


class VapiCall(_ProviderModel):
    id: str = Field(..., min_length=1)
    phone_number_id: str | None = Field(default=None, alias="phoneNumberId")
    assistant_id: str | None = Field(default=None, alias="assistantId")
    customer: VapiCustomer | None = None
    status: str | None = None
    started_at: datetime | None = Field(default=None, alias="startedAt")
    ended_at: datetime | None = Field(default=None, alias="endedAt")
    cost: float | None = Field(default=None, ge=0)
    transcript: str | None = Field(default=None, description="Provider summary of the conversation")
    recording_url: str | None = Field(default=None, alias="recordingUrl")
    metadata: dict[str, Any] | None = None


class VapiTranscript(_ProviderModel):
    role: Literal["user", "assistant"]
    transcript: str
    timestamp_ms: float = Field(..., ge=0, allow_inf_nan=False, alias="timestampMs")
    transcript_type: Literal["partial", "final"] = Field(default="final", alias="transcriptType")
    confidence: float | None = Field(default=None, ge=0, le=1)


class VapiWebhookPayload(_ProviderModel):
    type: str = Field(..., min_length=1)
    call: VapiCall
    transcript: VapiTranscript | None = None
    timestamp: datetime | None = None
