"""Translate raw provider webhooks into a closed set of lifecycle events."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import math
from typing import Any, Union
from uuid import NAMESPACE_URL, uuid5

from pydantic import ValidationError

from ..core.errors import EventValidationError
from ..models.call import CallStatus
from ..models.transcript import Speaker
from ..schemas.webhooks import VapiWebhookPayload

logger = logging.getLogger(__name__)

TRANSCRIPT_NAMESPACE = uuid5(NAMESPACE_URL, "callboard:transcript")

# Provider call statuses; "ended" is promoted to a CallEnded event.
PROVIDER_STATUS_MAP: dict[str, CallStatus] = {
    "queued": CallStatus.INITIATED,
    "ringing": CallStatus.RINGING,
    "in-progress": CallStatus.ANSWERED,
    "forwarding": CallStatus.TRANSFERRED,
}


@dataclass(frozen=True, slots=True)
class CallStarted:
    external_id: str
    phone_number_external_id: str
    assistant_id: str
    customer_number: str | None
    started_at: datetime | None
    received_at: datetime
    local_call_id: str | None = None


@dataclass(frozen=True, slots=True)
class CallEnded:
    external_id: str
    ended_at: datetime | None
    cost: float | None
    summary: str | None
    recording_url: str | None
    received_at: datetime


@dataclass(frozen=True, slots=True)
class CallHungUp:
    external_id: str
    received_at: datetime


@dataclass(frozen=True, slots=True)
class StatusChanged:
    external_id: str
    status: CallStatus
    received_at: datetime


@dataclass(frozen=True, slots=True)
class TranscriptReceived:
    external_id: str
    entry_id: str
    speaker: Speaker
    content: str
    timestamp_ms: int
    is_final: bool
    confidence: float | None
    received_at: datetime


ProviderEvent = Union[CallStarted, CallEnded, CallHungUp, StatusChanged, TranscriptReceived]


def parse_provider_event(body: Any, *, now: datetime | None = None) -> ProviderEvent | None:
    """Validate a webhook body and return the matching event.

    Returns ``None`` for event types the lifecycle does not track. Raises
    ``EventValidationError`` when identifiers or required fields are missing.
    """

    if not isinstance(body, dict):
        raise EventValidationError("Webhook body must be a JSON object")
    try:
        payload = VapiWebhookPayload.model_validate(body)
    except ValidationError as exc:
        raise EventValidationError(f"Malformed provider event: {exc.error_count()} error(s)") from exc

    received_at = _ensure_tz(payload.timestamp) if payload.timestamp else (now or datetime.now(timezone.utc))
    call = payload.call

    if payload.type == "call-start":
        if not call.phone_number_id or not call.assistant_id:
            raise EventValidationError("call-start requires phoneNumberId and assistantId")
        return CallStarted(
            external_id=call.id,
            phone_number_external_id=call.phone_number_id,
            assistant_id=call.assistant_id,
            customer_number=call.customer.number if call.customer else None,
            started_at=_ensure_tz(call.started_at) if call.started_at else None,
            received_at=received_at,
            local_call_id=_local_call_id(call.metadata),
        )

    if payload.type == "call-end":
        return _call_ended(payload, received_at)

    if payload.type == "hang":
        return CallHungUp(external_id=call.id, received_at=received_at)

    if payload.type == "transcript":
        if payload.transcript is None:
            raise EventValidationError("transcript event without transcript body")
        line = payload.transcript
        is_final = line.transcript_type == "final"
        # Offsets may carry sub-millisecond precision; storage keeps whole ms.
        offset = math.floor(line.timestamp_ms)
        return TranscriptReceived(
            external_id=call.id,
            entry_id=transcript_entry_id(call.id, line.role, offset, is_final, line.transcript),
            speaker=Speaker(line.role),
            content=line.transcript,
            timestamp_ms=offset,
            is_final=is_final,
            confidence=line.confidence,
            received_at=received_at,
        )

    if payload.type == "status-update":
        provider_status = (call.status or "").strip().lower()
        if provider_status == "ended":
            return _call_ended(payload, received_at)
        status = PROVIDER_STATUS_MAP.get(provider_status)
        if status is None:
            raise EventValidationError(f"Unknown provider call status {call.status!r}")
        return StatusChanged(external_id=call.id, status=status, received_at=received_at)

    logger.info("Ignoring provider event type %s for call %s", payload.type, call.id)
    return None


def transcript_entry_id(external_id: str, role: str, timestamp_ms: int, is_final: bool, text: str) -> str:
    """Derive a stable identifier so provider re-deliveries collapse into one entry."""

    marker = "final" if is_final else "partial"
    return str(uuid5(TRANSCRIPT_NAMESPACE, f"{external_id}:{role}:{timestamp_ms}:{marker}:{text}"))


def _call_ended(payload: VapiWebhookPayload, received_at: datetime) -> CallEnded:
    call = payload.call
    return CallEnded(
        external_id=call.id,
        ended_at=_ensure_tz(call.ended_at) if call.ended_at else None,
        cost=call.cost,
        summary=call.transcript,
        recording_url=call.recording_url,
        received_at=received_at,
    )


def _ensure_tz(value: datetime) -> datetime:
    """Ensure the provided datetime is timezone-aware in UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _local_call_id(metadata: dict[str, Any] | None) -> str | None:
    """Our call id, echoed back by the provider for calls we dialled."""

    if not metadata:
        return None
    value = metadata.get("callId")
    return str(value) if value else None
