"""Dashboard call operations layered over the lifecycle and the provider."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, ProviderError, TransitionRejected
from ..models.call import Call, CallDirection, CallStatus
from ..models.transcript import TranscriptEntry
from ..repositories import agents as agents_repo
from ..repositories import calls as calls_repo
from ..repositories import phone_numbers as phone_numbers_repo
from ..repositories import transcripts as transcripts_repo
from ..schemas import calls as schemas
from .lifecycle import CallLifecycle
from .vapi import VapiClient

logger = logging.getLogger(__name__)


async def start_outbound_call(
    payload: schemas.OutboundCallRequest,
    session: AsyncSession,
    *,
    lifecycle: CallLifecycle,
    vapi: VapiClient,
) -> Call:
    """Create the call record, then ask the provider to dial.

    A provider failure leaves the record in ``failed`` rather than stranded in
    ``initiated``.
    """

    phone_number = await phone_numbers_repo.get_by_id(session, payload.phone_number_id)
    agent = await agents_repo.get_by_id(session, payload.agent_id)
    if phone_number is None or agent is None:
        raise NotFoundError("Phone number or AI agent not found")

    call = await lifecycle.create_outbound(
        session,
        phone_number=phone_number,
        agent=agent,
        recipient_number=payload.recipient_number,
        campaign_id=payload.campaign_id,
    )

    try:
        provider_call = await vapi.create_call(
            phone_number_id=phone_number.external_id,
            assistant_id=agent.external_assistant_id or agent.id,
            customer_number=payload.recipient_number,
            customer_name=payload.customer_name,
            metadata={"callId": call.id},
        )
    except ProviderError as exc:
        logger.warning("Provider rejected outbound call %s: %s", call.id, exc)
        try:
            await lifecycle.mark_failed(session, call.id, reason=str(exc))
        except TransitionRejected:
            logger.debug("Call %s closed before the provider error was recorded", call.id)
        raise

    external_id = provider_call.get("id")
    if external_id:
        call = await lifecycle.attach_external_id(session, call.id, str(external_id))
    else:
        logger.warning("Provider response for call %s carried no id", call.id)
    return call


async def end_call(
    call_id: str,
    session: AsyncSession,
    *,
    lifecycle: CallLifecycle,
    vapi: VapiClient,
) -> Call:
    """Hang up through the provider and close the record."""

    call = await calls_repo.get_by_id(session, call_id)
    if call is None:
        raise NotFoundError(f"Call {call_id} not found")
    if not call.external_id:
        raise NotFoundError(f"Call {call_id} has no provider id")
    if call.status.is_terminal:
        raise TransitionRejected(call.status, CallStatus.COMPLETED, "call already closed")

    await vapi.end_call(call.external_id)
    await lifecycle.close(session, call_id)
    refreshed = await calls_repo.get_by_id(session, call_id)
    return refreshed or call


async def list_calls(
    session: AsyncSession,
    *,
    direction: CallDirection | None = None,
    status: CallStatus | None = None,
    phone_number_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Call]:
    return await calls_repo.list_calls(
        session,
        direction=direction,
        status=status,
        phone_number_id=phone_number_id,
        limit=limit,
        offset=offset,
    )


async def get_call(call_id: str, session: AsyncSession) -> Call:
    call = await calls_repo.get_by_id(session, call_id)
    if call is None:
        raise NotFoundError(f"Call {call_id} not found")
    return call


async def get_transcripts(call_id: str, session: AsyncSession, *, lifecycle: CallLifecycle) -> list[TranscriptEntry]:
    """Return the ordered transcript, from the live buffer when it holds the call."""

    buffer = lifecycle.transcripts
    if buffer.is_loaded(call_id):
        return buffer.read(call_id)
    await get_call(call_id, session)
    return await transcripts_repo.list_for_call(session, call_id)
