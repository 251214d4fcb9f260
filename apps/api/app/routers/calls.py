"""Dashboard endpoints for browsing and driving calls."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, ProviderError, TransitionRejected
from ..db.session import get_session
from ..models.call import CallDirection, CallStatus
from ..schemas import calls as schemas
from ..services import calls as calls_service
from ..services.lifecycle import CallLifecycle
from ..services.vapi import VapiClient
from .deps import get_lifecycle, get_vapi

router = APIRouter()


@router.get("", response_model=schemas.CallListResponse, response_model_by_alias=True)
async def list_calls(
    direction: CallDirection | None = None,
    status_: CallStatus | None = Query(default=None, alias="status"),
    phone_number_id: str | None = Query(default=None, alias="phoneNumberId"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> schemas.CallListResponse:
    """Return the most recent calls, newest first."""

    calls = await calls_service.list_calls(
        session,
        direction=direction,
        status=status_,
        phone_number_id=phone_number_id,
        limit=limit,
        offset=offset,
    )
    return schemas.CallListResponse(calls=[schemas.CallOut.model_validate(call) for call in calls])


@router.get("/{call_id}", response_model=schemas.CallResponse, response_model_by_alias=True)
async def get_call(call_id: str, session: AsyncSession = Depends(get_session)) -> schemas.CallResponse:
    try:
        call = await calls_service.get_call(call_id, session)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return schemas.CallResponse(call=schemas.CallOut.model_validate(call))


@router.get(
    "/{call_id}/transcripts", response_model=schemas.TranscriptListResponse, response_model_by_alias=True
)
async def get_transcripts(
    call_id: str,
    session: AsyncSession = Depends(get_session),
    lifecycle: CallLifecycle = Depends(get_lifecycle),
) -> schemas.TranscriptListResponse:
    """Return the call's transcript ordered by conversation offset."""

    try:
        entries = await calls_service.get_transcripts(call_id, session, lifecycle=lifecycle)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return schemas.TranscriptListResponse(
        transcripts=[schemas.TranscriptOut.model_validate(entry) for entry in entries]
    )


@router.post(
    "/outbound",
    response_model=schemas.CallResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def start_outbound_call(
    payload: schemas.OutboundCallRequest,
    session: AsyncSession = Depends(get_session),
    lifecycle: CallLifecycle = Depends(get_lifecycle),
    vapi: VapiClient = Depends(get_vapi),
) -> schemas.CallResponse:
    """Place an outbound call through the provider."""

    try:
        call = await calls_service.start_outbound_call(payload, session, lifecycle=lifecycle, vapi=vapi)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return schemas.CallResponse(call=schemas.CallOut.model_validate(call))


@router.post("/{call_id}/end", response_model=schemas.CallResponse, response_model_by_alias=True)
async def end_call(
    call_id: str,
    session: AsyncSession = Depends(get_session),
    lifecycle: CallLifecycle = Depends(get_lifecycle),
    vapi: VapiClient = Depends(get_vapi),
) -> schemas.CallResponse:
    """Hang up a live call."""

    try:
        call = await calls_service.end_call(call_id, session, lifecycle=lifecycle, vapi=vapi)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except TransitionRejected as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return schemas.CallResponse(call=schemas.CallOut.model_validate(call))
