"""Call repository helpers used by the lifecycle and dashboard routes."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import Select, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.call import ACTIVE_STATUSES, TERMINAL_STATUSES, Call, CallDirection, CallStatus

SUCCESS_WINDOW = timedelta(days=7)


@dataclass(slots=True)
class MetricsCounts:
    active: int
    today: int
    completed: int
    total: int


async def get_by_id(session: AsyncSession, call_id: str) -> Call | None:
    """Return a call record by identifier."""

    return await session.get(Call, call_id)


async def find_by_external_id(session: AsyncSession, external_id: str) -> Call | None:
    """Return the call the provider knows under ``external_id``."""

    stmt: Select[tuple[Call]] = select(Call).where(Call.external_id == external_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create(
    session: AsyncSession,
    *,
    direction: CallDirection,
    phone_number_id: str | None,
    agent_id: str | None,
    caller_number: str | None,
    recipient_number: str | None,
    external_id: str | None = None,
    campaign_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> Call:
    """Insert a new call in the ``initiated`` state."""

    now = created_at or datetime.now(timezone.utc)
    call = Call(
        external_id=external_id,
        campaign_id=campaign_id,
        phone_number_id=phone_number_id,
        agent_id=agent_id,
        caller_number=caller_number,
        recipient_number=recipient_number,
        direction=direction,
        status=CallStatus.INITIATED,
        created_at=now,
        duration_sec=0,
        cost=0.0,
        metadata_json=dict(metadata or {}),
        last_event_at=now,
    )
    session.add(call)
    await session.flush()
    return call


async def update_status(
    session: AsyncSession,
    call: Call,
    status: CallStatus,
    *,
    at: datetime,
    started_at: datetime | None = None,
    ended_at: datetime | None = None,
    duration_sec: int | None = None,
    cost: float | None = None,
    recording_url: str | None = None,
    summary: str | None = None,
) -> Call:
    """Set the status and whichever optional columns were supplied."""

    call.status = status
    if started_at is not None:
        call.started_at = started_at
    if ended_at is not None:
        call.ended_at = ended_at
    if duration_sec is not None:
        call.duration_sec = duration_sec
    if cost is not None:
        call.cost = cost
    if recording_url:
        call.recording_url = recording_url
    if summary:
        call.summary = summary
    call.last_event_at = at
    session.add(call)
    await session.flush()
    return call


async def set_external_id(session: AsyncSession, call: Call, external_id: str) -> Call:
    """Attach the provider identifier once the provider accepted the call."""

    call.external_id = external_id
    session.add(call)
    await session.flush()
    return call


async def touch(session: AsyncSession, call: Call, at: datetime) -> None:
    """Record provider activity without changing the status."""

    call.last_event_at = at
    session.add(call)


async def list_calls(
    session: AsyncSession,
    *,
    direction: CallDirection | None = None,
    status: CallStatus | None = None,
    phone_number_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Call]:
    """Return calls newest first with optional filters."""

    stmt: Select[tuple[Call]] = select(Call)
    if direction is not None:
        stmt = stmt.where(Call.direction == direction)
    if status is not None:
        stmt = stmt.where(Call.status == status)
    if phone_number_id:
        stmt = stmt.where(Call.phone_number_id == phone_number_id)
    stmt = stmt.order_by(Call.created_at.desc()).limit(limit).offset(offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_stale(session: AsyncSession, *, older_than: datetime) -> list[Call]:
    """Return non-terminal calls with no provider activity since ``older_than``."""

    last_seen = func.coalesce(Call.last_event_at, Call.created_at)
    stmt: Select[tuple[Call]] = (
        select(Call)
        .where(Call.status.not_in(list(TERMINAL_STATUSES)))
        .where(last_seen < older_than)
        .order_by(last_seen.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def metrics_counts(session: AsyncSession, *, now: datetime) -> MetricsCounts:
    """Count active calls, calls created today and the 7-day outcome split."""

    today_start = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    window_start = today_start - SUCCESS_WINDOW

    stmt = select(
        func.count(case((Call.status.in_(list(ACTIVE_STATUSES)), 1))),
        func.count(case((Call.created_at >= today_start, 1))),
        func.count(case(((Call.created_at >= window_start) & (Call.status == CallStatus.COMPLETED), 1))),
        func.count(case((Call.created_at >= window_start, 1))),
    )
    row = (await session.execute(stmt)).one()
    return MetricsCounts(active=int(row[0]), today=int(row[1]), completed=int(row[2]), total=int(row[3]))
