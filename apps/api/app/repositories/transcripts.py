"""Transcript repository helpers."""
from __future__ import annotations

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.transcript import TranscriptEntry


async def list_for_call(session: AsyncSession, call_id: str) -> list[TranscriptEntry]:
    """Return a call's transcript ordered by offset, then arrival."""

    stmt: Select[tuple[TranscriptEntry]] = (
        select(TranscriptEntry)
        .where(TranscriptEntry.call_id == call_id)
        .order_by(TranscriptEntry.timestamp_ms.asc(), TranscriptEntry.created_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def add(session: AsyncSession, entry: TranscriptEntry) -> TranscriptEntry:
    """Persist a new transcript entry."""

    session.add(entry)
    await session.flush()
    return entry
