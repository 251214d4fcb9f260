"""Agent lookups."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.agent import Agent


async def get_by_id(session: AsyncSession, agent_id: str) -> Agent | None:
    """Return an agent by identifier."""

    return await session.get(Agent, agent_id)
