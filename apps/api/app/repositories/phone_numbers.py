"""Phone number lookups."""
from __future__ import annotations

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.phone_number import PhoneNumber


async def get_by_id(session: AsyncSession, phone_number_id: str) -> PhoneNumber | None:
    return await session.get(PhoneNumber, phone_number_id)


async def find_by_external_id(session: AsyncSession, external_id: str) -> PhoneNumber | None:
    """Return the number the provider knows under ``external_id``."""

    stmt: Select[tuple[PhoneNumber]] = select(PhoneNumber).where(PhoneNumber.external_id == external_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
