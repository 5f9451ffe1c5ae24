"""Family ownership lookups used to authorize registration and dependant operations."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliation.models import Dependant, Family, Registration


async def get_holder_family(session: AsyncSession, holder_id: int) -> Optional[Family]:
    """Family owned by this user, or None."""
    result = await session.execute(select(Family).where(Family.holder_id == holder_id))
    return result.scalar_one_or_none()


async def is_family_holder(session: AsyncSession, user_id: int, family_id: int) -> bool:
    """Does user hold family?"""
    family = await session.get(Family, family_id)
    return family is not None and family.holder_id == user_id


async def dependant_belongs_to_family(session: AsyncSession, dependant_id: int, family_id: int) -> bool:
    dependant = await session.get(Dependant, dependant_id)
    return dependant is not None and dependant.family_id == family_id



async def dependant_has_registrations(session: AsyncSession, dependant_id: int) -> bool:
    """Is the dependant named on any registration, as competitor or partner, in any status?"""
    result = await session.execute(
        select(Registration.id)
        .where(or_(Registration.competitor_id == dependant_id, Registration.partner_id == dependant_id))
        .limit(1)
    )
    return result.scalar_one_or_none() is not None
