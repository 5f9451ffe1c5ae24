"""Compare-and-swap on Tournament.version, shared by registrations and tournament admin."""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliation.errors import ConcurrencyConflict
from affiliation.models import Tournament

logger = logging.getLogger("affiliation.tournaments")


async def bump_version(
    session: AsyncSession, tournament_id: int, expected_version: int, now: datetime, **values
) -> int:
    """Write `values` and version + 1 only if the tournament is still at expected_version.

    On a miss the session is rolled back and ConcurrencyConflict raised. Returns the new version.
    The caller commits.
    """
    result = await session.execute(
        update(Tournament)
        .where(Tournament.id == tournament_id, Tournament.version == expected_version)
        .values(version=expected_version + 1, updated_at=now, **values)
    )
    if result.rowcount != 1:
        await session.rollback()
        logger.warning(
            "Optimistic lock failed on tournament %s (expected version %s)", tournament_id, expected_version
        )
        raise ConcurrencyConflict(tournament_id, expected_version)
    return expected_version + 1
