"""API routes for tournament management."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliation.errors import InvalidOperation
from affiliation.models import Registration, Tournament, TournamentType, User
from affiliation.models.base import as_naive_utc, async_session_factory, utcnow
from affiliation.models.tournament import validate_details, validate_schedule
from affiliation.services.tournaments import bump_version
from web.auth import require_admin_user, require_user

router = APIRouter(prefix="/api", tags=["tournaments"])


# --- Pydantic schemas ---


class TournamentCreate(BaseModel):
    name: str
    description: str
    type: TournamentType
    registration_start_date: datetime
    registration_end_date: datetime
    start_date: datetime


class TournamentUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[TournamentType] = None
    registration_start_date: Optional[datetime] = None
    registration_end_date: Optional[datetime] = None
    start_date: Optional[datetime] = None


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    type: str
    registration_start_date: datetime
    registration_end_date: datetime
    start_date: datetime
    version: int
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    registration_count: int = 0
    registration_open: bool = False


async def _registration_counts(session: AsyncSession, tournament_ids: list[int]) -> dict[int, int]:
    if not tournament_ids:
        return {}
    result = await session.execute(
        select(Registration.tournament_id, func.count(Registration.id))
        .where(Registration.tournament_id.in_(tournament_ids))
        .group_by(Registration.tournament_id)
    )
    return {tid: count for tid, count in result.all()}


def _to_response(t: Tournament, registration_count: int) -> TournamentResponse:
    data = TournamentResponse.model_validate(t)
    data.registration_count = registration_count
    data.registration_open = not t.is_deleted and t.is_window_open(utcnow())
    return data


async def _get_live_tournament(session: AsyncSession, tournament_id: int) -> Tournament:
    t = await session.get(Tournament, tournament_id)
    if not t or t.is_deleted:
        raise HTTPException(404, "Tournament not found")
    return t


# --- Tournaments ---


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
async def create_tournament(body: TournamentCreate, admin: User = Depends(require_admin_user)):
    """Create a tournament (admin only)."""
    reg_start = as_naive_utc(body.registration_start_date)
    reg_end = as_naive_utc(body.registration_end_date)
    start = as_naive_utc(body.start_date)
    validate_details(body.name, body.description)
    validate_schedule(reg_start, reg_end, start)
    now = utcnow()
    async with async_session_factory() as session:
        t = Tournament(
            name=body.name.strip(),
            description=body.description.strip(),
            type=body.type.value,
            registration_start_date=reg_start,
            registration_end_date=reg_end,
            start_date=start,
            version=1,
            created_at=now,
            updated_at=now,
        )
        session.add(t)
        await session.commit()
        await session.refresh(t)
        return _to_response(t, 0)


@router.get("/tournaments", response_model=list[TournamentResponse])
async def list_tournaments(
    type: Optional[TournamentType] = None,
    include_deleted: bool = False,
    user: User = Depends(require_user),
):
    """List tournaments, newest first. Deleted ones only with ?include_deleted=1 (admin)."""
    async with async_session_factory() as session:
        q = select(Tournament).order_by(Tournament.id.desc()).limit(50)
        if type is not None:
            q = q.where(Tournament.type == type.value)
        if not (include_deleted and user.role == "admin"):
            q = q.where(Tournament.deleted_at.is_(None))
        result = await session.execute(q)
        tournaments = result.scalars().all()
        counts = await _registration_counts(session, [t.id for t in tournaments])
        return [_to_response(t, counts.get(t.id, 0)) for t in tournaments]


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
async def get_tournament(tournament_id: int, user: User = Depends(require_user)):
    """Tournament details with registration count and current version."""
    async with async_session_factory() as session:
        t = await _get_live_tournament(session, tournament_id)
        counts = await _registration_counts(session, [t.id])
        return _to_response(t, counts.get(t.id, 0))


@router.patch("/tournaments/{tournament_id}", response_model=TournamentResponse)
async def update_tournament(tournament_id: int, body: TournamentUpdate, admin: User = Depends(require_admin_user)):
    """Update a tournament that has no registrations yet (admin only).

    Guarded by the tournament version: a registration committed after the count check yields 409.
    """
    async with async_session_factory() as session:
        t = await _get_live_tournament(session, tournament_id)
        expected_version = t.version
        counts = await _registration_counts(session, [t.id])
        if counts.get(t.id, 0) > 0:
            raise InvalidOperation("Cannot update a tournament that already has registrations.")
        validate_details(body.name, body.description)
        changes = {}
        if body.name is not None:
            changes["name"] = body.name.strip()
        if body.description is not None:
            changes["description"] = body.description.strip()
        if body.type is not None:
            changes["type"] = body.type.value
        if body.registration_start_date is not None:
            changes["registration_start_date"] = as_naive_utc(body.registration_start_date)
        if body.registration_end_date is not None:
            changes["registration_end_date"] = as_naive_utc(body.registration_end_date)
        if body.start_date is not None:
            changes["start_date"] = as_naive_utc(body.start_date)
        validate_schedule(
            changes.get("registration_start_date", t.registration_start_date),
            changes.get("registration_end_date", t.registration_end_date),
            changes.get("start_date", t.start_date),
        )
        await bump_version(session, t.id, expected_version, utcnow(), **changes)
        await session.commit()
        await session.refresh(t)
        return _to_response(t, 0)


@router.delete("/tournaments/{tournament_id}")
async def delete_tournament(tournament_id: int, admin: User = Depends(require_admin_user)):
    """Soft-delete a tournament that has no registrations (admin only). Version-guarded like update."""
    async with async_session_factory() as session:
        t = await _get_live_tournament(session, tournament_id)
        name, expected_version = t.name, t.version
        counts = await _registration_counts(session, [t.id])
        if counts.get(t.id, 0) > 0:
            raise InvalidOperation("Cannot delete a tournament that already has registrations.")
        now = utcnow()
        await bump_version(session, t.id, expected_version, now, deleted_at=now)
        await session.commit()
        return {"ok": True, "deleted": name}
