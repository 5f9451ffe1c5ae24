"""Family API: a holder manages their own dependants."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import select

from affiliation.errors import InvalidOperation
from affiliation.models import Dependant, Family
from affiliation.models.base import async_session_factory
from affiliation.services.families import dependant_belongs_to_family, dependant_has_registrations
from web.auth import require_holder

router = APIRouter(prefix="/api/family", tags=["family"])


def _not_blank(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


class DependantCreate(BaseModel):
    first_name: str
    last_name: str
    birth_date: Optional[date] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _not_blank(v)


class DependantUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[date] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _not_blank(v)


class DependantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    family_id: int
    first_name: str
    last_name: str
    birth_date: Optional[date]
    created_at: datetime


@router.get("/dependants", response_model=list[DependantResponse])
async def list_dependants(family: Family = Depends(require_holder)):
    """List dependants of the caller's family."""
    async with async_session_factory() as session:
        result = await session.execute(
            select(Dependant).where(Dependant.family_id == family.id).order_by(Dependant.id)
        )
        return [DependantResponse.model_validate(d) for d in result.scalars().all()]


@router.post("/dependants", response_model=DependantResponse, status_code=201)
async def add_dependant(body: DependantCreate, family: Family = Depends(require_holder)):
    """Add a dependant to the caller's family."""
    async with async_session_factory() as session:
        dependant = Dependant(
            family_id=family.id,
            first_name=body.first_name,
            last_name=body.last_name,
            birth_date=body.birth_date,
        )
        session.add(dependant)
        await session.commit()
        await session.refresh(dependant)
        return DependantResponse.model_validate(dependant)


@router.get("/dependants/{dependant_id}", response_model=DependantResponse)
async def get_dependant(dependant_id: int, family: Family = Depends(require_holder)):
    """View one of the caller's dependants. Other families' dependants are not found."""
    async with async_session_factory() as session:
        if not await dependant_belongs_to_family(session, dependant_id, family.id):
            raise HTTPException(404, "Dependant not found")
        dependant = await session.get(Dependant, dependant_id)
        return DependantResponse.model_validate(dependant)


@router.patch("/dependants/{dependant_id}", response_model=DependantResponse)
async def update_dependant(dependant_id: int, body: DependantUpdate, family: Family = Depends(require_holder)):
    """Edit one of the caller's dependants. Fields left out are unchanged."""
    async with async_session_factory() as session:
        if not await dependant_belongs_to_family(session, dependant_id, family.id):
            raise HTTPException(404, "Dependant not found")
        dependant = await session.get(Dependant, dependant_id)
        for field, value in body.model_dump(exclude_unset=True).items():
            if field in ("first_name", "last_name") and value is None:
                continue
            setattr(dependant, field, value)
        await session.commit()
        await session.refresh(dependant)
        return DependantResponse.model_validate(dependant)


@router.delete("/dependants/{dependant_id}")
async def delete_dependant(dependant_id: int, family: Family = Depends(require_holder)):
    """Remove one of the caller's dependants. Refused once they appear on any registration."""
    async with async_session_factory() as session:
        if not await dependant_belongs_to_family(session, dependant_id, family.id):
            raise HTTPException(404, "Dependant not found")
        if await dependant_has_registrations(session, dependant_id):
            raise InvalidOperation(f"Dependant {dependant_id} is named on a registration and cannot be removed.")
        dependant = await session.get(Dependant, dependant_id)
        await session.delete(dependant)
        await session.commit()
        return {"ok": True, "deleted": dependant_id}
