"""Registration API: individual/duo requests, duo decisions, cancellation, sync monitoring."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from affiliation.models import Dependant, Registration, RegistrationSync, SyncStatus, User
from affiliation.models.base import async_session_factory
from affiliation.services.families import is_family_holder
from affiliation.services.registration import RegistrationCoordinator
from web.auth import require_admin_user, require_user

router = APIRouter(prefix="/api", tags=["registrations"])

_coordinator = RegistrationCoordinator()


def get_coordinator() -> RegistrationCoordinator:
    """Dependency; override in tests to inject a clock or session factory."""
    return _coordinator


# --- Pydantic schemas ---


class IndividualRegistrationRequest(BaseModel):
    competitor_id: int


class DuoRegistrationRequest(BaseModel):
    competitor_id: int
    partner_id: int


class CancelRegistrationRequest(BaseModel):
    reason: Optional[str] = None


class SyncResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    registration_id: int
    status: str
    attempts: int
    created_at: datetime
    updated_at: datetime
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None


class RegistrationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    competitor_id: int
    partner_id: Optional[int] = None
    status: str
    type: str
    version: int
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    sync: Optional[SyncResponse] = None


class PendingRegistrationResponse(BaseModel):
    registration_id: int
    tournament_id: int
    tournament_name: str
    tournament_type: str
    competitor_id: int
    competitor_name: str
    partner_id: int
    requested_at: datetime


# --- Requests ---


@router.post(
    "/tournaments/{tournament_id}/registrations/individual",
    response_model=RegistrationResponse,
    status_code=201,
)
async def request_individual_registration(
    tournament_id: int,
    body: IndividualRegistrationRequest,
    user: User = Depends(require_user),
    coordinator: RegistrationCoordinator = Depends(get_coordinator),
):
    """Register one of your dependants alone. 409 if already registered or on a concurrent write."""
    registration = await coordinator.request_individual(tournament_id, body.competitor_id, user.id)
    return RegistrationResponse.model_validate(registration)


@router.post(
    "/tournaments/{tournament_id}/registrations/duo",
    response_model=RegistrationResponse,
    status_code=201,
)
async def request_duo_registration(
    tournament_id: int,
    body: DuoRegistrationRequest,
    user: User = Depends(require_user),
    coordinator: RegistrationCoordinator = Depends(get_coordinator),
):
    """Register one of your dependants with a partner; the partner's holder must accept."""
    registration = await coordinator.request_duo(tournament_id, body.competitor_id, body.partner_id, user.id)
    return RegistrationResponse.model_validate(registration)


# --- Duo decisions & cancellation ---


@router.get("/registrations/pending", response_model=list[PendingRegistrationResponse])
async def list_my_pending_registrations(
    user: User = Depends(require_user),
    coordinator: RegistrationCoordinator = Depends(get_coordinator),
):
    """Duo requests waiting for your decision."""
    return await coordinator.pending_for_holder(user.id)


@router.post("/registrations/{registration_id}/accept", response_model=RegistrationResponse)
async def accept_duo_registration(
    registration_id: int,
    user: User = Depends(require_user),
    coordinator: RegistrationCoordinator = Depends(get_coordinator),
):
    """Accept a duo request as the partner's holder."""
    registration = await coordinator.accept_duo(registration_id, user.id)
    return RegistrationResponse.model_validate(registration)


@router.post("/registrations/{registration_id}/reject", response_model=RegistrationResponse)
async def reject_duo_registration(
    registration_id: int,
    user: User = Depends(require_user),
    coordinator: RegistrationCoordinator = Depends(get_coordinator),
):
    """Reject a duo request as the partner's holder."""
    registration = await coordinator.reject_duo(registration_id, user.id)
    return RegistrationResponse.model_validate(registration)


@router.post("/registrations/{registration_id}/cancel", response_model=RegistrationResponse)
async def cancel_registration(
    registration_id: int,
    body: CancelRegistrationRequest,
    user: User = Depends(require_user),
    coordinator: RegistrationCoordinator = Depends(get_coordinator),
):
    """Cancel a confirmed or pending registration. Either holder may cancel; admins may cancel any."""
    acting_user_id = None if user.role == "admin" else user.id
    registration = await coordinator.cancel(registration_id, body.reason, acting_user_id)
    return RegistrationResponse.model_validate(registration)


@router.get("/registrations/{registration_id}", response_model=RegistrationResponse)
async def get_registration(registration_id: int, user: User = Depends(require_user)):
    """Registration with its sync tracker. Visible to either holder and to admins."""
    async with async_session_factory() as session:
        result = await session.execute(
            select(Registration)
            .where(Registration.id == registration_id)
            .options(selectinload(Registration.sync))
        )
        registration = result.scalar_one_or_none()
        if not registration:
            raise HTTPException(404, "Registration not found")
        if user.role != "admin":
            allowed = False
            for dependant_id in (registration.competitor_id, registration.partner_id):
                dependant = await session.get(Dependant, dependant_id) if dependant_id else None
                if dependant and await is_family_holder(session, user.id, dependant.family_id):
                    allowed = True
                    break
            if not allowed:
                raise HTTPException(404, "Registration not found")
        return RegistrationResponse.model_validate(registration)


# --- Sync monitoring ---


@router.get("/admin/registration-syncs", response_model=list[SyncResponse])
async def list_registration_syncs(
    status: Optional[SyncStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    admin: User = Depends(require_admin_user),
):
    """Sync trackers for operators, most recently updated first. Use ?status=FAILED to find stuck registrations."""
    async with async_session_factory() as session:
        q = select(RegistrationSync).order_by(RegistrationSync.updated_at.desc(), RegistrationSync.id.desc()).limit(limit)
        if status is not None:
            q = q.where(RegistrationSync.status == status.value)
        result = await session.execute(q)
        return [SyncResponse.model_validate(s) for s in result.scalars().all()]
