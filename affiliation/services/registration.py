"""Registration coordinator: request, approve, reject and cancel tournament registrations.

Every write that affects a tournament's registrations (create, accept, reject) commits together
with a compare-and-swap on ``Tournament.version``. If another request committed in between, the
whole unit of work is rolled back and ConcurrencyConflict is raised; retrying is the caller's job.
Cancellation is a unilateral withdrawal and leaves both versions alone.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased, selectinload

from affiliation.errors import (
    DuplicateRegistration,
    Forbidden,
    InvalidOperation,
    InvalidState,
    NotFound,
)
from affiliation.models import (
    Dependant,
    Registration,
    RegistrationStatus,
    Tournament,
    TournamentType,
)
from affiliation.models.base import async_session_factory, utcnow
from affiliation.models.registration import INACTIVE_STATUSES
from affiliation.services.families import get_holder_family, is_family_holder
from affiliation.services.tournaments import bump_version

logger = logging.getLogger("affiliation.registration")


class RegistrationCoordinator:
    """Orchestrates registration writes and their cross-entity invariants."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory or async_session_factory
        self._clock = clock

    # --- Requests ---

    async def request_individual(self, tournament_id: int, competitor_id: int, holder_id: int) -> Registration:
        """Register a dependant of the caller's family alone. Confirmed immediately."""
        now = self._clock()
        async with self._session_factory() as session:
            tournament = await self._get_open_tournament(session, tournament_id, TournamentType.INDIVIDUAL, now)
            competitor = await self._get_own_dependant(session, competitor_id, holder_id)
            await self._ensure_not_registered(session, tournament.id, competitor.id)

            registration = Registration.individual(tournament.id, competitor.id, now)
            await self._commit_new(session, registration, tournament, now)

        logger.info(
            "Individual registration %s created: tournament=%s competitor=%s",
            registration.id, tournament_id, competitor_id,
        )
        return registration

    async def request_duo(
        self, tournament_id: int, competitor_id: int, partner_id: int, holder_id: int
    ) -> Registration:
        """Register a dependant of the caller's family with a partner. Waits for the partner holder's approval."""
        now = self._clock()
        async with self._session_factory() as session:
            tournament = await self._get_open_tournament(session, tournament_id, TournamentType.DUO, now)
            competitor = await self._get_own_dependant(session, competitor_id, holder_id)
            if partner_id == competitor.id:
                raise InvalidOperation("Partner must be a different dependant than the competitor.")
            partner = await session.get(Dependant, partner_id)
            if not partner:
                raise NotFound("Dependant", partner_id)
            await self._ensure_not_registered(session, tournament.id, competitor.id)
            await self._ensure_not_registered(session, tournament.id, partner.id)

            registration = Registration.duo(tournament.id, competitor.id, partner.id, now)
            await self._commit_new(session, registration, tournament, now)

        logger.info(
            "Duo registration %s requested: tournament=%s competitor=%s partner=%s",
            registration.id, tournament_id, competitor_id, partner_id,
        )
        return registration

    # --- Duo decisions ---

    async def accept_duo(self, registration_id: int, acting_user_id: int) -> Registration:
        """Partner's holder confirms a pending duo registration."""
        return await self._decide_duo(registration_id, acting_user_id, "accept")

    async def reject_duo(self, registration_id: int, acting_user_id: int) -> Registration:
        """Partner's holder declines a pending duo registration. Its sync tracker ends FAILED."""
        return await self._decide_duo(registration_id, acting_user_id, "reject")

    async def _decide_duo(self, registration_id: int, acting_user_id: int, action: str) -> Registration:
        now = self._clock()
        async with self._session_factory() as session:
            registration = await self._get_registration(session, registration_id)
            tournament = await self._get_tournament(session, registration.tournament_id)
            tournament_id, expected_version = tournament.id, tournament.version

            if not registration.can(action):
                raise InvalidState(registration.id, registration.status, action)
            partner = await session.get(Dependant, registration.partner_id) if registration.partner_id else None
            if not partner or not await is_family_holder(session, acting_user_id, partner.family_id):
                raise Forbidden(f"Only the holder of the partner's family can {action} registration {registration.id}")

            if action == "accept":
                registration.accept(now)
            else:
                registration.reject(now)
                registration.sync.mark_failed(now)
            await session.flush()
            await self._commit_versioned(session, tournament_id, expected_version, now)

        logger.info("Duo registration %s %sed by user %s", registration_id, action, acting_user_id)
        return registration

    # --- Cancellation ---

    async def cancel(
        self,
        registration_id: int,
        reason: Optional[str] = None,
        acting_user_id: Optional[int] = None,
    ) -> Registration:
        """Withdraw a confirmed or pending registration. Not idempotent.

        When acting_user_id is given it must hold the competitor's or the partner's family.
        """
        now = self._clock()
        async with self._session_factory() as session:
            registration = await self._get_registration(session, registration_id)
            await self._get_tournament(session, registration.tournament_id)

            if not registration.can("cancel"):
                raise InvalidState(registration.id, registration.status, "cancel")
            if acting_user_id is not None and not await self._is_either_holder(session, registration, acting_user_id):
                raise Forbidden(f"Only the competitor's or partner's holder can cancel registration {registration.id}")

            registration.cancel(now, reason)
            await session.commit()

        logger.info("Registration %s cancelled (reason: %s)", registration_id, reason or "-")
        return registration

    # --- Queries ---

    async def pending_for_holder(self, holder_id: int) -> list[dict]:
        """Duo requests waiting for this holder's decision (partner belongs to their family)."""
        async with self._session_factory() as session:
            family = await get_holder_family(session, holder_id)
            if not family:
                return []
            competitor = aliased(Dependant)
            partner = aliased(Dependant)
            result = await session.execute(
                select(Registration, Tournament, competitor)
                .join(Tournament, Tournament.id == Registration.tournament_id)
                .join(competitor, competitor.id == Registration.competitor_id)
                .join(partner, partner.id == Registration.partner_id)
                .where(
                    Registration.status == RegistrationStatus.PENDING_APPROVAL.value,
                    partner.family_id == family.id,
                    Tournament.deleted_at.is_(None),
                )
                .order_by(Registration.created_at, Registration.id)
            )
            return [
                {
                    "registration_id": reg.id,
                    "tournament_id": t.id,
                    "tournament_name": t.name,
                    "tournament_type": t.type,
                    "competitor_id": comp.id,
                    "competitor_name": comp.full_name,
                    "partner_id": reg.partner_id,
                    "requested_at": reg.created_at,
                }
                for reg, t, comp in result.all()
            ]

    # --- Helpers ---

    async def _get_tournament(self, session: AsyncSession, tournament_id: int) -> Tournament:
        tournament = await session.get(Tournament, tournament_id)
        if not tournament or tournament.is_deleted:
            raise NotFound("Tournament", tournament_id)
        return tournament

    async def _get_open_tournament(
        self, session: AsyncSession, tournament_id: int, expected_type: TournamentType, now: datetime
    ) -> Tournament:
        tournament = await self._get_tournament(session, tournament_id)
        if tournament.type != expected_type:
            raise InvalidOperation(
                f"Tournament {tournament_id} is of type {tournament.type}; "
                f"{expected_type.value.lower()} registrations are not accepted."
            )
        tournament.check_window_open(now)
        return tournament

    async def _get_registration(self, session: AsyncSession, registration_id: int) -> Registration:
        result = await session.execute(
            select(Registration)
            .where(Registration.id == registration_id)
            .options(selectinload(Registration.sync))
        )
        registration = result.scalar_one_or_none()
        if not registration:
            raise NotFound("Registration", registration_id)
        return registration

    async def _get_own_dependant(self, session: AsyncSession, dependant_id: int, holder_id: int) -> Dependant:
        dependant = await session.get(Dependant, dependant_id)
        if not dependant:
            raise NotFound("Dependant", dependant_id)
        family = await get_holder_family(session, holder_id)
        if not family or dependant.family_id != family.id:
            raise Forbidden(f"Dependant {dependant_id} does not belong to your family")
        return dependant

    async def _is_either_holder(self, session: AsyncSession, registration: Registration, user_id: int) -> bool:
        for dependant_id in (registration.competitor_id, registration.partner_id):
            if dependant_id is None:
                continue
            dependant = await session.get(Dependant, dependant_id)
            if dependant and await is_family_holder(session, user_id, dependant.family_id):
                return True
        return False

    async def _ensure_not_registered(self, session: AsyncSession, tournament_id: int, dependant_id: int) -> None:
        """Raise if the dependant already competes in the tournament, alone or as anyone's partner."""
        result = await session.execute(
            select(Registration.id)
            .where(
                Registration.tournament_id == tournament_id,
                Registration.status.notin_(INACTIVE_STATUSES),
                or_(Registration.competitor_id == dependant_id, Registration.partner_id == dependant_id),
            )
            .limit(1)
        )
        if result.scalar_one_or_none() is not None:
            raise DuplicateRegistration(tournament_id, dependant_id)

    async def _commit_new(
        self, session: AsyncSession, registration: Registration, tournament: Tournament, now: datetime
    ) -> None:
        """Insert registration + sync tracker and bump the tournament version in one commit."""
        tournament_id, expected_version = tournament.id, tournament.version
        competitor_id = registration.competitor_id
        session.add(registration)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            logger.warning(
                "Duplicate registration rejected by storage: tournament=%s competitor=%s",
                tournament_id, competitor_id,
            )
            raise DuplicateRegistration(tournament_id, competitor_id) from None
        await self._commit_versioned(session, tournament_id, expected_version, now)

    async def _commit_versioned(
        self, session: AsyncSession, tournament_id: int, expected_version: int, now: datetime
    ) -> None:
        """Commit only if the tournament is still at expected_version, bumping it by one."""
        await bump_version(session, tournament_id, expected_version, now)
        await session.commit()
