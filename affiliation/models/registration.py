"""Registration model - a dependant's entry in a tournament, alone or as a duo."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from affiliation.errors import InvalidState
from affiliation.models.base import Base
from affiliation.models.registration_sync import RegistrationSync


class RegistrationStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class RegistrationType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    DUO = "DUO"


INACTIVE_STATUSES = (RegistrationStatus.CANCELLED.value, RegistrationStatus.REJECTED.value)

# (action, from_status) -> (to_status, bumps_version)
TRANSITIONS = {
    ("accept", RegistrationStatus.PENDING_APPROVAL): (RegistrationStatus.CONFIRMED, True),
    ("reject", RegistrationStatus.PENDING_APPROVAL): (RegistrationStatus.REJECTED, True),
    ("cancel", RegistrationStatus.PENDING_APPROVAL): (RegistrationStatus.CANCELLED, False),
    ("cancel", RegistrationStatus.CONFIRMED): (RegistrationStatus.CANCELLED, False),
}

_ACTIVE_ONLY = text("status NOT IN ('CANCELLED', 'REJECTED')")


class Registration(Base):
    """Competitor registration for a tournament."""

    __tablename__ = "registrations"
    __table_args__ = (
        # At most one active registration per (tournament, competitor)
        Index(
            "uq_registrations_active_competitor",
            "tournament_id",
            "competitor_id",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, index=True)
    competitor_id: Mapped[int] = mapped_column(ForeignKey("dependants.id"), nullable=False)
    partner_id: Mapped[Optional[int]] = mapped_column(ForeignKey("dependants.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    tournament: Mapped["Tournament"] = relationship("Tournament", back_populates="registrations")
    competitor: Mapped["Dependant"] = relationship("Dependant", foreign_keys=[competitor_id])
    partner: Mapped[Optional["Dependant"]] = relationship("Dependant", foreign_keys=[partner_id])
    sync: Mapped["RegistrationSync"] = relationship(
        "RegistrationSync", back_populates="registration", uselist=False, cascade="all, delete-orphan"
    )

    @classmethod
    def individual(cls, tournament_id: int, competitor_id: int, now: datetime) -> "Registration":
        """New confirmed individual registration with its pending sync tracker."""
        return cls(
            tournament_id=tournament_id,
            competitor_id=competitor_id,
            partner_id=None,
            status=RegistrationStatus.CONFIRMED.value,
            type=RegistrationType.INDIVIDUAL.value,
            version=1,
            created_at=now,
            updated_at=now,
            sync=RegistrationSync.pending(now),
        )

    @classmethod
    def duo(cls, tournament_id: int, competitor_id: int, partner_id: int, now: datetime) -> "Registration":
        """New duo registration awaiting the partner holder's approval."""
        return cls(
            tournament_id=tournament_id,
            competitor_id=competitor_id,
            partner_id=partner_id,
            status=RegistrationStatus.PENDING_APPROVAL.value,
            type=RegistrationType.DUO.value,
            version=1,
            created_at=now,
            updated_at=now,
            sync=RegistrationSync.pending(now),
        )

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    def can(self, action: str) -> bool:
        return (action, RegistrationStatus(self.status)) in TRANSITIONS

    def _transition(self, action: str, now: datetime) -> None:
        try:
            to_status, bumps_version = TRANSITIONS[(action, RegistrationStatus(self.status))]
        except KeyError:
            raise InvalidState(self.id, self.status, action) from None
        self.status = to_status.value
        self.updated_at = now
        if bumps_version:
            self.version += 1

    def accept(self, now: datetime) -> None:
        self._transition("accept", now)

    def reject(self, now: datetime) -> None:
        self._transition("reject", now)

    def cancel(self, now: datetime, reason: Optional[str] = None) -> None:
        self._transition("cancel", now)
        self.cancellation_reason = reason
