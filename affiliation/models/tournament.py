"""Tournament model and its registration window."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from affiliation.errors import InvalidOperation, RegistrationClosed, RegistrationNotOpenYet
from affiliation.models.base import Base, utcnow


class TournamentType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    DUO = "DUO"


def validate_schedule(
    registration_start_date: datetime,
    registration_end_date: datetime,
    start_date: datetime,
) -> None:
    """Raise InvalidOperation unless start < end <= tournament start."""
    if registration_end_date <= registration_start_date:
        raise InvalidOperation("Registration end date cannot be before or equal to the start date.")
    if start_date < registration_end_date:
        raise InvalidOperation("Tournament start date cannot be before registration end date.")


def validate_details(name: Optional[str], description: Optional[str]) -> None:
    if name is not None and len(name.strip()) < 3:
        raise InvalidOperation("Tournament name must have at least 3 characters.")
    if description is not None and len(description.strip()) < 10:
        raise InvalidOperation("Tournament description must have at least 10 characters.")


class Tournament(Base):
    """Tournament with a registration window and an optimistic-concurrency version."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # INDIVIDUAL, DUO
    registration_start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    registration_end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    # Bumped by every create/accept/reject committed against this tournament
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    registrations = relationship("Registration", back_populates="tournament")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_window_open(self, now: datetime) -> bool:
        return self.registration_start_date <= now < self.registration_end_date

    def check_window_open(self, now: datetime) -> None:
        """Raise unless now is in [registration_start_date, registration_end_date)."""
        if self.is_window_open(now):
            return
        if now < self.registration_start_date:
            raise RegistrationNotOpenYet(
                f"Registration for tournament {self.id} opens at {self.registration_start_date.isoformat()}"
            )
        raise RegistrationClosed(
            f"Registration for tournament {self.id} closed at {self.registration_end_date.isoformat()}"
        )
