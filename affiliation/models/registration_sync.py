"""Registration sync tracker: propagation status of a registration to the external consumer."""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from affiliation.models.base import Base

MAX_SYNC_ATTEMPTS = 3
BACKOFF_BASE_MINUTES = 5


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


def backoff_delay(attempts: int) -> timedelta:
    """Delay before the next attempt after `attempts` recorded failures: 5 * 2^n minutes."""
    return timedelta(minutes=BACKOFF_BASE_MINUTES * 2 ** attempts)


class RegistrationSync(Base):
    """One per registration, created in the same unit of work as its registration."""

    __tablename__ = "registration_syncs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    registration_id: Mapped[int] = mapped_column(
        ForeignKey("registrations.id"), unique=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=SyncStatus.PENDING.value, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    registration: Mapped["Registration"] = relationship("Registration", back_populates="sync")

    @classmethod
    def pending(cls, now: datetime) -> "RegistrationSync":
        return cls(
            status=SyncStatus.PENDING.value,
            attempts=0,
            created_at=now,
            updated_at=now,
            last_attempt_at=None,
            next_attempt_at=None,
        )

    @property
    def max_retries_reached(self) -> bool:
        return self.attempts >= MAX_SYNC_ATTEMPTS

    def is_due(self, now: datetime) -> bool:
        if self.status != SyncStatus.PENDING:
            return False
        return self.next_attempt_at is None or self.next_attempt_at <= now

    def mark_synced(self, now: datetime) -> None:
        if self.status == SyncStatus.SYNCED:
            return
        self.status = SyncStatus.SYNCED.value
        self.next_attempt_at = None
        self.updated_at = now

    def mark_failed(self, now: datetime) -> None:
        self.status = SyncStatus.FAILED.value
        self.updated_at = now

    def record_failed_attempt(self, now: datetime) -> None:
        """Count a failed push and schedule the retry; the attempt that reaches the cap ends FAILED."""
        if self.max_retries_reached:
            self.mark_failed(now)
            return
        self.attempts += 1
        self.last_attempt_at = now
        self.updated_at = now
        self.next_attempt_at = now + backoff_delay(self.attempts)
        if self.max_retries_reached:
            self.status = SyncStatus.FAILED.value
        else:
            self.status = SyncStatus.PENDING.value
