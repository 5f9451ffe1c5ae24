"""Family and dependant models."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from affiliation.models.base import Base, utcnow


class Family(Base):
    """Family owned by exactly one holder account."""

    __tablename__ = "families"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    holder_id: Mapped[int] = mapped_column(ForeignKey("web_users.id"), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    holder: Mapped["User"] = relationship("User", back_populates="family")
    dependants = relationship("Dependant", back_populates="family", cascade="all, delete-orphan")


class Dependant(Base):
    """A family member who can compete in tournaments."""

    __tablename__ = "dependants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("families.id"), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(64), nullable=False)
    last_name: Mapped[str] = mapped_column(String(64), nullable=False)
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    family: Mapped["Family"] = relationship("Family", back_populates="dependants")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
