"""Database models."""
from affiliation.models.base import Base, init_db
from affiliation.models.user import User
from affiliation.models.family import Dependant, Family
from affiliation.models.tournament import Tournament, TournamentType
from affiliation.models.registration import Registration, RegistrationStatus, RegistrationType
from affiliation.models.registration_sync import RegistrationSync, SyncStatus

__all__ = [
    "Base",
    "User",
    "Family",
    "Dependant",
    "Tournament",
    "TournamentType",
    "Registration",
    "RegistrationStatus",
    "RegistrationType",
    "RegistrationSync",
    "SyncStatus",
    "init_db",
]
