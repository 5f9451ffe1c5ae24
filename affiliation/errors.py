"""Domain errors. Each carries the HTTP status the API answers with."""
from __future__ import annotations


class AffiliationError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400


class NotFound(AffiliationError):
    status_code = 404

    def __init__(self, entity: str, entity_id) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with id {entity_id} not found")


class InvalidOperation(AffiliationError):
    """Request violates a business rule (validation, wrong tournament type, ...)."""


class InvalidState(AffiliationError):
    """Registration is not in the state the operation requires."""

    def __init__(self, registration_id, status: str, operation: str) -> None:
        self.registration_id = registration_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} registration {registration_id} in status {status}")


class Forbidden(AffiliationError):
    status_code = 403


class RegistrationWindowClosed(AffiliationError):
    """Current time is outside [registration_start_date, registration_end_date)."""


class RegistrationNotOpenYet(RegistrationWindowClosed):
    pass


class RegistrationClosed(RegistrationWindowClosed):
    pass


class Conflict(AffiliationError):
    status_code = 409


class DuplicateRegistration(Conflict):
    def __init__(self, tournament_id, dependant_id) -> None:
        self.tournament_id = tournament_id
        self.dependant_id = dependant_id
        super().__init__(f"Dependant {dependant_id} already has an active registration in tournament {tournament_id}")


class ConcurrencyConflict(Conflict):
    def __init__(self, tournament_id, expected_version: int) -> None:
        self.tournament_id = tournament_id
        self.expected_version = expected_version
        super().__init__(
            f"Tournament {tournament_id} has been modified by another request (expected version {expected_version}). "
            "Please refresh and try again."
        )


class SyncAttemptFailed(Exception):
    """Propagation of a registration to the external consumer failed. Never surfaced to API callers."""

    def __init__(self, registration_id, cause: BaseException | None = None) -> None:
        self.registration_id = registration_id
        self.cause = cause
        detail = f": {cause!r}" if cause is not None else ""
        super().__init__(f"Sync of registration {registration_id} failed{detail}")
