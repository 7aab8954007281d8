"""Error taxonomy shared by the scheduling and reconciliation services."""

from __future__ import annotations

from typing import Any, Optional


class ScheduleEngineError(RuntimeError):
    """Base class for domain errors raised by the service layer.

    ``code`` is a stable machine-readable identifier and ``detail`` carries
    any extra context the caller needs to decide how to proceed (for example
    the conflicting RUT of an account).
    """

    code = "engine_error"

    def __init__(self, message: str, *, code: Optional[str] = None, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.detail = detail

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.detail}


class ValidationError(ScheduleEngineError):
    """Malformed or contradictory input, rejected before any mutation."""

    code = "validation_error"


class InvalidConfiguration(ValidationError):
    """Recurrence, emission or override settings that cannot produce a schedule."""

    code = "invalid_configuration"


class NotFoundError(ScheduleEngineError):
    code = "not_found"


class ServiceNotFound(NotFoundError):
    code = "service_not_found"


class ScheduleNotFound(NotFoundError):
    code = "schedule_not_found"


class CounterpartNotFound(NotFoundError):
    code = "counterpart_not_found"


class AccountNotFound(NotFoundError):
    code = "account_not_found"


class ConflictError(ScheduleEngineError):
    """The operation clashes with the current state of the entity."""

    code = "conflict"


class AlreadyPaid(ConflictError):
    code = "already_paid"


class NothingToUnlink(ConflictError):
    code = "nothing_to_unlink"


class RutConflict(ConflictError):
    code = "rut_conflict"


class AccountConflict(ConflictError):
    code = "account_conflict"


class EntityBusy(ConflictError):
    """Another request holds the entity lock for longer than allowed."""

    code = "entity_busy"


class ExternalDependencyError(ScheduleEngineError):
    """A collaborator such as the transaction feed or the UF source failed."""

    code = "external_dependency_unavailable"
