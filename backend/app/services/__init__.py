"""Service layer encapsulating business logic for API routers."""

from .counterparts import (
    CounterpartService,
    group_accounts,
    is_valid_rut,
    normalize_account_number,
    normalize_rut,
)
from .errors import (
    AccountConflict,
    AccountNotFound,
    AlreadyPaid,
    ConflictError,
    CounterpartNotFound,
    EntityBusy,
    ExternalDependencyError,
    InvalidConfiguration,
    NotFoundError,
    NothingToUnlink,
    RutConflict,
    ScheduleEngineError,
    ScheduleNotFound,
    ServiceNotFound,
    ValidationError,
)
from .index_rates import get_index_rate_provider
from .observability import MetricEvent, MetricOutcome, ObservabilityService
from .payment_matching import MatchPolicy, PaymentMatchingService, suggest_matches
from .service_schedules import ServiceScheduleService

__all__ = [
    "AccountConflict",
    "AccountNotFound",
    "AlreadyPaid",
    "ConflictError",
    "CounterpartNotFound",
    "CounterpartService",
    "EntityBusy",
    "ExternalDependencyError",
    "InvalidConfiguration",
    "MatchPolicy",
    "MetricEvent",
    "MetricOutcome",
    "NotFoundError",
    "NothingToUnlink",
    "ObservabilityService",
    "PaymentMatchingService",
    "RutConflict",
    "ScheduleEngineError",
    "ScheduleNotFound",
    "ServiceNotFound",
    "ServiceScheduleService",
    "ValidationError",
    "get_index_rate_provider",
    "group_accounts",
    "is_valid_rut",
    "normalize_account_number",
    "normalize_rut",
    "suggest_matches",
]
