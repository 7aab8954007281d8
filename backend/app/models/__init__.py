"""Expose SQLAlchemy models for convenient imports."""

from .counterpart import Counterpart, CounterpartAccount, CounterpartCategory
from .feeds import (
    ReleaseTransaction,
    SettlementTransaction,
    Transaction,
    TransactionDirection,
    WithdrawTransaction,
)
from .operational_metric import OperationalMetricEvent
from .service import (
    AmountIndexation,
    EmissionMode,
    LateFeeMode,
    Service,
    ServiceFrequency,
    ServiceObligationType,
    ServiceOwnership,
    ServiceRecurrenceType,
    ServiceStatus,
    ServiceType,
)
from .service_schedule import SETTLED_STATUSES, ScheduleStatus, ServiceSchedule

__all__ = [
    "AmountIndexation",
    "Counterpart",
    "CounterpartAccount",
    "CounterpartCategory",
    "EmissionMode",
    "LateFeeMode",
    "OperationalMetricEvent",
    "ReleaseTransaction",
    "SETTLED_STATUSES",
    "SettlementTransaction",
    "ScheduleStatus",
    "Service",
    "ServiceFrequency",
    "ServiceObligationType",
    "ServiceOwnership",
    "ServiceRecurrenceType",
    "ServiceSchedule",
    "ServiceStatus",
    "ServiceType",
    "Transaction",
    "TransactionDirection",
    "WithdrawTransaction",
]
