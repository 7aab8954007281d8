"""Late fee (recargo) computation for schedule entries.

Fees are derived on every read from the service's current policy. Only
``expected_amount`` is persisted for pending entries, so editing the policy
immediately reprices everything still pending. When an entry is settled the
fee as of the payment date is frozen on the row and later policy changes no
longer apply to it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from ..models.service import LateFeeMode
from ..models.service_schedule import ScheduleStatus

LOGGER = logging.getLogger(__name__)

ZERO = Decimal("0")
WHOLE_UNITS = Decimal("1")
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class LateFeePolicy:
    mode: LateFeeMode = LateFeeMode.NONE
    value: Decimal = ZERO
    grace_days: int = 0

    @classmethod
    def from_service(cls, service) -> "LateFeePolicy":
        mode = LateFeeMode(service.late_fee_mode or LateFeeMode.NONE)
        value = Decimal(service.late_fee_value) if service.late_fee_value is not None else ZERO
        return cls(mode=mode, value=value, grace_days=int(service.late_fee_grace_days or 0))


@dataclass(frozen=True)
class LateFeeAssessment:
    overdue_days: int
    late_fee_amount: Decimal
    effective_amount: Decimal


def overdue_days_for(due_date: date, status: ScheduleStatus | str, as_of: date) -> int:
    if ScheduleStatus(status) != ScheduleStatus.PENDING:
        return 0
    return max(0, (as_of - due_date).days)


def late_fee_for(expected_amount: Decimal, overdue_days: int, policy: LateFeePolicy) -> Decimal:
    if overdue_days <= policy.grace_days:
        return ZERO
    if policy.mode == LateFeeMode.FIXED:
        return Decimal(policy.value).quantize(CENTS, rounding=ROUND_HALF_UP)
    if policy.mode == LateFeeMode.PERCENTAGE:
        raw = Decimal(expected_amount) * Decimal(policy.value) / Decimal(100)
        return raw.quantize(WHOLE_UNITS, rounding=ROUND_HALF_UP)
    return ZERO


def assess_late_fee(
    expected_amount: Decimal,
    due_date: date,
    status: ScheduleStatus | str,
    policy: LateFeePolicy,
    as_of: Optional[date] = None,
) -> LateFeeAssessment:
    reference = as_of or date.today()
    expected = Decimal(expected_amount)
    overdue = overdue_days_for(due_date, status, reference)
    fee = late_fee_for(expected, overdue, policy)
    return LateFeeAssessment(
        overdue_days=overdue,
        late_fee_amount=fee,
        effective_amount=expected + fee,
    )


def assess_schedule(schedule, policy: LateFeePolicy, as_of: Optional[date] = None) -> LateFeeAssessment:
    """Assessment used by read paths; failures degrade to a zero fee."""

    expected = Decimal(schedule.expected_amount or 0)
    try:
        if ScheduleStatus(schedule.status) != ScheduleStatus.PENDING:
            frozen = Decimal(schedule.settled_late_fee_amount or 0)
            return LateFeeAssessment(
                overdue_days=0, late_fee_amount=frozen, effective_amount=expected + frozen
            )
        return assess_late_fee(expected, schedule.due_date, schedule.status, policy, as_of)
    except (ArithmeticError, TypeError, ValueError):
        LOGGER.warning(
            "Late fee computation failed; reporting zero fee",
            exc_info=True,
            extra={"schedule_id": getattr(schedule, "id", None)},
        )
        return LateFeeAssessment(overdue_days=0, late_fee_amount=ZERO, effective_amount=expected)
