from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from ..models.service_schedule import ScheduleStatus
from .common import ApiModel

MAX_NOTE_LENGTH = 500


class ScheduleRead(ApiModel):
    """Schedule entry with the late fee fields derived at read time."""

    id: int
    service_id: int
    period_start: date
    period_end: date
    due_date: date
    emission_date: Optional[date] = None
    expected_amount: Decimal
    status: ScheduleStatus
    paid_amount: Optional[Decimal] = None
    paid_date: Optional[date] = None
    transaction_id: Optional[int] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    overdue_days: int = 0
    late_fee_amount: Decimal = Decimal("0")
    effective_amount: Decimal = Decimal("0")


class ScheduleResponse(ApiModel):
    schedule: ScheduleRead


class SchedulePaymentCreate(ApiModel):
    """Link a bank transaction to a schedule entry."""

    transaction_id: int = Field(..., ge=1)
    paid_amount: Decimal = Field(..., gt=0)
    paid_date: date
    note: Optional[str] = Field(default=None, max_length=MAX_NOTE_LENGTH)


class ScheduleSkipRequest(ApiModel):
    reason: str = Field(..., description="Why the period will not be paid")


class ScheduleUpdate(ApiModel):
    """Manual correction of a pending entry."""

    due_date: Optional[date] = None
    expected_amount: Optional[Decimal] = Field(default=None, ge=0)
    note: Optional[str] = Field(default=None, max_length=MAX_NOTE_LENGTH)


class MatchSuggestionRead(ApiModel):
    transaction_id: int
    occurred_on: date
    amount: Decimal
    description: Optional[str] = None
    bank_account_number: Optional[str] = None
    amount_difference: Decimal
    days_from_due: int


class MatchSuggestionListResponse(ApiModel):
    items: list[MatchSuggestionRead]
    tolerance: Decimal
    window_start: date
    window_end: date
