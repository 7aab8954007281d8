from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from ..models.counterpart import CounterpartCategory
from .common import ApiModel, PagedResponse, PaginatedResponse


class CounterpartAccountRead(ApiModel):
    id: int
    counterpart_id: int
    account_number: str
    bank_name: Optional[str] = None
    account_type: Optional[str] = None


class CounterpartAccountUpsert(ApiModel):
    """Attach a bank account to a counterpart.

    An account already owned by another counterpart is only moved when
    ``force`` is set.
    """

    account_number: str = Field(..., min_length=1, max_length=64)
    bank_name: Optional[str] = Field(default=None, max_length=120)
    account_type: Optional[str] = Field(default=None, max_length=60)
    force: bool = False


class CounterpartAccountUpdate(ApiModel):
    account_number: Optional[str] = Field(default=None, min_length=1, max_length=64)
    bank_name: Optional[str] = Field(default=None, max_length=120)
    account_type: Optional[str] = Field(default=None, max_length=60)


class CounterpartCreate(ApiModel):
    identification_number: str = Field(..., min_length=2, max_length=20, description="RUT")
    bank_account_holder: str = Field(..., min_length=1, max_length=255)
    category: CounterpartCategory = CounterpartCategory.SUPPLIER
    notes: Optional[str] = Field(default=None, max_length=2000)


class CounterpartUpdate(ApiModel):
    bank_account_holder: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[CounterpartCategory] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class CounterpartRead(ApiModel):
    id: int
    identification_number: str
    bank_account_holder: str
    category: CounterpartCategory
    notes: Optional[str] = None
    accounts: list[CounterpartAccountRead] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CounterpartListResponse(PaginatedResponse[CounterpartRead]):
    """Paginated counterpart listing."""

    pass


class CounterpartSummaryRead(ApiModel):
    """Payout activity recorded under the counterpart's RUT."""

    counterpart_id: int
    rut: str
    withdraw_total: Decimal
    release_total: Decimal
    settlement_count: int


class AttachRutRequest(ApiModel):
    rut: str = Field(..., min_length=2, max_length=20)
    force: bool = False


class AttachByRutRequest(ApiModel):
    rut: str = Field(..., min_length=2, max_length=20)
    account_numbers: list[str] = Field(default_factory=list)
    holder: Optional[str] = Field(default=None, max_length=255)
    force: bool = False


class AccountConflictRead(ApiModel):
    """Account left untouched because its ownership is disputed."""

    account_number: str
    reason: str
    observed_rut: Optional[str] = None
    current_counterpart_id: Optional[int] = None
    current_rut: Optional[str] = None


class AttachRutResponse(ApiModel):
    counterpart_id: int
    rut: str
    assigned_count: int
    accounts: list[CounterpartAccountRead]
    conflicts: list[AccountConflictRead]


class AccountSuggestionRead(ApiModel):
    account_identifier: str
    bank_account_number: str
    identification_number: Optional[str] = None
    holder: Optional[str] = None
    bank_name: Optional[str] = None
    account_type: Optional[str] = None
    total_amount: Decimal
    movement_count: int
    assigned_counterpart_id: Optional[int] = None


class AccountSuggestionListResponse(ApiModel):
    suggestions: list[AccountSuggestionRead]


class PayoutAccountRead(ApiModel):
    payout_bank_account_number: str
    movement_count: int
    total_gross_amount: Decimal
    counterpart_id: Optional[int] = None
    counterpart_name: Optional[str] = None
    counterpart_rut: Optional[str] = None
    withdraw_rut: Optional[str] = None
    conflict: bool = False


class PayoutAccountListResponse(PagedResponse[PayoutAccountRead]):
    """Page of payout accounts still needing a counterpart."""

    pass
