from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import Field, model_validator

from ..models.service import (
    AmountIndexation,
    EmissionMode,
    LateFeeMode,
    ServiceFrequency,
    ServiceObligationType,
    ServiceOwnership,
    ServiceRecurrenceType,
    ServiceStatus,
    ServiceType,
)
from ..services.emission import (
    DateRangeEmission,
    EmissionRule,
    FixedDayEmission,
    SpecificDateEmission,
)
from .common import ApiModel, PaginatedResponse
from .schedule import ScheduleRead

MAX_GENERATION_MONTHS = 60


class FixedDayEmissionPayload(ApiModel):
    """Invoice issued on the same day of every period's month."""

    mode: Literal["FIXED_DAY"] = EmissionMode.FIXED_DAY.value
    day: int = Field(..., ge=1, le=31)

    def to_rule(self) -> EmissionRule:
        return FixedDayEmission(day=self.day)


class DateRangeEmissionPayload(ApiModel):
    """Invoice issued within a window of days of the period's month."""

    mode: Literal["DATE_RANGE"] = EmissionMode.DATE_RANGE.value
    start_day: int = Field(..., ge=1, le=31)
    end_day: int = Field(..., ge=1, le=31)

    @model_validator(mode="after")
    def _validate_window(self):
        if self.end_day < self.start_day:
            raise ValueError("Día de inicio debe ser menor o igual al día final")
        return self

    def to_rule(self) -> EmissionRule:
        return DateRangeEmission(start_day=self.start_day, end_day=self.end_day)


class SpecificDateEmissionPayload(ApiModel):
    """Invoice issued on one literal date."""

    mode: Literal["SPECIFIC_DATE"] = EmissionMode.SPECIFIC_DATE.value
    exact_date: date

    def to_rule(self) -> EmissionRule:
        return SpecificDateEmission(exact_date=self.exact_date)


EmissionPayload = Annotated[
    Union[FixedDayEmissionPayload, DateRangeEmissionPayload, SpecificDateEmissionPayload],
    Field(discriminator="mode"),
]


class LateFeeFields(ApiModel):
    late_fee_mode: LateFeeMode = LateFeeMode.NONE
    late_fee_value: Optional[Decimal] = Field(default=None, ge=0)
    late_fee_grace_days: Optional[int] = Field(default=None, ge=0, le=365)

    @model_validator(mode="after")
    def _require_fee_value(self):
        if self.late_fee_mode not in (None, LateFeeMode.NONE) and self.late_fee_value is None:
            raise ValueError("Debes indicar el valor del recargo")
        return self


class ServiceCreate(LateFeeFields):
    """Payload accepted when registering a new obligation."""

    name: str = Field(..., min_length=1, max_length=255)
    detail: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)
    service_type: ServiceType = ServiceType.BUSINESS
    ownership: ServiceOwnership = ServiceOwnership.COMPANY
    obligation_type: ServiceObligationType = ServiceObligationType.SERVICE
    recurrence_type: ServiceRecurrenceType = ServiceRecurrenceType.RECURRING
    frequency: ServiceFrequency = ServiceFrequency.MONTHLY
    start_date: date
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    emission: EmissionPayload = Field(
        default_factory=lambda: FixedDayEmissionPayload(day=1),
        description="How the invoice date of each period is resolved",
    )
    default_amount: Decimal = Field(..., ge=0)
    amount_indexation: AmountIndexation = AmountIndexation.NONE
    counterpart_id: Optional[int] = Field(default=None, ge=1)
    counterpart_account_id: Optional[int] = Field(default=None, ge=1)
    account_reference: Optional[str] = Field(default=None, max_length=100)
    months_to_generate: int = Field(
        default=12,
        ge=1,
        le=MAX_GENERATION_MONTHS,
        description="Periods generated right after creation",
    )


class ServiceUpdate(ApiModel):
    """Partial update of a service's descriptive data and policies.

    Only fields present in the payload are applied. Switching the emission
    mode clears the fields of the previous mode.
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    detail: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)
    service_type: Optional[ServiceType] = None
    ownership: Optional[ServiceOwnership] = None
    obligation_type: Optional[ServiceObligationType] = None
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    emission: Optional[EmissionPayload] = None
    default_amount: Optional[Decimal] = Field(default=None, ge=0)
    amount_indexation: Optional[AmountIndexation] = None
    late_fee_mode: Optional[LateFeeMode] = None
    late_fee_value: Optional[Decimal] = Field(default=None, ge=0)
    late_fee_grace_days: Optional[int] = Field(default=None, ge=0, le=365)
    counterpart_id: Optional[int] = Field(default=None, ge=1)
    counterpart_account_id: Optional[int] = Field(default=None, ge=1)
    account_reference: Optional[str] = Field(default=None, max_length=100)


class RegenerateServicePayload(ApiModel):
    """Overrides accepted when (re)generating a schedule.

    Every override that is present is also persisted onto the service.
    ``dueDay: null`` explicitly clears the due day.
    """

    months: Optional[int] = Field(default=None, ge=1, le=MAX_GENERATION_MONTHS)
    start_date: Optional[date] = None
    default_amount: Optional[Decimal] = Field(default=None, ge=0)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    frequency: Optional[ServiceFrequency] = None
    emission_day: Optional[int] = Field(default=None, ge=1, le=31)


class ServiceRead(ApiModel):
    id: int
    public_id: str
    name: str
    detail: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    service_type: ServiceType
    ownership: ServiceOwnership
    obligation_type: ServiceObligationType
    recurrence_type: ServiceRecurrenceType
    frequency: ServiceFrequency
    start_date: date
    due_day: Optional[int] = None
    emission_mode: EmissionMode
    emission_day: Optional[int] = None
    emission_start_day: Optional[int] = None
    emission_end_day: Optional[int] = None
    emission_exact_date: Optional[date] = None
    default_amount: Decimal
    amount_indexation: AmountIndexation
    late_fee_mode: LateFeeMode
    late_fee_value: Optional[Decimal] = None
    late_fee_grace_days: Optional[int] = None
    next_generation_months: int
    counterpart_id: Optional[int] = None
    counterpart_account_id: Optional[int] = None
    account_reference: Optional[str] = None
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    status: ServiceStatus = ServiceStatus.INACTIVE
    pending_count: int = 0
    overdue_count: int = 0
    paid_count: int = 0
    total_expected: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    next_due_date: Optional[date] = None


class ServiceDetailResponse(ApiModel):
    service: ServiceRead
    schedules: list[ScheduleRead]


class ServiceListResponse(PaginatedResponse[ServiceRead]):
    """Paginated service listing."""

    pass
