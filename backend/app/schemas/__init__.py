"""Expose Pydantic schemas for convenient imports."""

from .common import ApiModel, PagedResponse, PaginatedResponse
from .counterpart import (
    AccountConflictRead,
    AccountSuggestionListResponse,
    AccountSuggestionRead,
    AttachByRutRequest,
    AttachRutRequest,
    AttachRutResponse,
    CounterpartAccountRead,
    CounterpartAccountUpdate,
    CounterpartAccountUpsert,
    CounterpartCreate,
    CounterpartListResponse,
    CounterpartRead,
    CounterpartSummaryRead,
    CounterpartUpdate,
    PayoutAccountListResponse,
    PayoutAccountRead,
)
from .schedule import (
    MatchSuggestionListResponse,
    MatchSuggestionRead,
    SchedulePaymentCreate,
    ScheduleRead,
    ScheduleResponse,
    ScheduleSkipRequest,
    ScheduleUpdate,
)
from .service import (
    DateRangeEmissionPayload,
    EmissionPayload,
    FixedDayEmissionPayload,
    RegenerateServicePayload,
    ServiceCreate,
    ServiceDetailResponse,
    ServiceListResponse,
    ServiceRead,
    ServiceUpdate,
    SpecificDateEmissionPayload,
)

__all__ = [
    "AccountConflictRead",
    "AccountSuggestionListResponse",
    "AccountSuggestionRead",
    "ApiModel",
    "AttachByRutRequest",
    "AttachRutRequest",
    "AttachRutResponse",
    "CounterpartAccountRead",
    "CounterpartAccountUpdate",
    "CounterpartAccountUpsert",
    "CounterpartCreate",
    "CounterpartListResponse",
    "CounterpartRead",
    "CounterpartSummaryRead",
    "CounterpartUpdate",
    "DateRangeEmissionPayload",
    "EmissionPayload",
    "FixedDayEmissionPayload",
    "MatchSuggestionListResponse",
    "MatchSuggestionRead",
    "PagedResponse",
    "PaginatedResponse",
    "PayoutAccountListResponse",
    "PayoutAccountRead",
    "RegenerateServicePayload",
    "SchedulePaymentCreate",
    "ScheduleRead",
    "ScheduleResponse",
    "ScheduleSkipRequest",
    "ScheduleUpdate",
    "ServiceCreate",
    "ServiceDetailResponse",
    "ServiceListResponse",
    "ServiceRead",
    "ServiceUpdate",
    "SpecificDateEmissionPayload",
]
