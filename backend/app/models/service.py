"""Models describing recurring obligations (services) and their policies."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base


class ServiceType(str, enum.Enum):
    """Business classification of an obligation."""

    BUSINESS = "BUSINESS"
    LEASE = "LEASE"
    OTHER = "OTHER"
    PERSONAL = "PERSONAL"
    SOFTWARE = "SOFTWARE"
    SUPPLIER = "SUPPLIER"
    TAX = "TAX"
    UTILITY = "UTILITY"


class ServiceOwnership(str, enum.Enum):
    COMPANY = "COMPANY"
    MIXED = "MIXED"
    OWNER = "OWNER"
    THIRD_PARTY = "THIRD_PARTY"


class ServiceObligationType(str, enum.Enum):
    DEBT = "DEBT"
    LOAN = "LOAN"
    OTHER = "OTHER"
    SERVICE = "SERVICE"


class ServiceRecurrenceType(str, enum.Enum):
    RECURRING = "RECURRING"
    ONE_OFF = "ONE_OFF"


class ServiceFrequency(str, enum.Enum):
    """How often a recurring obligation falls due."""

    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    BIMONTHLY = "BIMONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMIANNUAL = "SEMIANNUAL"
    ANNUAL = "ANNUAL"
    ONCE = "ONCE"


class EmissionMode(str, enum.Enum):
    """How the invoice issue date of each period is determined."""

    FIXED_DAY = "FIXED_DAY"
    DATE_RANGE = "DATE_RANGE"
    SPECIFIC_DATE = "SPECIFIC_DATE"


class AmountIndexation(str, enum.Enum):
    NONE = "NONE"
    UF = "UF"


class LateFeeMode(str, enum.Enum):
    NONE = "NONE"
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class ServiceStatus(str, enum.Enum):
    """Derived lifecycle state; never persisted."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ARCHIVED = "ARCHIVED"


def enum_column_type(enum_cls: type[enum.Enum], name: str) -> SAEnum:
    """Store enum values as validated strings, portable across SQLite and PostgreSQL."""

    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        validate_strings=True,
        length=32,
    )


def generate_public_id() -> str:
    return f"srv_{uuid.uuid4().hex[:16]}"


class Service(Base):
    """A recurring or one-off financial obligation tracked by the backoffice."""

    __tablename__ = "services"
    __table_args__ = (
        CheckConstraint(
            "due_day IS NULL OR (due_day >= 1 AND due_day <= 31)",
            name="ck_services_due_day_range",
        ),
        CheckConstraint(
            "emission_day IS NULL OR (emission_day >= 1 AND emission_day <= 31)",
            name="ck_services_emission_day_range",
        ),
        CheckConstraint(
            "emission_start_day IS NULL OR (emission_start_day >= 1 AND emission_start_day <= 31)",
            name="ck_services_emission_start_day_range",
        ),
        CheckConstraint(
            "emission_end_day IS NULL OR (emission_end_day >= 1 AND emission_end_day <= 31)",
            name="ck_services_emission_end_day_range",
        ),
        CheckConstraint(
            "(emission_mode = 'FIXED_DAY' AND emission_day IS NOT NULL"
            " AND emission_start_day IS NULL AND emission_end_day IS NULL"
            " AND emission_exact_date IS NULL)"
            " OR (emission_mode = 'DATE_RANGE' AND emission_day IS NULL"
            " AND emission_start_day IS NOT NULL AND emission_end_day IS NOT NULL"
            " AND emission_exact_date IS NULL)"
            " OR (emission_mode = 'SPECIFIC_DATE' AND emission_day IS NULL"
            " AND emission_start_day IS NULL AND emission_end_day IS NULL"
            " AND emission_exact_date IS NOT NULL)",
            name="ck_services_emission_fields_match_mode",
        ),
        CheckConstraint("default_amount >= 0", name="ck_services_default_amount_non_negative"),
        CheckConstraint(
            "late_fee_value IS NULL OR late_fee_value >= 0",
            name="ck_services_late_fee_value_non_negative",
        ),
        CheckConstraint(
            "late_fee_grace_days IS NULL OR late_fee_grace_days >= 0",
            name="ck_services_late_fee_grace_days_non_negative",
        ),
        CheckConstraint(
            "next_generation_months > 0",
            name="ck_services_generation_months_positive",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    public_id = Column(String(40), nullable=False, unique=True, default=generate_public_id)
    name = Column(String(255), nullable=False)
    detail = Column(String(500), nullable=True)
    category = Column(String(100), nullable=True)
    service_type = Column(
        enum_column_type(ServiceType, "service_type_enum"),
        nullable=False,
        default=ServiceType.BUSINESS,
    )
    ownership = Column(
        enum_column_type(ServiceOwnership, "service_ownership_enum"),
        nullable=False,
        default=ServiceOwnership.COMPANY,
    )
    obligation_type = Column(
        enum_column_type(ServiceObligationType, "service_obligation_type_enum"),
        nullable=False,
        default=ServiceObligationType.SERVICE,
    )
    recurrence_type = Column(
        enum_column_type(ServiceRecurrenceType, "service_recurrence_type_enum"),
        nullable=False,
        default=ServiceRecurrenceType.RECURRING,
    )
    frequency = Column(
        enum_column_type(ServiceFrequency, "service_frequency_enum"),
        nullable=False,
        default=ServiceFrequency.MONTHLY,
    )
    start_date = Column(Date, nullable=False)
    due_day = Column(Integer, nullable=True)
    emission_mode = Column(
        enum_column_type(EmissionMode, "service_emission_mode_enum"),
        nullable=False,
        default=EmissionMode.FIXED_DAY,
    )
    emission_day = Column(Integer, nullable=True)
    emission_start_day = Column(Integer, nullable=True)
    emission_end_day = Column(Integer, nullable=True)
    emission_exact_date = Column(Date, nullable=True)
    default_amount = Column(Numeric(15, 2), nullable=False, default=0)
    amount_indexation = Column(
        enum_column_type(AmountIndexation, "service_amount_indexation_enum"),
        nullable=False,
        default=AmountIndexation.NONE,
    )
    late_fee_mode = Column(
        enum_column_type(LateFeeMode, "service_late_fee_mode_enum"),
        nullable=False,
        default=LateFeeMode.NONE,
    )
    late_fee_value = Column(Numeric(15, 2), nullable=True)
    late_fee_grace_days = Column(Integer, nullable=True)
    next_generation_months = Column(Integer, nullable=False, default=12)
    counterpart_id = Column(
        Integer,
        ForeignKey("counterparts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    counterpart_account_id = Column(
        Integer,
        ForeignKey("counterpart_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    account_reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    schedules = relationship(
        "ServiceSchedule",
        back_populates="service",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ServiceSchedule.period_start",
    )
    counterpart = relationship("Counterpart", back_populates="services")
    counterpart_account = relationship("CounterpartAccount")

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None
