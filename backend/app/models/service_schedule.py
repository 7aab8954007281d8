"""Schedule entries generated for each billing period of a service."""

from __future__ import annotations

import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from .service import enum_column_type


class ScheduleStatus(str, enum.Enum):
    """Payment state of a single period."""

    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    SKIPPED = "SKIPPED"


SETTLED_STATUSES = frozenset(
    {ScheduleStatus.PAID, ScheduleStatus.PARTIAL, ScheduleStatus.SKIPPED}
)


class ServiceSchedule(Base):
    """One billing period of a service with its due date and payment state."""

    __tablename__ = "service_schedules"
    __table_args__ = (
        UniqueConstraint(
            "service_id", "period_start", name="uq_service_schedules_service_period_start"
        ),
        CheckConstraint(
            "period_end >= period_start", name="ck_service_schedules_period_order"
        ),
        CheckConstraint(
            "expected_amount >= 0", name="ck_service_schedules_expected_amount_non_negative"
        ),
        CheckConstraint(
            "settled_late_fee_amount IS NULL OR settled_late_fee_amount >= 0",
            name="ck_service_schedules_late_fee_non_negative",
        ),
        CheckConstraint(
            "paid_amount IS NULL OR paid_amount >= 0",
            name="ck_service_schedules_paid_amount_non_negative",
        ),
        CheckConstraint(
            "status NOT IN ('PAID', 'PARTIAL')"
            " OR (paid_amount IS NOT NULL AND transaction_id IS NOT NULL)",
            name="ck_service_schedules_settlement_requires_payment",
        ),
        CheckConstraint(
            "status <> 'SKIPPED' OR (note IS NOT NULL AND length(note) > 0)",
            name="ck_service_schedules_skip_requires_reason",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(
        Integer,
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
    )
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    emission_date = Column(Date, nullable=True)
    expected_amount = Column(Numeric(15, 2), nullable=False)
    settled_late_fee_amount = Column(Numeric(15, 2), nullable=True)
    status = Column(
        enum_column_type(ScheduleStatus, "service_schedule_status_enum"),
        nullable=False,
        default=ScheduleStatus.PENDING,
    )
    paid_amount = Column(Numeric(15, 2), nullable=True)
    paid_date = Column(Date, nullable=True)
    # Weak reference to the external transaction feed; intentionally not a foreign key.
    transaction_id = Column(Integer, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    service = relationship("Service", back_populates="schedules")

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_STATUSES


Index("service_schedules_service_due_idx", ServiceSchedule.service_id, ServiceSchedule.due_date)
Index("service_schedules_status_due_idx", ServiceSchedule.status, ServiceSchedule.due_date)
Index("service_schedules_transaction_idx", ServiceSchedule.transaction_id)
