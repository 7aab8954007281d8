"""Reconcile schedule entries with bank transactions."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import read_int_env
from .errors import (
    AlreadyPaid,
    ExternalDependencyError,
    NothingToUnlink,
    ScheduleEngineError,
    ScheduleNotFound,
    ValidationError,
)
from .late_fees import LateFeePolicy, assess_late_fee
from .locks import service_lock
from .observability import MetricEvent, ObservabilityService
from .service_schedules import schedule_to_read
from .transaction_feed import SqlTransactionFeed, TransactionFeed, TransactionRecord

LOGGER = logging.getLogger(__name__)

MIN_TOLERANCE_ENV = "PAYMENT_MATCH_MIN_TOLERANCE"
TOLERANCE_RATE_ENV = "PAYMENT_MATCH_TOLERANCE_RATE"
WINDOW_DAYS_ENV = "PAYMENT_MATCH_WINDOW_DAYS"
LIMIT_ENV = "PAYMENT_MATCH_LIMIT"

MAX_SKIP_REASON_LENGTH = 500
WHOLE_UNITS = Decimal("1")


def _read_decimal_env(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value: Optional[Decimal] = Decimal(raw.strip())
    except InvalidOperation:
        value = None
    if value is None or not value.is_finite() or value < 0:
        LOGGER.warning("Invalid %s=%s; using %s", name, raw, default)
        return default
    return value


def _read_policy_int_env(name: str, default: int) -> int:
    try:
        return read_int_env(name, default)
    except ValueError:
        LOGGER.warning("Invalid %s=%s; using %d", name, os.getenv(name), default)
        return default


@dataclass(frozen=True)
class MatchPolicy:
    """Thresholds used to shortlist candidate transactions."""

    min_tolerance: Decimal = Decimal("100")
    tolerance_rate: Decimal = Decimal("0.01")
    window_days: int = 45
    limit: int = 8

    @classmethod
    def from_env(cls) -> "MatchPolicy":
        defaults = cls()
        return cls(
            min_tolerance=_read_decimal_env(MIN_TOLERANCE_ENV, defaults.min_tolerance),
            tolerance_rate=_read_decimal_env(TOLERANCE_RATE_ENV, defaults.tolerance_rate),
            window_days=_read_policy_int_env(WINDOW_DAYS_ENV, defaults.window_days),
            limit=max(1, _read_policy_int_env(LIMIT_ENV, defaults.limit)),
        )

    def tolerance_for(self, expected_amount: Decimal) -> Decimal:
        scaled = (Decimal(expected_amount) * self.tolerance_rate).quantize(
            WHOLE_UNITS, rounding=ROUND_HALF_UP
        )
        return max(self.min_tolerance, scaled)

    def window_for(self, due_date: date) -> tuple[date, date]:
        span = timedelta(days=self.window_days)
        return due_date - span, due_date + span


@dataclass(frozen=True)
class MatchSuggestion:
    transaction: TransactionRecord
    amount_difference: Decimal
    days_from_due: int


def suggest_matches(
    schedule: models.ServiceSchedule,
    pool: Iterable[TransactionRecord],
    policy: Optional[MatchPolicy] = None,
) -> list[MatchSuggestion]:
    """Shortlist outgoing transactions that plausibly pay ``schedule``.

    Candidates must be within the amount tolerance of the expected amount and
    dated inside the window around the due date. Results are ordered by amount
    closeness, most recent first on ties.
    """

    active_policy = policy or MatchPolicy()
    expected = Decimal(schedule.expected_amount)
    tolerance = active_policy.tolerance_for(expected)
    window_start, window_end = active_policy.window_for(schedule.due_date)

    candidates: list[MatchSuggestion] = []
    for record in pool:
        if record.direction != models.TransactionDirection.OUT:
            continue
        if not window_start <= record.occurred_on <= window_end:
            continue
        difference = abs(abs(Decimal(record.amount)) - expected)
        if difference > tolerance:
            continue
        candidates.append(
            MatchSuggestion(
                transaction=record,
                amount_difference=difference,
                days_from_due=(record.occurred_on - schedule.due_date).days,
            )
        )

    candidates.sort(
        key=lambda item: (
            item.amount_difference,
            -item.transaction.occurred_on.toordinal(),
            -item.transaction.id,
        )
    )
    return candidates[: active_policy.limit]


class PaymentMatchingService:
    """Register, undo and skip payments of schedule entries."""

    @staticmethod
    def _load_for_update(db: Session, schedule_id: int) -> models.ServiceSchedule:
        schedule = (
            db.query(models.ServiceSchedule)
            .filter(models.ServiceSchedule.id == schedule_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if schedule is None:
            raise ScheduleNotFound("Periodo no encontrado", schedule_id=schedule_id)
        return schedule

    @staticmethod
    def _service_id_for(db: Session, schedule_id: int) -> int:
        service_id = (
            db.query(models.ServiceSchedule.service_id)
            .filter(models.ServiceSchedule.id == schedule_id)
            .scalar()
        )
        if service_id is None:
            raise ScheduleNotFound("Periodo no encontrado", schedule_id=schedule_id)
        return service_id

    @staticmethod
    def _respond(schedule: models.ServiceSchedule, as_of: Optional[date]) -> schemas.ScheduleRead:
        return schedule_to_read(schedule, LateFeePolicy.from_service(schedule.service), as_of)

    @staticmethod
    def register_payment(
        db: Session,
        schedule_id: int,
        payload: schemas.SchedulePaymentCreate,
        *,
        as_of: Optional[date] = None,
    ) -> schemas.ScheduleRead:
        """Link a transaction to an entry.

        The entry becomes PAID when the amount covers the effective amount due
        on the payment date and PARTIAL otherwise. The late fee at that date is
        frozen on the entry.
        """

        service_id = PaymentMatchingService._service_id_for(db, schedule_id)
        with ObservabilityService.timed_event(
            db, MetricEvent.PAYMENT_REGISTERED, tags={"schedule_id": schedule_id}
        ):
            with service_lock(service_id):
                try:
                    schedule = PaymentMatchingService._load_for_update(db, schedule_id)
                    status = models.ScheduleStatus(schedule.status)
                    if status in (models.ScheduleStatus.PAID, models.ScheduleStatus.SKIPPED):
                        raise AlreadyPaid(
                            "El periodo ya está cerrado; desvincula el pago antes de registrar otro",
                            schedule_id=schedule_id,
                            status=status.value,
                        )
                    if payload.paid_amount <= 0:
                        raise ValidationError("El monto pagado debe ser positivo", field="paidAmount")

                    policy = LateFeePolicy.from_service(schedule.service)
                    assessment = assess_late_fee(
                        Decimal(schedule.expected_amount),
                        schedule.due_date,
                        models.ScheduleStatus.PENDING,
                        policy,
                        as_of=payload.paid_date,
                    )
                    paid_in_full = Decimal(payload.paid_amount) >= assessment.effective_amount

                    schedule.status = (
                        models.ScheduleStatus.PAID if paid_in_full else models.ScheduleStatus.PARTIAL
                    )
                    schedule.paid_amount = payload.paid_amount
                    schedule.paid_date = payload.paid_date
                    schedule.transaction_id = payload.transaction_id
                    schedule.settled_late_fee_amount = assessment.late_fee_amount
                    if payload.note is not None:
                        schedule.note = payload.note.strip() or None
                    db.commit()
                except (ScheduleEngineError, SQLAlchemyError):
                    db.rollback()
                    raise

        db.refresh(schedule)
        LOGGER.info(
            "Payment registered",
            extra={
                "schedule_id": schedule_id,
                "transaction_id": payload.transaction_id,
                "status": models.ScheduleStatus(schedule.status).value,
            },
        )
        return PaymentMatchingService._respond(schedule, as_of)

    @staticmethod
    def unlink_payment(
        db: Session,
        schedule_id: int,
        *,
        as_of: Optional[date] = None,
    ) -> schemas.ScheduleRead:
        service_id = PaymentMatchingService._service_id_for(db, schedule_id)
        with ObservabilityService.timed_event(
            db, MetricEvent.PAYMENT_UNLINKED, tags={"schedule_id": schedule_id}
        ):
            with service_lock(service_id):
                try:
                    schedule = PaymentMatchingService._load_for_update(db, schedule_id)
                    status = models.ScheduleStatus(schedule.status)
                    if status != models.ScheduleStatus.PAID or schedule.transaction_id is None:
                        raise NothingToUnlink(
                            "El periodo no tiene un pago vinculado",
                            schedule_id=schedule_id,
                            status=status.value,
                        )
                    previous_transaction = schedule.transaction_id
                    schedule.status = models.ScheduleStatus.PENDING
                    schedule.paid_amount = None
                    schedule.paid_date = None
                    schedule.transaction_id = None
                    schedule.settled_late_fee_amount = None
                    db.commit()
                except (ScheduleEngineError, SQLAlchemyError):
                    db.rollback()
                    raise

        db.refresh(schedule)
        LOGGER.info(
            "Payment unlinked",
            extra={"schedule_id": schedule_id, "transaction_id": previous_transaction},
        )
        return PaymentMatchingService._respond(schedule, as_of)

    @staticmethod
    def skip_schedule(
        db: Session,
        schedule_id: int,
        reason: str,
        *,
        as_of: Optional[date] = None,
    ) -> schemas.ScheduleRead:
        """Mark an entry as not payable. Skipped entries are final."""

        cleaned = (reason or "").strip()
        if not cleaned:
            raise ValidationError("Debes indicar el motivo para omitir el periodo", field="reason")
        if len(cleaned) > MAX_SKIP_REASON_LENGTH:
            raise ValidationError(
                f"El motivo no puede superar {MAX_SKIP_REASON_LENGTH} caracteres", field="reason"
            )

        service_id = PaymentMatchingService._service_id_for(db, schedule_id)
        with ObservabilityService.timed_event(
            db, MetricEvent.SCHEDULE_SKIPPED, tags={"schedule_id": schedule_id}
        ):
            with service_lock(service_id):
                try:
                    schedule = PaymentMatchingService._load_for_update(db, schedule_id)
                    status = models.ScheduleStatus(schedule.status)
                    if status != models.ScheduleStatus.PENDING:
                        raise AlreadyPaid(
                            "Solo se pueden omitir periodos pendientes",
                            schedule_id=schedule_id,
                            status=status.value,
                        )
                    schedule.status = models.ScheduleStatus.SKIPPED
                    schedule.note = cleaned
                    db.commit()
                except (ScheduleEngineError, SQLAlchemyError):
                    db.rollback()
                    raise

        db.refresh(schedule)
        LOGGER.info("Schedule skipped", extra={"schedule_id": schedule_id})
        return PaymentMatchingService._respond(schedule, as_of)

    @staticmethod
    def suggest_for_schedule(
        db: Session,
        schedule_id: int,
        *,
        feed: Optional[TransactionFeed] = None,
        policy: Optional[MatchPolicy] = None,
    ) -> schemas.MatchSuggestionListResponse:
        """Candidate transactions for an entry; feed failures yield no suggestions."""

        schedule = db.get(models.ServiceSchedule, schedule_id)
        if schedule is None:
            raise ScheduleNotFound("Periodo no encontrado", schedule_id=schedule_id)

        active_policy = policy or MatchPolicy.from_env()
        window_start, window_end = active_policy.window_for(schedule.due_date)
        source = feed or SqlTransactionFeed(db)
        try:
            pool = source.fetch_window(window_start, window_end)
        except ExternalDependencyError:
            LOGGER.warning(
                "Transaction feed unavailable; returning no suggestions",
                exc_info=True,
                extra={"schedule_id": schedule_id},
            )
            pool = []

        suggestions = suggest_matches(schedule, pool, active_policy)
        return schemas.MatchSuggestionListResponse(
            items=[
                schemas.MatchSuggestionRead(
                    transaction_id=item.transaction.id,
                    occurred_on=item.transaction.occurred_on,
                    amount=item.transaction.amount,
                    description=item.transaction.description,
                    bank_account_number=item.transaction.bank_account_number,
                    amount_difference=item.amount_difference,
                    days_from_due=item.days_from_due,
                )
                for item in suggestions
            ],
            tolerance=active_policy.tolerance_for(Decimal(schedule.expected_amount)),
            window_start=window_start,
            window_end=window_end,
        )
