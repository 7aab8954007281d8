"""Service CRUD and schedule (re)generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .. import models, schemas
from .emission import (
    EmissionRule,
    FixedDayEmission,
    emission_columns,
    resolve_emission_date,
    rule_from_service,
    validate_rule,
)
from .errors import (
    AlreadyPaid,
    ConflictError,
    InvalidConfiguration,
    ScheduleEngineError,
    ScheduleNotFound,
    ServiceNotFound,
    ValidationError,
)
from .index_rates import IndexRateProvider, get_index_rate_provider
from .late_fees import LateFeePolicy, assess_schedule
from .locks import service_lock
from .observability import MetricEvent, ObservabilityService
from .recurrence import Period, build_periods

LOGGER = logging.getLogger(__name__)

MAX_GENERATION_MONTHS = 60
REQUIRED_FIELDS = frozenset(
    {"name", "service_type", "ownership", "obligation_type", "default_amount", "amount_indexation"}
)
WHOLE_UNITS = Decimal("1")
ZERO = Decimal("0")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ServiceSummary:
    status: models.ServiceStatus
    pending_count: int
    overdue_count: int
    paid_count: int
    total_expected: Decimal
    total_paid: Decimal
    next_due_date: Optional[date]


def summarize_schedules(
    service: models.Service,
    schedules: Iterable[models.ServiceSchedule],
    as_of: Optional[date] = None,
) -> ServiceSummary:
    """Counts and totals shown next to each service.

    Overdue entries are pending entries whose due date has passed; skipped
    entries count towards neither.
    """

    reference = as_of or date.today()
    pending = overdue = paid = 0
    total_expected = total_paid = ZERO
    next_due: Optional[date] = None

    for schedule in schedules:
        status = models.ScheduleStatus(schedule.status)
        if status == models.ScheduleStatus.SKIPPED:
            continue
        total_expected += Decimal(schedule.expected_amount or 0)
        total_paid += Decimal(schedule.paid_amount or 0)
        if status == models.ScheduleStatus.PAID:
            paid += 1
        elif status == models.ScheduleStatus.PENDING:
            if schedule.due_date < reference:
                overdue += 1
            else:
                pending += 1
            if next_due is None or schedule.due_date < next_due:
                next_due = schedule.due_date

    if service.archived_at is not None:
        status_value = models.ServiceStatus.ARCHIVED
    elif pending + overdue > 0:
        status_value = models.ServiceStatus.ACTIVE
    else:
        status_value = models.ServiceStatus.INACTIVE

    return ServiceSummary(
        status=status_value,
        pending_count=pending,
        overdue_count=overdue,
        paid_count=paid,
        total_expected=total_expected,
        total_paid=total_paid,
        next_due_date=next_due,
    )


def schedule_to_read(
    schedule: models.ServiceSchedule,
    policy: LateFeePolicy,
    as_of: Optional[date] = None,
) -> schemas.ScheduleRead:
    assessment = assess_schedule(schedule, policy, as_of)
    return schemas.ScheduleRead.model_validate(schedule).model_copy(
        update={
            "overdue_days": assessment.overdue_days,
            "late_fee_amount": assessment.late_fee_amount,
            "effective_amount": assessment.effective_amount,
        }
    )


def service_to_read(
    service: models.Service,
    schedules: Iterable[models.ServiceSchedule],
    as_of: Optional[date] = None,
) -> schemas.ServiceRead:
    summary = summarize_schedules(service, schedules, as_of)
    return schemas.ServiceRead.model_validate(service).model_copy(
        update={
            "status": summary.status,
            "pending_count": summary.pending_count,
            "overdue_count": summary.overdue_count,
            "paid_count": summary.paid_count,
            "total_expected": summary.total_expected,
            "total_paid": summary.total_paid,
            "next_due_date": summary.next_due_date,
        }
    )


def _overlaps(period: Period, schedule: models.ServiceSchedule) -> bool:
    return period.period_start <= schedule.period_end and schedule.period_start <= period.period_end


class ServiceScheduleService:
    """Business logic for services and the generation of their schedules."""

    @staticmethod
    def get_service(db: Session, public_id: str) -> models.Service:
        service = (
            db.query(models.Service)
            .filter(models.Service.public_id == public_id)
            .first()
        )
        if service is None:
            raise ServiceNotFound("Servicio no encontrado", public_id=public_id)
        return service

    @staticmethod
    def _lock_service(db: Session, service_id: int) -> models.Service:
        service = (
            db.query(models.Service)
            .filter(models.Service.id == service_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if service is None:
            raise ServiceNotFound("Servicio no encontrado", service_id=service_id)
        return service

    @staticmethod
    def _schedules_for(db: Session, service_id: int, *, for_update: bool = False) -> list[models.ServiceSchedule]:
        query = (
            db.query(models.ServiceSchedule)
            .filter(models.ServiceSchedule.service_id == service_id)
            .order_by(models.ServiceSchedule.period_start)
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.all()

    @staticmethod
    def _apply_emission(service: models.Service, rule: EmissionRule) -> None:
        """Store ``rule`` on the service, clearing the previous mode's fields."""

        for column, value in emission_columns(validate_rule(rule)).items():
            setattr(service, column, value)

    @staticmethod
    def _resolve_frequency(
        recurrence_type: models.ServiceRecurrenceType,
        frequency: models.ServiceFrequency,
    ) -> models.ServiceFrequency:
        recurrence = models.ServiceRecurrenceType(recurrence_type)
        freq = models.ServiceFrequency(frequency)
        if recurrence == models.ServiceRecurrenceType.ONE_OFF:
            return models.ServiceFrequency.ONCE
        if freq == models.ServiceFrequency.ONCE:
            raise InvalidConfiguration(
                "Un servicio recurrente no puede tener frecuencia única",
                field="frequency",
            )
        return freq

    @staticmethod
    def _validate_counterpart(
        db: Session,
        counterpart_id: Optional[int],
        counterpart_account_id: Optional[int],
    ) -> None:
        if counterpart_id is not None and db.get(models.Counterpart, counterpart_id) is None:
            raise ValidationError("Contraparte no encontrada", field="counterpartId")
        if counterpart_account_id is None:
            return
        account = db.get(models.CounterpartAccount, counterpart_account_id)
        if account is None:
            raise ValidationError("Cuenta de contraparte no encontrada", field="counterpartAccountId")
        if counterpart_id is not None and account.counterpart_id != counterpart_id:
            raise ValidationError(
                "La cuenta no pertenece a la contraparte indicada",
                field="counterpartAccountId",
            )

    @staticmethod
    def _validate_late_fee(service: models.Service) -> None:
        mode = models.LateFeeMode(service.late_fee_mode or models.LateFeeMode.NONE)
        if mode != models.LateFeeMode.NONE and service.late_fee_value is None:
            raise InvalidConfiguration("Debes indicar el valor del recargo", field="lateFeeValue")

    @staticmethod
    def _generation_amount(
        service: models.Service,
        base_amount: Decimal,
        index_rates: Optional[IndexRateProvider],
    ) -> Decimal:
        """Amount frozen on every generated entry.

        UF-indexed amounts are converted with a single rate lookup so every
        entry of one generation run shares the same conversion.
        """

        amount = Decimal(base_amount)
        if models.AmountIndexation(service.amount_indexation) != models.AmountIndexation.UF:
            return amount

        provider = index_rates or get_index_rate_provider()
        rate = provider.get_rate(date.today())
        LOGGER.info(
            "Converted UF amount for schedule generation",
            extra={
                "service_id": service.id,
                "uf_amount": str(amount),
                "uf_rate": str(rate.value),
                "rate_as_of": rate.as_of.isoformat(),
                "rate_cached": rate.cached,
            },
        )
        return (amount * rate.value).quantize(WHOLE_UNITS, rounding=ROUND_HALF_UP)

    @staticmethod
    def _sync_schedules(
        db: Session,
        service: models.Service,
        periods: list[Period],
        amount: Decimal,
        regeneration_start: date,
    ) -> dict[str, int]:
        existing = ServiceScheduleService._schedules_for(db, service.id, for_update=True)
        settled = [entry for entry in existing if entry.is_settled]
        pending_by_start = {
            entry.period_start: entry
            for entry in existing
            if models.ScheduleStatus(entry.status) == models.ScheduleStatus.PENDING
        }
        rule = rule_from_service(service)

        counts = {"created": 0, "updated": 0, "removed": 0, "skipped": 0}
        kept: set[int] = set()
        written: list[Period] = []
        for period in periods:
            if any(_overlaps(period, entry) for entry in settled):
                counts["skipped"] += 1
                continue
            written.append(period)

            emission_date = resolve_emission_date(period.period_start, period.period_end, rule)
            entry = pending_by_start.get(period.period_start)
            if entry is not None:
                entry.period_end = period.period_end
                entry.due_date = period.due_date
                entry.emission_date = emission_date
                entry.expected_amount = amount
                kept.add(entry.id)
                counts["updated"] += 1
                continue

            db.add(
                models.ServiceSchedule(
                    service_id=service.id,
                    period_start=period.period_start,
                    period_end=period.period_end,
                    due_date=period.due_date,
                    emission_date=emission_date,
                    expected_amount=amount,
                    status=models.ScheduleStatus.PENDING,
                )
            )
            counts["created"] += 1

        for entry in pending_by_start.values():
            if entry.id in kept:
                continue
            # Pending rows overlapping a written period are superseded by it.
            if entry.period_start >= regeneration_start or any(
                _overlaps(period, entry) for period in written
            ):
                db.delete(entry)
                counts["removed"] += 1
        return counts

    @staticmethod
    def _regenerate(
        db: Session,
        service: models.Service,
        months: int,
        amount: Decimal,
        index_rates: Optional[IndexRateProvider],
    ) -> dict[str, int]:
        frequency = ServiceScheduleService._resolve_frequency(
            service.recurrence_type, service.frequency
        )
        periods = build_periods(service.start_date, frequency, months, service.due_day)
        frozen_amount = ServiceScheduleService._generation_amount(service, amount, index_rates)
        return ServiceScheduleService._sync_schedules(
            db, service, periods, frozen_amount, service.start_date
        )

    @staticmethod
    def _validate_months(months: Optional[int]) -> int:
        if months is None or months < 1 or months > MAX_GENERATION_MONTHS:
            raise InvalidConfiguration(
                f"La cantidad de periodos debe estar entre 1 y {MAX_GENERATION_MONTHS}",
                field="months",
            )
        return int(months)

    @staticmethod
    def create_service(
        db: Session,
        payload: schemas.ServiceCreate,
        *,
        index_rates: Optional[IndexRateProvider] = None,
        as_of: Optional[date] = None,
    ) -> schemas.ServiceDetailResponse:
        """Register a service and generate its first ``months_to_generate`` periods."""

        frequency = ServiceScheduleService._resolve_frequency(
            payload.recurrence_type, payload.frequency
        )
        months = ServiceScheduleService._validate_months(payload.months_to_generate)
        ServiceScheduleService._validate_counterpart(
            db, payload.counterpart_id, payload.counterpart_account_id
        )

        service = models.Service(
            name=payload.name.strip(),
            detail=payload.detail,
            category=payload.category,
            notes=payload.notes,
            service_type=payload.service_type,
            ownership=payload.ownership,
            obligation_type=payload.obligation_type,
            recurrence_type=payload.recurrence_type,
            frequency=frequency,
            start_date=payload.start_date,
            due_day=payload.due_day,
            default_amount=payload.default_amount,
            amount_indexation=payload.amount_indexation,
            late_fee_mode=payload.late_fee_mode,
            late_fee_value=payload.late_fee_value,
            late_fee_grace_days=payload.late_fee_grace_days,
            next_generation_months=months,
            counterpart_id=payload.counterpart_id,
            counterpart_account_id=payload.counterpart_account_id,
            account_reference=payload.account_reference,
        )
        ServiceScheduleService._apply_emission(service, payload.emission.to_rule())
        ServiceScheduleService._validate_late_fee(service)

        with ObservabilityService.timed_event(
            db, MetricEvent.SCHEDULE_GENERATION, tags={"trigger": "create"}
        ):
            try:
                db.add(service)
                db.flush()
                counts = ServiceScheduleService._regenerate(
                    db, service, months, Decimal(payload.default_amount), index_rates
                )
                db.commit()
            except (ScheduleEngineError, SQLAlchemyError):
                db.rollback()
                LOGGER.warning("Service creation rolled back", exc_info=True)
                raise

        db.refresh(service)
        LOGGER.info(
            "Service created",
            extra={"service_id": service.id, "public_id": service.public_id, **counts},
        )
        return ServiceScheduleService.get_service_detail(db, service.public_id, as_of=as_of)

    @staticmethod
    def generate(
        db: Session,
        service_id: int,
        *,
        months: Optional[int] = None,
        overrides: Optional[schemas.RegenerateServicePayload] = None,
        index_rates: Optional[IndexRateProvider] = None,
        as_of: Optional[date] = None,
    ) -> schemas.ServiceDetailResponse:
        """(Re)generate the schedule of a service atomically.

        Settled entries are never touched and periods overlapping them are
        skipped. Pending entries sharing a period start are updated in place,
        so running the same generation twice leaves the schedule unchanged.
        """

        fields = overrides.model_fields_set if overrides is not None else set()
        if months is None and overrides is not None:
            months = overrides.months

        if overrides is not None:
            if overrides.default_amount is not None and overrides.default_amount < 0:
                raise InvalidConfiguration("El monto no puede ser negativo", field="defaultAmount")
            if overrides.due_day is not None and not 1 <= overrides.due_day <= 31:
                raise InvalidConfiguration(
                    "El día de vencimiento debe estar entre 1 y 31", field="dueDay"
                )

        with ObservabilityService.timed_event(
            db, MetricEvent.SCHEDULE_GENERATION, tags={"service_id": service_id}
        ):
            with service_lock(service_id):
                try:
                    service = ServiceScheduleService._lock_service(db, service_id)
                    requested = months if months is not None else service.next_generation_months
                    count = ServiceScheduleService._validate_months(requested)

                    if overrides is not None:
                        if overrides.start_date is not None:
                            service.start_date = overrides.start_date
                        if overrides.default_amount is not None:
                            service.default_amount = overrides.default_amount
                        if "due_day" in fields:
                            service.due_day = overrides.due_day
                        if overrides.frequency is not None:
                            service.frequency = ServiceScheduleService._resolve_frequency(
                                service.recurrence_type, overrides.frequency
                            )
                        if overrides.emission_day is not None:
                            if models.EmissionMode(service.emission_mode) != models.EmissionMode.FIXED_DAY:
                                raise InvalidConfiguration(
                                    "El día de emisión solo aplica al modo de día fijo",
                                    field="emissionDay",
                                )
                            ServiceScheduleService._apply_emission(
                                service, FixedDayEmission(day=overrides.emission_day)
                            )
                    service.next_generation_months = count

                    counts = ServiceScheduleService._regenerate(
                        db, service, count, Decimal(service.default_amount), index_rates
                    )
                    db.commit()
                except (ScheduleEngineError, SQLAlchemyError):
                    db.rollback()
                    LOGGER.warning(
                        "Schedule generation rolled back",
                        exc_info=True,
                        extra={"service_id": service_id},
                    )
                    raise

        LOGGER.info("Schedule generated", extra={"service_id": service_id, **counts})
        db.refresh(service)
        return ServiceScheduleService.get_service_detail(db, service.public_id, as_of=as_of)

    @staticmethod
    def regenerate_by_public_id(
        db: Session,
        public_id: str,
        payload: schemas.RegenerateServicePayload,
        *,
        index_rates: Optional[IndexRateProvider] = None,
    ) -> schemas.ServiceDetailResponse:
        service = ServiceScheduleService.get_service(db, public_id)
        return ServiceScheduleService.generate(
            db, service.id, overrides=payload, index_rates=index_rates
        )

    @staticmethod
    def update_service(
        db: Session,
        public_id: str,
        payload: schemas.ServiceUpdate,
    ) -> schemas.ServiceDetailResponse:
        """Apply a partial update. Pending entries pick up fee changes on the next read."""

        service = ServiceScheduleService.get_service(db, public_id)
        data = payload.model_dump(exclude_unset=True, exclude={"emission"})

        with service_lock(service.id):
            try:
                service = ServiceScheduleService._lock_service(db, service.id)
                for field, value in data.items():
                    if value is None and field in REQUIRED_FIELDS:
                        continue
                    if field == "name":
                        value = value.strip()
                    setattr(service, field, value)
                if payload.emission is not None:
                    ServiceScheduleService._apply_emission(service, payload.emission.to_rule())
                if "late_fee_mode" in data and data["late_fee_mode"] in (None, models.LateFeeMode.NONE):
                    service.late_fee_mode = models.LateFeeMode.NONE
                ServiceScheduleService._validate_late_fee(service)
                ServiceScheduleService._validate_counterpart(
                    db, service.counterpart_id, service.counterpart_account_id
                )
                db.commit()
            except (ScheduleEngineError, SQLAlchemyError):
                db.rollback()
                raise

        db.refresh(service)
        return ServiceScheduleService.get_service_detail(db, public_id)

    @staticmethod
    def get_service_detail(
        db: Session,
        public_id: str,
        *,
        as_of: Optional[date] = None,
    ) -> schemas.ServiceDetailResponse:
        service = ServiceScheduleService.get_service(db, public_id)
        schedules = ServiceScheduleService._schedules_for(db, service.id)
        policy = LateFeePolicy.from_service(service)
        return schemas.ServiceDetailResponse(
            service=service_to_read(service, schedules, as_of),
            schedules=[schedule_to_read(entry, policy, as_of) for entry in schedules],
        )

    @staticmethod
    def list_services(
        db: Session,
        *,
        skip: int = 0,
        limit: int = 50,
        status: Optional[models.ServiceStatus] = None,
        search: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> schemas.ServiceListResponse:
        """List services with their summary.

        Status is derived from the schedules, so filtering by it happens
        after the summaries are computed.
        """

        query = db.query(models.Service).options(selectinload(models.Service.schedules))
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(models.Service.name.ilike(pattern))
        services = query.order_by(models.Service.name.asc(), models.Service.id.asc()).all()

        rows = [service_to_read(service, service.schedules, as_of) for service in services]
        if status is not None:
            rows = [row for row in rows if row.status == status]
        return schemas.ServiceListResponse(
            items=rows[skip : skip + limit],
            total=len(rows),
            limit=limit,
            skip=skip,
        )

    @staticmethod
    def archive_service(db: Session, public_id: str) -> schemas.ServiceDetailResponse:
        service = ServiceScheduleService.get_service(db, public_id)
        with service_lock(service.id):
            service = ServiceScheduleService._lock_service(db, service.id)
            if service.archived_at is None:
                service.archived_at = _utcnow()
                db.commit()
                LOGGER.info("Service archived", extra={"service_id": service.id})
            else:
                db.rollback()
        db.refresh(service)
        return ServiceScheduleService.get_service_detail(db, public_id)

    @staticmethod
    def delete_service(db: Session, public_id: str) -> None:
        """Remove a service that never received payments; archive it otherwise."""

        service = ServiceScheduleService.get_service(db, public_id)
        with service_lock(service.id):
            try:
                service = ServiceScheduleService._lock_service(db, service.id)
                settled = (
                    db.query(models.ServiceSchedule.id)
                    .filter(
                        models.ServiceSchedule.service_id == service.id,
                        models.ServiceSchedule.status.in_(
                            [models.ScheduleStatus.PAID, models.ScheduleStatus.PARTIAL]
                        ),
                    )
                    .first()
                )
                if settled is not None:
                    raise ConflictError(
                        "El servicio tiene pagos registrados; archívalo en lugar de eliminarlo",
                        public_id=public_id,
                    )
                db.delete(service)
                db.commit()
            except (ScheduleEngineError, SQLAlchemyError):
                db.rollback()
                raise
        LOGGER.info("Service deleted", extra={"public_id": public_id})

    @staticmethod
    def get_schedule(db: Session, schedule_id: int) -> models.ServiceSchedule:
        schedule = db.get(models.ServiceSchedule, schedule_id)
        if schedule is None:
            raise ScheduleNotFound("Periodo no encontrado", schedule_id=schedule_id)
        return schedule

    @staticmethod
    def update_schedule(
        db: Session,
        schedule_id: int,
        payload: schemas.ScheduleUpdate,
        *,
        as_of: Optional[date] = None,
    ) -> schemas.ScheduleRead:
        """Manually correct a pending entry's due date, amount or note."""

        schedule = ServiceScheduleService.get_schedule(db, schedule_id)
        service_id = schedule.service_id
        data = payload.model_dump(exclude_unset=True)

        with service_lock(service_id):
            try:
                schedule = (
                    db.query(models.ServiceSchedule)
                    .filter(models.ServiceSchedule.id == schedule_id)
                    .with_for_update()
                    .populate_existing()
                    .one()
                )
                status = models.ScheduleStatus(schedule.status)
                if status != models.ScheduleStatus.PENDING and (
                    "due_date" in data or "expected_amount" in data
                ):
                    raise AlreadyPaid(
                        "Solo se pueden editar periodos pendientes",
                        schedule_id=schedule_id,
                        status=status.value,
                    )
                if data.get("due_date") is not None:
                    if data["due_date"] < schedule.period_start:
                        raise ValidationError(
                            "El vencimiento no puede ser anterior al inicio del periodo",
                            field="dueDate",
                        )
                    schedule.due_date = data["due_date"]
                if data.get("expected_amount") is not None:
                    schedule.expected_amount = data["expected_amount"]
                if "note" in data:
                    note = (data["note"] or "").strip() or None
                    if status == models.ScheduleStatus.SKIPPED and note is None:
                        raise ValidationError(
                            "Un periodo omitido debe conservar su motivo", field="note"
                        )
                    schedule.note = note
                db.commit()
            except (ScheduleEngineError, SQLAlchemyError):
                db.rollback()
                raise

        db.refresh(schedule)
        policy = LateFeePolicy.from_service(schedule.service)
        return schedule_to_read(schedule, policy, as_of)
