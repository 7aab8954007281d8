"""Pure calendar helpers turning a recurrence policy into billing periods."""

from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from ..models.service import ServiceFrequency
from .errors import InvalidConfiguration

DAY_STEPS = {
    ServiceFrequency.WEEKLY: 7,
    ServiceFrequency.BIWEEKLY: 14,
}

MONTH_STEPS = {
    ServiceFrequency.MONTHLY: 1,
    ServiceFrequency.BIMONTHLY: 2,
    ServiceFrequency.QUARTERLY: 3,
    ServiceFrequency.SEMIANNUAL: 6,
    ServiceFrequency.ANNUAL: 12,
    # A one-off obligation covers a single month.
    ServiceFrequency.ONCE: 1,
}


@dataclass(frozen=True)
class Period:
    """Boundaries and due date of the ``index``-th occurrence."""

    index: int
    period_start: date
    period_end: date
    due_date: date


def clamp_day(year: int, month: int, day: int) -> date:
    """Return ``year-month-day``, clamped to the last valid day of that month."""

    last_day = monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last_day))


def shift_months(start: date, months_delta: int, *, day: Optional[int] = None) -> date:
    month_index = start.month - 1 + months_delta
    year = start.year + month_index // 12
    normalized_month = month_index % 12 + 1
    return clamp_day(year, normalized_month, day if day is not None else start.day)


def _coerce_frequency(frequency: ServiceFrequency | str) -> ServiceFrequency:
    if isinstance(frequency, ServiceFrequency):
        return frequency
    try:
        return ServiceFrequency(str(frequency).strip().upper())
    except ValueError as exc:
        raise InvalidConfiguration(
            f"Frecuencia no soportada: {frequency}", field="frequency"
        ) from exc


def occurrence_start(start_date: date, frequency: ServiceFrequency | str, index: int) -> date:
    """Start of occurrence ``index``, always measured from the anchor date.

    Month based steps are computed from ``start_date`` instead of chaining
    from the previous period so a start on the 31st does not drift to the
    28th after February.
    """

    freq = _coerce_frequency(frequency)
    if index < 0:
        raise InvalidConfiguration("El índice de la ocurrencia no puede ser negativo")
    if freq in DAY_STEPS:
        return start_date + timedelta(days=DAY_STEPS[freq] * index)
    return shift_months(start_date, MONTH_STEPS[freq] * index, day=start_date.day)


def resolve_due_date(
    period_start: date,
    period_end: date,
    frequency: ServiceFrequency | str,
    due_day: Optional[int],
) -> date:
    """Due date of a period.

    With a ``due_day`` the period start is advanced to that day of its month
    (clamped), moving to the following month when the day has already passed.
    Weekly cadences ignore ``due_day`` and fall due at the end of the period.
    """

    freq = _coerce_frequency(frequency)
    if due_day is None or freq in DAY_STEPS:
        return period_end
    _check_due_day(due_day)

    candidate = clamp_day(period_start.year, period_start.month, due_day)
    if candidate < period_start:
        candidate = shift_months(period_start, 1, day=due_day)
    return candidate


def _check_due_day(due_day: int) -> None:
    if due_day < 1 or due_day > 31:
        raise InvalidConfiguration("El día de vencimiento debe estar entre 1 y 31", field="dueDay")


def anchored_due_date(
    start_date: date,
    frequency: ServiceFrequency | str,
    index: int,
    due_day: int,
) -> date:
    """Due date of occurrence ``index`` for a month based cadence.

    The month roll is decided once on the anchor and reused for every
    occurrence, so clamped month ends never collapse two due dates.
    """

    freq = _coerce_frequency(frequency)
    _check_due_day(due_day)
    roll = 1 if clamp_day(start_date.year, start_date.month, due_day) < start_date else 0
    return shift_months(start_date, MONTH_STEPS[freq] * index + roll, day=due_day)


def period_for(
    start_date: date,
    frequency: ServiceFrequency | str,
    index: int,
    due_day: Optional[int] = None,
) -> Period:
    freq = _coerce_frequency(frequency)
    period_start = occurrence_start(start_date, freq, index)
    period_end = occurrence_start(start_date, freq, index + 1) - timedelta(days=1)
    if due_day is None or freq in DAY_STEPS:
        due_date = period_end
    else:
        due_date = anchored_due_date(start_date, freq, index, due_day)
    return Period(
        index=index,
        period_start=period_start,
        period_end=period_end,
        due_date=due_date,
    )


def occurrence_count(frequency: ServiceFrequency | str, requested: int) -> int:
    """Number of occurrences to build; ``ONCE`` always yields exactly one."""

    freq = _coerce_frequency(frequency)
    if requested is None or int(requested) < 1:
        raise InvalidConfiguration("Debe generar al menos 1 periodo", field="months")
    if freq == ServiceFrequency.ONCE:
        return 1
    return int(requested)


def build_periods(
    start_date: date,
    frequency: ServiceFrequency | str,
    count: int,
    due_day: Optional[int] = None,
) -> list[Period]:
    freq = _coerce_frequency(frequency)
    total = occurrence_count(freq, count)
    return [period_for(start_date, freq, index, due_day) for index in range(total)]
