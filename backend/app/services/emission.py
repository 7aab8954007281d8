"""Resolve the informational emission (invoice issue) date of a period."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Union

from ..models.service import EmissionMode
from .errors import InvalidConfiguration
from .recurrence import clamp_day


@dataclass(frozen=True)
class FixedDayEmission:
    day: int
    mode = EmissionMode.FIXED_DAY


@dataclass(frozen=True)
class DateRangeEmission:
    start_day: int
    end_day: int
    mode = EmissionMode.DATE_RANGE


@dataclass(frozen=True)
class SpecificDateEmission:
    exact_date: date
    mode = EmissionMode.SPECIFIC_DATE


EmissionRule = Union[FixedDayEmission, DateRangeEmission, SpecificDateEmission]


def _check_day(value: int, field: str) -> None:
    if value is None or value < 1 or value > 31:
        raise InvalidConfiguration(f"{field} debe estar entre 1 y 31", field=field)


def validate_rule(rule: EmissionRule) -> EmissionRule:
    if isinstance(rule, FixedDayEmission):
        _check_day(rule.day, "emissionDay")
    elif isinstance(rule, DateRangeEmission):
        _check_day(rule.start_day, "emissionStartDay")
        _check_day(rule.end_day, "emissionEndDay")
        if rule.end_day < rule.start_day:
            raise InvalidConfiguration(
                "Día de inicio debe ser menor o igual al día final",
                field="emissionEndDay",
            )
    elif isinstance(rule, SpecificDateEmission):
        if rule.exact_date is None:
            raise InvalidConfiguration(
                "Fecha exacta requerida para modo fecha específica",
                field="emissionExactDate",
            )
    else:
        raise InvalidConfiguration(f"Modo de emisión desconocido: {rule!r}")
    return rule


def rule_from_service(service) -> EmissionRule:
    """Rebuild the emission rule stored in a service's columns."""

    mode = EmissionMode(service.emission_mode)
    if mode == EmissionMode.FIXED_DAY:
        return FixedDayEmission(day=service.emission_day)
    if mode == EmissionMode.DATE_RANGE:
        return DateRangeEmission(
            start_day=service.emission_start_day, end_day=service.emission_end_day
        )
    return SpecificDateEmission(exact_date=service.emission_exact_date)


def emission_columns(rule: EmissionRule) -> dict[str, object]:
    """Column values for ``rule``; the other modes' fields are always nulled."""

    columns: dict[str, object] = {
        "emission_mode": rule.mode,
        "emission_day": None,
        "emission_start_day": None,
        "emission_end_day": None,
        "emission_exact_date": None,
    }
    if isinstance(rule, FixedDayEmission):
        columns["emission_day"] = rule.day
    elif isinstance(rule, DateRangeEmission):
        columns["emission_start_day"] = rule.start_day
        columns["emission_end_day"] = rule.end_day
    else:
        columns["emission_exact_date"] = rule.exact_date
    return columns


def resolve_emission_date(period_start: date, period_end: date, rule: EmissionRule) -> date:
    validate_rule(rule)
    if isinstance(rule, FixedDayEmission):
        return clamp_day(period_start.year, period_start.month, rule.day)
    if isinstance(rule, DateRangeEmission):
        # Earliest valid day of the window inside the period's month.
        return clamp_day(period_start.year, period_start.month, rule.start_day)
    return rule.exact_date
