from __future__ import annotations

from datetime import date

import pytest

from backend.app.models import EmissionMode
from backend.app.services.emission import (
    DateRangeEmission,
    FixedDayEmission,
    SpecificDateEmission,
    emission_columns,
    resolve_emission_date,
)
from backend.app.services.errors import InvalidConfiguration


def test_fixed_day_is_clamped_to_the_month():
    emitted = resolve_emission_date(date(2024, 2, 1), date(2024, 2, 29), FixedDayEmission(day=31))

    assert emitted == date(2024, 2, 29)


def test_date_range_uses_the_first_day_of_the_window():
    emitted = resolve_emission_date(
        date(2024, 3, 1), date(2024, 3, 31), DateRangeEmission(start_day=5, end_day=10)
    )

    assert emitted == date(2024, 3, 5)


def test_specific_date_is_returned_verbatim():
    rule = SpecificDateEmission(exact_date=date(2024, 12, 24))

    assert resolve_emission_date(date(2024, 1, 1), date(2024, 1, 31), rule) == date(2024, 12, 24)


def test_inverted_range_is_rejected():
    with pytest.raises(InvalidConfiguration):
        resolve_emission_date(
            date(2024, 3, 1), date(2024, 3, 31), DateRangeEmission(start_day=10, end_day=5)
        )


def test_switching_mode_clears_other_fields():
    columns = emission_columns(DateRangeEmission(start_day=1, end_day=5))

    assert columns == {
        "emission_mode": EmissionMode.DATE_RANGE,
        "emission_day": None,
        "emission_start_day": 1,
        "emission_end_day": 5,
        "emission_exact_date": None,
    }
