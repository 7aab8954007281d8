from __future__ import annotations

from datetime import date

import pytest

from backend.app.models import ServiceFrequency
from backend.app.services.errors import InvalidConfiguration
from backend.app.services.recurrence import (
    build_periods,
    clamp_day,
    occurrence_start,
    resolve_due_date,
)


def test_monthly_periods_fall_due_on_the_configured_day():
    periods = build_periods(date(2024, 1, 10), ServiceFrequency.MONTHLY, 3, due_day=15)

    assert [period.due_date for period in periods] == [
        date(2024, 1, 15),
        date(2024, 2, 15),
        date(2024, 3, 15),
    ]
    assert periods[0].period_start == date(2024, 1, 10)
    assert periods[0].period_end == date(2024, 2, 9)


def test_due_day_before_period_start_moves_to_next_month():
    due = resolve_due_date(date(2024, 1, 20), date(2024, 2, 19), ServiceFrequency.MONTHLY, 5)

    assert due == date(2024, 2, 5)


def test_month_end_anchor_does_not_drift():
    starts = [occurrence_start(date(2024, 1, 31), ServiceFrequency.MONTHLY, i) for i in range(4)]

    assert starts == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]


@pytest.mark.parametrize(
    "start, frequency, due_day, expected",
    [
        (
            date(2024, 1, 31),
            ServiceFrequency.MONTHLY,
            30,
            [date(2024, 2, 29), date(2024, 3, 30), date(2024, 4, 30)],
        ),
        (
            date(2024, 1, 31),
            ServiceFrequency.MONTHLY,
            5,
            [date(2024, 2, 5), date(2024, 3, 5), date(2024, 4, 5)],
        ),
        (
            date(2023, 12, 31),
            ServiceFrequency.BIMONTHLY,
            28,
            [date(2024, 1, 28), date(2024, 3, 28), date(2024, 5, 28)],
        ),
    ],
)
def test_month_end_anchor_keeps_due_dates_increasing(start, frequency, due_day, expected):
    periods = build_periods(start, frequency, 3, due_day=due_day)
    due_dates = [period.due_date for period in periods]

    assert due_dates == expected
    assert all(earlier < later for earlier, later in zip(due_dates, due_dates[1:]))
    assert all(period.due_date >= period.period_start for period in periods)


def test_due_day_is_clamped_to_short_months():
    periods = build_periods(date(2023, 2, 1), ServiceFrequency.MONTHLY, 1, due_day=31)

    assert periods[0].due_date == date(2023, 2, 28)
    assert clamp_day(2024, 2, 31) == date(2024, 2, 29)


def test_once_always_builds_a_single_period():
    periods = build_periods(date(2024, 5, 1), ServiceFrequency.ONCE, 12, due_day=20)

    assert len(periods) == 1
    assert periods[0].due_date == date(2024, 5, 20)


def test_weekly_periods_ignore_due_day():
    periods = build_periods(date(2024, 1, 1), ServiceFrequency.WEEKLY, 2, due_day=15)

    assert [(p.period_start, p.due_date) for p in periods] == [
        (date(2024, 1, 1), date(2024, 1, 7)),
        (date(2024, 1, 8), date(2024, 1, 14)),
    ]


@pytest.mark.parametrize(
    "frequency, expected_second_start",
    [
        (ServiceFrequency.BIWEEKLY, date(2024, 1, 15)),
        (ServiceFrequency.BIMONTHLY, date(2024, 3, 1)),
        (ServiceFrequency.QUARTERLY, date(2024, 4, 1)),
        (ServiceFrequency.SEMIANNUAL, date(2024, 7, 1)),
        (ServiceFrequency.ANNUAL, date(2025, 1, 1)),
    ],
)
def test_each_frequency_steps_from_the_anchor(frequency, expected_second_start):
    periods = build_periods(date(2024, 1, 1), frequency, 2)

    assert periods[1].period_start == expected_second_start
    assert periods[0].due_date < periods[1].due_date


def test_rejects_unknown_frequency_and_empty_generation():
    with pytest.raises(InvalidConfiguration):
        build_periods(date(2024, 1, 1), "DAILY", 1)
    with pytest.raises(InvalidConfiguration):
        build_periods(date(2024, 1, 1), ServiceFrequency.MONTHLY, 0)
