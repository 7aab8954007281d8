from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from backend.app.models import LateFeeMode, ScheduleStatus
from backend.app.services.late_fees import LateFeePolicy, assess_late_fee, assess_schedule


def test_percentage_fee_after_grace_period():
    policy = LateFeePolicy(mode=LateFeeMode.PERCENTAGE, value=Decimal("10"), grace_days=5)

    assessment = assess_late_fee(
        Decimal("100000"), date(2024, 1, 15), ScheduleStatus.PENDING, policy, as_of=date(2024, 1, 25)
    )

    assert assessment.overdue_days == 10
    assert assessment.late_fee_amount == Decimal("10000")
    assert assessment.effective_amount == Decimal("110000")


def test_no_fee_within_grace_days():
    policy = LateFeePolicy(mode=LateFeeMode.FIXED, value=Decimal("5000"), grace_days=5)

    assessment = assess_late_fee(
        Decimal("100000"), date(2024, 1, 15), ScheduleStatus.PENDING, policy, as_of=date(2024, 1, 20)
    )

    assert assessment.overdue_days == 5
    assert assessment.late_fee_amount == Decimal("0")
    assert assessment.effective_amount == Decimal("100000")


def test_fixed_fee_once_overdue():
    policy = LateFeePolicy(mode=LateFeeMode.FIXED, value=Decimal("5000"))

    assessment = assess_late_fee(
        Decimal("100000"), date(2024, 1, 15), ScheduleStatus.PENDING, policy, as_of=date(2024, 1, 16)
    )

    assert assessment.late_fee_amount == Decimal("5000.00")


def test_settled_entries_report_the_frozen_fee():
    policy = LateFeePolicy(mode=LateFeeMode.PERCENTAGE, value=Decimal("50"))
    schedule = SimpleNamespace(
        id=1,
        expected_amount=Decimal("1000"),
        due_date=date(2024, 1, 1),
        status=ScheduleStatus.PAID,
        settled_late_fee_amount=Decimal("20"),
    )

    assessment = assess_schedule(schedule, policy, as_of=date(2024, 6, 1))

    assert assessment.overdue_days == 0
    assert assessment.late_fee_amount == Decimal("20")
    assert assessment.effective_amount == Decimal("1020")


def test_broken_schedule_degrades_to_zero_fee():
    policy = LateFeePolicy(mode=LateFeeMode.FIXED, value=Decimal("10"))
    schedule = SimpleNamespace(
        id=2,
        expected_amount=Decimal("1000"),
        due_date=None,
        status=ScheduleStatus.PENDING,
        settled_late_fee_amount=None,
    )

    assessment = assess_schedule(schedule, policy, as_of=date(2024, 6, 1))

    assert assessment.late_fee_amount == Decimal("0")
    assert assessment.effective_amount == Decimal("1000")


def test_fixed_fee_once_grace_period_is_exceeded():
    policy = LateFeePolicy(mode=LateFeeMode.FIXED, value=Decimal("5000"), grace_days=3)

    assessment = assess_late_fee(
        Decimal("100000"), date(2024, 1, 15), ScheduleStatus.PENDING, policy, as_of=date(2024, 1, 20)
    )

    assert assessment.overdue_days == 5
    assert assessment.late_fee_amount == Decimal("5000")
    assert assessment.effective_amount == Decimal("105000")
