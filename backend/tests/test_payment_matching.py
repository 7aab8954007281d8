from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from backend.app import models, schemas
from backend.app.services import (
    AlreadyPaid,
    MatchPolicy,
    NothingToUnlink,
    PaymentMatchingService,
    ScheduleNotFound,
    ValidationError,
    suggest_matches,
)
from backend.app.services.errors import ExternalDependencyError
from backend.app.services.transaction_feed import TransactionFeed, TransactionRecord

OUT = models.TransactionDirection.OUT
IN = models.TransactionDirection.IN


def _record(record_id, occurred_on, amount, direction=OUT):
    return TransactionRecord(id=record_id, occurred_on=occurred_on, amount=Decimal(amount), direction=direction)


def _payment(amount, paid_date=date(2024, 1, 15), transaction_id=10):
    return schemas.SchedulePaymentCreate(
        transaction_id=transaction_id, paid_amount=Decimal(amount), paid_date=paid_date
    )


def test_suggestions_are_ranked_by_amount_closeness():
    schedule = SimpleNamespace(expected_amount=Decimal("100000"), due_date=date(2024, 1, 15))
    pool = [
        _record(1, date(2024, 1, 10), "-100500"),
        _record(2, date(2024, 1, 14), "100000"),
        _record(3, date(2024, 1, 20), "100000"),
        _record(4, date(2024, 1, 15), "100000", direction=IN),
        _record(5, date(2024, 4, 1), "100000"),
        _record(6, date(2024, 1, 15), "150000"),
    ]

    suggestions = suggest_matches(schedule, pool, MatchPolicy())

    assert [item.transaction.id for item in suggestions] == [3, 2, 1]
    assert suggestions[0].amount_difference == Decimal("0")
    assert suggestions[0].days_from_due == 5
    assert suggestions[2].amount_difference == Decimal("500")


def test_tolerance_has_a_floor_and_scales_with_amount():
    policy = MatchPolicy()

    assert policy.tolerance_for(Decimal("5000")) == Decimal("100")
    assert policy.tolerance_for(Decimal("250000")) == Decimal("2500")


def test_suggestions_are_capped_by_policy_limit():
    schedule = SimpleNamespace(expected_amount=Decimal("1000"), due_date=date(2024, 1, 15))
    pool = [_record(i, date(2024, 1, 15), "1000") for i in range(1, 6)]

    assert len(suggest_matches(schedule, pool, MatchPolicy(limit=2))) == 2


def test_policy_reads_environment(monkeypatch):
    monkeypatch.setenv("PAYMENT_MATCH_WINDOW_DAYS", "10")
    monkeypatch.setenv("PAYMENT_MATCH_TOLERANCE_RATE", "0.05")

    policy = MatchPolicy.from_env()

    assert policy.window_days == 10
    assert policy.tolerance_rate == Decimal("0.05")
    assert policy.window_for(date(2024, 1, 15)) == (date(2024, 1, 5), date(2024, 1, 25))


@pytest.mark.parametrize(
    "name, value",
    [
        ("PAYMENT_MATCH_WINDOW_DAYS", "forty"),
        ("PAYMENT_MATCH_LIMIT", "-3"),
        ("PAYMENT_MATCH_TOLERANCE_RATE", "uno"),
        ("PAYMENT_MATCH_MIN_TOLERANCE", "-100"),
    ],
)
def test_malformed_policy_environment_falls_back_to_defaults(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    assert MatchPolicy.from_env() == MatchPolicy()


def test_suggestions_survive_malformed_policy_environment(monkeypatch, db_session, create_service):
    monkeypatch.setenv("PAYMENT_MATCH_WINDOW_DAYS", "not-a-number")
    schedule = create_service().schedules[0]

    response = PaymentMatchingService.suggest_for_schedule(db_session, schedule.id)

    assert response.items == []
    assert response.window_start == date(2023, 12, 1)


def test_full_payment_marks_entry_paid(db_session, create_service):
    schedule = create_service().schedules[0]

    paid = PaymentMatchingService.register_payment(db_session, schedule.id, _payment("100000"))

    assert paid.status == models.ScheduleStatus.PAID
    assert paid.transaction_id == 10
    assert paid.paid_date == date(2024, 1, 15)


def test_short_payment_is_partial_and_can_be_completed_later(db_session, create_service):
    schedule = create_service().schedules[0]

    partial = PaymentMatchingService.register_payment(db_session, schedule.id, _payment("60000"))
    assert partial.status == models.ScheduleStatus.PARTIAL

    completed = PaymentMatchingService.register_payment(
        db_session, schedule.id, _payment("100000", transaction_id=11)
    )
    assert completed.status == models.ScheduleStatus.PAID
    assert completed.transaction_id == 11


def test_late_payment_must_cover_the_fee(db_session, create_service):
    schedule = create_service(
        late_fee_mode=models.LateFeeMode.PERCENTAGE, late_fee_value=Decimal("10")
    ).schedules[0]

    late = PaymentMatchingService.register_payment(
        db_session, schedule.id, _payment("100000", paid_date=date(2024, 1, 25))
    )

    assert late.status == models.ScheduleStatus.PARTIAL
    assert late.late_fee_amount == Decimal("10000")
    assert late.effective_amount == Decimal("110000")


def test_paid_entry_rejects_another_payment(db_session, create_service):
    schedule = create_service().schedules[0]
    PaymentMatchingService.register_payment(db_session, schedule.id, _payment("100000"))

    with pytest.raises(AlreadyPaid):
        PaymentMatchingService.register_payment(db_session, schedule.id, _payment("100000"))


def test_unlink_restores_pending_state(db_session, create_service):
    schedule = create_service().schedules[0]
    PaymentMatchingService.register_payment(db_session, schedule.id, _payment("100000"))

    unlinked = PaymentMatchingService.unlink_payment(db_session, schedule.id)

    assert unlinked.status == models.ScheduleStatus.PENDING
    assert unlinked.transaction_id is None
    assert unlinked.paid_amount is None
    assert unlinked.paid_date is None


def test_unlink_pending_entry_fails(db_session, create_service):
    schedule = create_service().schedules[0]

    with pytest.raises(NothingToUnlink):
        PaymentMatchingService.unlink_payment(db_session, schedule.id)


def test_unlink_partial_entry_fails_and_keeps_the_link(db_session, create_service):
    schedule = create_service().schedules[0]
    PaymentMatchingService.register_payment(db_session, schedule.id, _payment("1000"))

    with pytest.raises(NothingToUnlink):
        PaymentMatchingService.unlink_payment(db_session, schedule.id)

    stored = db_session.get(models.ServiceSchedule, schedule.id)
    assert stored.status == models.ScheduleStatus.PARTIAL
    assert stored.transaction_id == 10
    assert stored.paid_amount == Decimal("1000")


def test_skip_requires_a_reason(db_session, create_service):
    schedule = create_service().schedules[0]

    with pytest.raises(ValidationError):
        PaymentMatchingService.skip_schedule(db_session, schedule.id, "   ")
    with pytest.raises(ValidationError):
        PaymentMatchingService.skip_schedule(db_session, schedule.id, "x" * 501)

    skipped = PaymentMatchingService.skip_schedule(db_session, schedule.id, "  Condonado  ")
    assert skipped.status == models.ScheduleStatus.SKIPPED
    assert skipped.note == "Condonado"

    with pytest.raises(AlreadyPaid):
        PaymentMatchingService.skip_schedule(db_session, schedule.id, "otra vez")
    with pytest.raises(AlreadyPaid):
        PaymentMatchingService.register_payment(db_session, schedule.id, _payment("100000"))


def test_unknown_schedule_is_not_found(db_session):
    with pytest.raises(ScheduleNotFound):
        PaymentMatchingService.unlink_payment(db_session, 987654)


def test_operations_record_metric_events(db_session, create_service):
    schedule = create_service().schedules[0]
    PaymentMatchingService.register_payment(db_session, schedule.id, _payment("100000"))
    with pytest.raises(AlreadyPaid):
        PaymentMatchingService.register_payment(db_session, schedule.id, _payment("100000"))

    events = (
        db_session.query(models.OperationalMetricEvent)
        .filter(models.OperationalMetricEvent.event_type == "services.payment_registered")
        .order_by(models.OperationalMetricEvent.id)
        .all()
    )

    assert [event.outcome for event in events] == ["success", "rejected"]
    assert events[1].details == {"rejection_code": "already_paid"}


def test_suggestions_read_transactions_table(db_session, create_service):
    schedule = create_service().schedules[0]
    db_session.add_all(
        [
            models.Transaction(occurred_on=date(2024, 1, 16), amount=Decimal("100050"), description="Pago arriendo"),
            models.Transaction(occurred_on=date(2024, 1, 16), amount=Decimal("100000"), direction=IN),
        ]
    )
    db_session.commit()

    response = PaymentMatchingService.suggest_for_schedule(db_session, schedule.id, policy=MatchPolicy())

    assert [item.description for item in response.items] == ["Pago arriendo"]
    assert response.tolerance == Decimal("1000")
    assert response.window_start == date(2023, 12, 1)


def test_feed_failure_yields_no_suggestions(db_session, create_service):
    class _BrokenFeed(TransactionFeed):
        def fetch_window(self, start, end, *, direction=OUT):
            raise ExternalDependencyError("feed down")

    schedule = create_service().schedules[0]

    response = PaymentMatchingService.suggest_for_schedule(db_session, schedule.id, feed=_BrokenFeed())

    assert response.items == []
