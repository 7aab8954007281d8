from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from backend.app import models, schemas
from backend.app.services import (
    AccountConflict,
    AccountNotFound,
    CounterpartNotFound,
    CounterpartService,
    RutConflict,
    ValidationError,
    group_accounts,
    is_valid_rut,
    normalize_account_number,
    normalize_rut,
)


@pytest.mark.parametrize(
    "raw, expected",
    [("0001234 ", "1234"), ("0000", "0"), ("", ""), (None, ""), ("12-34.56", "123456"), ("ab 01", "AB01")],
)
def test_normalize_account_number(raw, expected):
    assert normalize_account_number(raw) == expected


def test_rut_normalization_and_check_digit():
    assert normalize_rut("12.345.678-5") == "123456785"
    assert normalize_rut("7.654.321-k") == "7654321K"
    assert is_valid_rut("12.345.678-5")
    assert is_valid_rut("7654321-6")
    assert not is_valid_rut("12.345.678-9")
    assert not is_valid_rut("")


def test_group_accounts_merges_spellings():
    rows = [
        SimpleNamespace(bank_account_number="000123", amount=Decimal("10")),
        SimpleNamespace(bank_account_number="123", amount=Decimal("5")),
        SimpleNamespace(bank_account_number="  ", amount=Decimal("99")),
        SimpleNamespace(bank_account_number="456", amount=None),
    ]

    groups = group_accounts(rows)

    assert list(groups) == ["123", "456"]
    assert groups["123"].movement_count == 2
    assert groups["123"].total_amount == Decimal("15")
    assert groups["123"].spellings == {"000123", "123"}


def _counterpart(db_session, rut="11.111.111-1", holder="Proveedor Uno"):
    return CounterpartService.create_counterpart(
        db_session,
        schemas.CounterpartCreate(identification_number=rut, bank_account_holder=holder),
    )


def test_create_counterpart_normalizes_and_rejects_duplicates(db_session):
    created = _counterpart(db_session)

    assert created.identification_number == "111111111"
    with pytest.raises(RutConflict):
        _counterpart(db_session, rut="11111111-1")
    with pytest.raises(ValidationError):
        _counterpart(db_session, rut="11.111.111-2")


def test_upsert_account_conflicts_unless_forced(db_session):
    first = _counterpart(db_session)
    second = _counterpart(db_session, rut="22.222.222-2", holder="Proveedor Dos")
    CounterpartService.upsert_account(
        db_session, first.id, schemas.CounterpartAccountUpsert(account_number="00099887")
    )

    with pytest.raises(AccountConflict) as excinfo:
        CounterpartService.upsert_account(
            db_session, second.id, schemas.CounterpartAccountUpsert(account_number="99887")
        )
    assert excinfo.value.detail["current_counterpart_id"] == first.id

    moved = CounterpartService.upsert_account(
        db_session,
        second.id,
        schemas.CounterpartAccountUpsert(account_number="99887", bank_name="Banco Estado", force=True),
    )
    assert moved.counterpart_id == second.id
    assert moved.bank_name == "Banco Estado"


def test_attach_by_rut_creates_counterpart_and_reports_conflicts(db_session, seed_withdrawals):
    seed_withdrawals(
        {"identification_number": "22.222.222-2", "bank_account_number": "555"},
    )

    result = CounterpartService.attach_by_rut(
        db_session, "11.111.111-1", ["000444", "444", "555"], holder="Nuevo Titular"
    )

    assert result.rut == "111111111"
    assert result.assigned_count == 1
    assert [account.account_number for account in result.accounts] == ["444"]
    assert [(c.account_number, c.reason, c.observed_rut) for c in result.conflicts] == [
        ("555", "observed_rut_mismatch", "222222222")
    ]
    counterpart = db_session.get(models.Counterpart, result.counterpart_id)
    assert counterpart.bank_account_holder == "Nuevo Titular"


def test_attach_by_rut_force_overrides_conflicts(db_session, seed_withdrawals):
    other = _counterpart(db_session, rut="22.222.222-2")
    CounterpartService.upsert_account(
        db_session, other.id, schemas.CounterpartAccountUpsert(account_number="777")
    )
    seed_withdrawals({"identification_number": "22.222.222-2", "bank_account_number": "777"})

    blocked = CounterpartService.attach_by_rut(db_session, "11111111-1", ["777"])
    forced = CounterpartService.attach_by_rut(db_session, "11111111-1", ["777"], force=True)

    assert blocked.assigned_count == 0
    assert forced.assigned_count == 1
    assert [account.account_number for account in forced.accounts] == ["777"]


def test_attach_rut_to_counterpart_adopts_withdrawn_accounts(db_session, seed_withdrawals):
    counterpart = _counterpart(db_session, rut="33.333.333-3")
    taken_by = _counterpart(db_session, rut="22.222.222-2")
    CounterpartService.upsert_account(
        db_session, taken_by.id, schemas.CounterpartAccountUpsert(account_number="303")
    )
    seed_withdrawals(
        {"identification_number": "12.345.678-5", "bank_account_number": "0101", "bank_name": "BCI"},
        {"identification_number": "123456785", "bank_account_number": "101"},
        {"identification_number": "12345678-5", "bank_account_number": "303"},
        {"identification_number": "11.111.111-1", "bank_account_number": "909"},
    )

    result = CounterpartService.attach_rut_to_counterpart(db_session, counterpart.id, "12.345.678-5")

    assert result.rut == "123456785"
    assert result.assigned_count == 1
    assert [account.account_number for account in result.accounts] == ["101"]
    assert [(c.account_number, c.current_counterpart_id) for c in result.conflicts] == [
        ("303", taken_by.id)
    ]


def test_withdrawal_scan_for_a_rut_is_narrowed_in_the_query(db_session, seed_withdrawals):
    counterpart = _counterpart(db_session, rut="33.333.333-3")
    seed_withdrawals(
        {"identification_number": "12.345.678-5", "bank_account_number": "101"},
        {"identification_number": "9.876.678-0", "bank_account_number": "202"},
        {"identification_number": "11.111.111-1", "bank_account_number": "909"},
    )

    scanned = [
        row.identification_number
        for row in CounterpartService._stream_withdrawal_identities(db_session, rut="123456785")
    ]
    result = CounterpartService.attach_rut_to_counterpart(db_session, counterpart.id, "12345678-5")

    assert sorted(scanned) == ["12.345.678-5", "9.876.678-0"]
    assert [account.account_number for account in result.accounts] == ["101"]


def test_attach_rut_owned_by_another_counterpart_conflicts(db_session):
    counterpart = _counterpart(db_session)
    _counterpart(db_session, rut="22.222.222-2")

    with pytest.raises(RutConflict):
        CounterpartService.attach_rut_to_counterpart(db_session, counterpart.id, "22222222-2")


def test_suggestions_group_and_rank_by_total(db_session, seed_withdrawals):
    assigned = _counterpart(db_session)
    CounterpartService.upsert_account(
        db_session, assigned.id, schemas.CounterpartAccountUpsert(account_number="300")
    )
    seed_withdrawals(
        {"bank_account_holder": "Ferretería Sur", "bank_account_number": "0100", "amount": "500"},
        {"bank_account_holder": "Ferretería Sur", "bank_account_number": "100", "amount": "700"},
        {"bank_account_holder": "Ferretería Norte", "bank_account_number": "200", "amount": "1000"},
        {"bank_account_holder": "Ferretería Centro", "bank_account_number": "300", "amount": "9000"},
    )

    suggestions = CounterpartService.suggestions(db_session, "Ferreter", limit=5)
    with_assigned = CounterpartService.suggestions(
        db_session, "Ferreter", limit=5, include_assigned=True
    )

    assert [(s.account_identifier, s.total_amount, s.movement_count) for s in suggestions] == [
        ("100", Decimal("1200"), 2),
        ("200", Decimal("1000"), 1),
    ]
    assert with_assigned[0].assigned_counterpart_id == assigned.id
    assert CounterpartService.suggestions(db_session, "   ") == []


def test_unassigned_payout_accounts_list_conflicts_first(db_session, seed_withdrawals):
    linked = _counterpart(db_session)
    CounterpartService.upsert_account(
        db_session, linked.id, schemas.CounterpartAccountUpsert(account_number="800")
    )
    seed_withdrawals(
        {"identification_number": "22.222.222-2", "bank_account_number": "800"},
        {"identification_number": "33.333.333-3", "bank_account_number": "900"},
    )
    db_session.add_all(
        [
            models.ReleaseTransaction(date=date(2024, 1, 1), gross_amount=Decimal("10"), payout_bank_account_number="0700"),
            models.ReleaseTransaction(date=date(2024, 1, 2), gross_amount=Decimal("15"), payout_bank_account_number="700"),
            models.ReleaseTransaction(date=date(2024, 1, 3), gross_amount=Decimal("20"), payout_bank_account_number="800"),
            models.ReleaseTransaction(date=date(2024, 1, 4), gross_amount=Decimal("30"), payout_bank_account_number="900"),
        ]
    )
    db_session.commit()

    page = CounterpartService.list_unassigned_payout_accounts(db_session, page=1, page_size=10)

    assert [(item.payout_bank_account_number, item.conflict) for item in page.items] == [
        ("800", True),
        ("700", False),
    ]
    assert page.items[0].withdraw_rut == "222222222"
    assert page.items[0].counterpart_rut == "111111111"
    assert page.items[1].movement_count == 2
    assert page.items[1].total_gross_amount == Decimal("25")
    assert page.total == 2


def test_sync_from_withdrawals_creates_counterparts(db_session, seed_withdrawals):
    recent = datetime(2024, 2, 1)
    seed_withdrawals(
        {"identification_number": "11.111.111-1", "bank_account_holder": "Uno", "bank_account_number": "10", "date_created": recent},
        {"identification_number": "11111111-1", "bank_account_holder": "Uno", "bank_account_number": "0010", "date_created": recent},
        {"identification_number": "11111111-1", "bank_account_number": "11", "date_created": recent},
        {"identification_number": "22.222.222-2", "bank_account_holder": "Dos", "bank_account_number": "11"},
        {"identification_number": "99.999.999-1", "bank_account_number": "12"},
    )

    counters = CounterpartService.sync_from_withdrawals(db_session)

    assert counters == {"counterparts": 2, "accounts": 2, "conflicts": 1, "invalid_ruts": 1}
    owner = (
        db_session.query(models.Counterpart)
        .filter(models.Counterpart.identification_number == "111111111")
        .one()
    )
    assert owner.bank_account_holder == "Uno"
    assert sorted(account.account_number for account in owner.accounts) == ["10", "11"]


def test_get_counterpart_by_rut_accepts_any_spelling(db_session):
    created = _counterpart(db_session)

    found = CounterpartService.get_counterpart_by_rut(db_session, "11.111.111-1")

    assert found.id == created.id
    with pytest.raises(CounterpartNotFound):
        CounterpartService.get_counterpart_by_rut(db_session, "22.222.222-2")
    with pytest.raises(ValidationError):
        CounterpartService.get_counterpart_by_rut(db_session, " - ")


def test_update_account_normalizes_and_detects_conflicts(db_session):
    first = _counterpart(db_session)
    second = _counterpart(db_session, rut="22.222.222-2", holder="Dos")
    account = CounterpartService.upsert_account(
        db_session, first.id, schemas.CounterpartAccountUpsert(account_number="100")
    )
    CounterpartService.upsert_account(
        db_session, second.id, schemas.CounterpartAccountUpsert(account_number="200")
    )

    updated = CounterpartService.update_account(
        db_session,
        account.id,
        schemas.CounterpartAccountUpdate(account_number="00-150", bank_name=" BCI "),
    )

    assert updated.account_number == "150"
    assert updated.bank_name == "BCI"
    with pytest.raises(AccountConflict) as excinfo:
        CounterpartService.update_account(
            db_session, account.id, schemas.CounterpartAccountUpdate(account_number="0200")
        )
    assert excinfo.value.detail["current_counterpart_id"] == second.id
    assert db_session.get(models.CounterpartAccount, account.id).account_number == "150"
    with pytest.raises(AccountNotFound):
        CounterpartService.update_account(db_session, 987654, schemas.CounterpartAccountUpdate())


def test_counterpart_summary_totals_activity_under_its_rut(db_session, seed_withdrawals):
    counterpart = _counterpart(db_session)
    seed_withdrawals(
        {"identification_number": "11.111.111-1", "amount": "1000"},
        {"identification_number": "11111111-1", "amount": "500"},
        {"identification_number": "22.222.222-2", "amount": "9000"},
    )
    db_session.add_all(
        [
            models.ReleaseTransaction(date=date(2024, 1, 2), gross_amount=Decimal("40"), identification_number="11.111.111-1"),
            models.ReleaseTransaction(date=date(2024, 1, 3), gross_amount=Decimal("60"), identification_number="111111111"),
            models.ReleaseTransaction(date=date(2024, 1, 4), gross_amount=Decimal("70")),
            models.SettlementTransaction(settlement_id="S1", date=date(2024, 1, 5), identification_number="11.111.111-1"),
            models.SettlementTransaction(settlement_id="S2", date=date(2024, 1, 6), identification_number="22.222.222-2"),
        ]
    )
    db_session.commit()

    summary = CounterpartService.counterpart_summary(db_session, counterpart.id)

    assert summary.rut == "111111111"
    assert summary.withdraw_total == Decimal("1500")
    assert summary.release_total == Decimal("100")
    assert summary.settlement_count == 1
    with pytest.raises(CounterpartNotFound):
        CounterpartService.counterpart_summary(db_session, 987654)
