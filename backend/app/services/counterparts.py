"""Counterparts, their bank accounts, and RUT based reconciliation of payouts."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .. import models, schemas
from .errors import (
    AccountConflict,
    AccountNotFound,
    CounterpartNotFound,
    RutConflict,
    ScheduleEngineError,
    ValidationError,
)
from .locks import counterpart_lock, rut_lock
from .observability import MetricEvent, ObservabilityService

LOGGER = logging.getLogger(__name__)

NON_RUT_CHARS = re.compile(r"[^0-9K]")
NON_ACCOUNT_CHARS = re.compile(r"[^0-9A-Z]")
SUGGESTION_SCAN_FACTOR = 10
MIN_SUGGESTION_SCAN = 100
STREAM_BATCH_SIZE = 500

CONFLICT_LINKED_ELSEWHERE = "linked_to_other_counterpart"
CONFLICT_OBSERVED_RUT = "observed_rut_mismatch"


def normalize_rut(raw: Optional[str]) -> str:
    """Strip dots, dashes and spaces from a RUT: ``12.345.678-k`` -> ``12345678K``."""

    if not raw:
        return ""
    return NON_RUT_CHARS.sub("", raw.upper())


def rut_check_digit(body: str) -> str:
    total = 0
    factor = 2
    for digit in reversed(body):
        total += int(digit) * factor
        factor = 2 if factor == 7 else factor + 1
    remainder = 11 - (total % 11)
    if remainder == 11:
        return "0"
    if remainder == 10:
        return "K"
    return str(remainder)


def is_valid_rut(raw: Optional[str]) -> bool:
    """Validate the modulo 11 check digit of a RUT in any formatting."""

    rut = normalize_rut(raw)
    if len(rut) < 2:
        return False
    body, check_digit = rut[:-1], rut[-1]
    if not body.isdigit():
        return False
    return rut_check_digit(body) == check_digit


def normalize_account_number(raw: Optional[str]) -> str:
    """Canonical account identifier.

    Uppercases, drops whitespace and separators, and strips leading zeros.
    An all-zero number normalizes to ``"0"`` and an empty one to ``""``.
    """

    if not raw:
        return ""
    compact = NON_ACCOUNT_CHARS.sub("", raw.upper())
    if not compact:
        return ""
    return compact.lstrip("0") or "0"


@dataclass
class AccountGroup:
    account_number: str
    spellings: set[str] = field(default_factory=set)
    movement_count: int = 0
    total_amount: Decimal = Decimal("0")
    first_row: Any = None


def group_accounts(
    rows: Iterable[Any],
    *,
    number: Callable[[Any], Optional[str]] = lambda row: row.bank_account_number,
    amount: Callable[[Any], Any] = lambda row: row.amount,
) -> dict[str, AccountGroup]:
    """Merge rows whose account numbers normalize to the same identifier.

    Groups keep insertion order; ``first_row`` is the first row seen for the
    identifier.
    """

    groups: dict[str, AccountGroup] = {}
    for row in rows:
        raw = number(row)
        key = normalize_account_number(raw)
        if not key:
            continue
        group = groups.get(key)
        if group is None:
            group = AccountGroup(account_number=key, first_row=row)
            groups[key] = group
        group.spellings.add(raw.strip())
        group.movement_count += 1
        group.total_amount += Decimal(amount(row) or 0)
    return groups


def _require_rut(raw: str) -> str:
    rut = normalize_rut(raw)
    if not is_valid_rut(rut):
        raise ValidationError("RUT inválido", field="rut", rut=raw)
    return rut


def _narrow_to_rut(query, column, rut: str):
    """Keep rows whose raw RUT contains the last three digits of ``rut``'s body.

    Those digits stay contiguous in dotted spellings, so the filter never drops
    a match; callers still compare the normalized value.
    """

    return query.filter(column.isnot(None), column.contains(rut[:-1][-3:]))


class CounterpartService:
    """Business logic for counterparts and the assignment of their accounts."""

    @staticmethod
    def _get(db: Session, counterpart_id: int) -> models.Counterpart:
        counterpart = db.get(models.Counterpart, counterpart_id)
        if counterpart is None:
            raise CounterpartNotFound("Contraparte no encontrada", counterpart_id=counterpart_id)
        return counterpart

    @staticmethod
    def get_counterpart(db: Session, counterpart_id: int) -> models.Counterpart:
        return CounterpartService._get(db, counterpart_id)

    @staticmethod
    def get_counterpart_by_rut(db: Session, rut: str) -> models.Counterpart:
        normalized_rut = normalize_rut(rut)
        if not normalized_rut:
            raise ValidationError("RUT inválido", field="rut", rut=rut)
        counterpart = (
            db.query(models.Counterpart)
            .options(selectinload(models.Counterpart.accounts))
            .filter(models.Counterpart.identification_number == normalized_rut)
            .first()
        )
        if counterpart is None:
            raise CounterpartNotFound(
                f"No existe una contraparte con RUT {normalized_rut}", rut=normalized_rut
            )
        return counterpart

    @staticmethod
    def counterpart_summary(db: Session, counterpart_id: int) -> schemas.CounterpartSummaryRead:
        """Withdrawal and release totals plus settlement count under the counterpart's RUT."""

        counterpart = CounterpartService._get(db, counterpart_id)
        rut = counterpart.identification_number

        def matching(query, column):
            for row in _narrow_to_rut(query, column, rut).yield_per(STREAM_BATCH_SIZE):
                if normalize_rut(row[0]) == rut:
                    yield row

        withdraw_total = Decimal("0")
        withdrawal = models.WithdrawTransaction
        for _, amount in matching(
            db.query(withdrawal.identification_number, withdrawal.amount),
            withdrawal.identification_number,
        ):
            withdraw_total += Decimal(amount or 0)

        release_total = Decimal("0")
        release = models.ReleaseTransaction
        for _, amount in matching(
            db.query(release.identification_number, release.gross_amount),
            release.identification_number,
        ):
            release_total += Decimal(amount or 0)

        settlement = models.SettlementTransaction
        settlement_count = sum(
            1
            for _ in matching(
                db.query(settlement.identification_number), settlement.identification_number
            )
        )

        return schemas.CounterpartSummaryRead(
            counterpart_id=counterpart.id,
            rut=rut,
            withdraw_total=withdraw_total,
            release_total=release_total,
            settlement_count=settlement_count,
        )

    @staticmethod
    def list_counterparts(
        db: Session,
        *,
        skip: int = 0,
        limit: int = 50,
        search: Optional[str] = None,
        category: Optional[models.CounterpartCategory] = None,
    ) -> tuple[list[models.Counterpart], int]:
        query = db.query(models.Counterpart).options(selectinload(models.Counterpart.accounts))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    models.Counterpart.bank_account_holder.ilike(pattern),
                    models.Counterpart.identification_number.ilike(
                        f"%{normalize_rut(search) or search.strip()}%"
                    ),
                )
            )
        if category is not None:
            query = query.filter(models.Counterpart.category == category)
        total = query.count()
        items = (
            query.order_by(models.Counterpart.bank_account_holder.asc(), models.Counterpart.id.asc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def create_counterpart(db: Session, payload: schemas.CounterpartCreate) -> models.Counterpart:
        rut = _require_rut(payload.identification_number)
        existing = (
            db.query(models.Counterpart)
            .filter(models.Counterpart.identification_number == rut)
            .first()
        )
        if existing is not None:
            raise RutConflict(
                f"Ya existe una contraparte con RUT {rut}",
                rut=rut,
                counterpart_id=existing.id,
            )
        counterpart = models.Counterpart(
            identification_number=rut,
            bank_account_holder=payload.bank_account_holder.strip(),
            category=payload.category,
            notes=payload.notes,
        )
        try:
            db.add(counterpart)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        db.refresh(counterpart)
        return counterpart

    @staticmethod
    def update_counterpart(
        db: Session, counterpart_id: int, payload: schemas.CounterpartUpdate
    ) -> models.Counterpart:
        counterpart = CounterpartService._get(db, counterpart_id)
        data = payload.model_dump(exclude_unset=True)
        for field_name, value in data.items():
            if value is None and field_name != "notes":
                continue
            if field_name == "bank_account_holder":
                value = value.strip()
            setattr(counterpart, field_name, value)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        db.refresh(counterpart)
        return counterpart

    @staticmethod
    def _find_account(db: Session, account_number: str) -> Optional[models.CounterpartAccount]:
        return (
            db.query(models.CounterpartAccount)
            .filter(models.CounterpartAccount.account_number == account_number)
            .with_for_update()
            .first()
        )

    @staticmethod
    def _assign_account(
        db: Session,
        counterpart: models.Counterpart,
        account_number: str,
        *,
        bank_name: Optional[str] = None,
        account_type: Optional[str] = None,
        force: bool = False,
    ) -> Optional[schemas.AccountConflictRead]:
        """Link ``account_number`` to ``counterpart`` unless another one owns it."""

        account = CounterpartService._find_account(db, account_number)
        if account is None:
            db.add(
                models.CounterpartAccount(
                    counterpart_id=counterpart.id,
                    account_number=account_number,
                    bank_name=bank_name,
                    account_type=account_type,
                )
            )
            db.flush()
            return None

        if account.counterpart_id != counterpart.id:
            if not force:
                owner = account.counterpart
                return schemas.AccountConflictRead(
                    account_number=account_number,
                    reason=CONFLICT_LINKED_ELSEWHERE,
                    observed_rut=counterpart.identification_number,
                    current_counterpart_id=account.counterpart_id,
                    current_rut=owner.identification_number if owner else None,
                )
            LOGGER.info(
                "Reassigning account to another counterpart",
                extra={
                    "account_number": account_number,
                    "from_counterpart_id": account.counterpart_id,
                    "to_counterpart_id": counterpart.id,
                },
            )
            account.counterpart_id = counterpart.id
        if bank_name is not None:
            account.bank_name = bank_name
        if account_type is not None:
            account.account_type = account_type
        db.flush()
        return None

    @staticmethod
    def upsert_account(
        db: Session,
        counterpart_id: int,
        payload: schemas.CounterpartAccountUpsert,
    ) -> models.CounterpartAccount:
        account_number = normalize_account_number(payload.account_number)
        if not account_number:
            raise ValidationError("Número de cuenta inválido", field="accountNumber")

        with counterpart_lock(counterpart_id):
            try:
                counterpart = CounterpartService._get(db, counterpart_id)
                conflict = CounterpartService._assign_account(
                    db,
                    counterpart,
                    account_number,
                    bank_name=payload.bank_name,
                    account_type=payload.account_type,
                    force=payload.force,
                )
                if conflict is not None:
                    raise AccountConflict(
                        f"La cuenta {account_number} pertenece a otra contraparte",
                        **conflict.model_dump(),
                    )
                db.commit()
            except (ScheduleEngineError, SQLAlchemyError):
                db.rollback()
                raise

        return (
            db.query(models.CounterpartAccount)
            .filter(models.CounterpartAccount.account_number == account_number)
            .one()
        )

    @staticmethod
    def update_account(
        db: Session,
        account_id: int,
        payload: schemas.CounterpartAccountUpdate,
    ) -> models.CounterpartAccount:
        """Edit an account in place; a number already held elsewhere is a conflict."""

        account = db.get(models.CounterpartAccount, account_id)
        if account is None:
            raise AccountNotFound("Cuenta no encontrada", account_id=account_id)

        with counterpart_lock(account.counterpart_id):
            try:
                data = payload.model_dump(exclude_unset=True)
                if data.get("account_number") is not None:
                    account_number = normalize_account_number(data["account_number"])
                    if not account_number:
                        raise ValidationError("Número de cuenta inválido", field="accountNumber")
                    holder = CounterpartService._find_account(db, account_number)
                    if holder is not None and holder.id != account.id:
                        owner = holder.counterpart
                        raise AccountConflict(
                            f"La cuenta {account_number} ya está registrada",
                            **schemas.AccountConflictRead(
                                account_number=account_number,
                                reason=CONFLICT_LINKED_ELSEWHERE,
                                observed_rut=account.counterpart.identification_number,
                                current_counterpart_id=holder.counterpart_id,
                                current_rut=owner.identification_number if owner else None,
                            ).model_dump(),
                        )
                    account.account_number = account_number
                for field_name in ("bank_name", "account_type"):
                    if field_name in data:
                        value = (data[field_name] or "").strip()
                        setattr(account, field_name, value or None)
                db.commit()
            except (ScheduleEngineError, SQLAlchemyError):
                db.rollback()
                raise

        db.refresh(account)
        LOGGER.info(
            "Counterpart account updated",
            extra={"account_id": account.id, "counterpart_id": account.counterpart_id},
        )
        return account

    @staticmethod
    def _observed_ruts(db: Session, accounts: Iterable[str]) -> dict[str, str]:
        """Most recent RUT seen on withdrawals for each normalized account."""

        wanted = set(accounts)
        observed: dict[str, str] = {}
        if not wanted:
            return observed
        rows = (
            db.query(
                models.WithdrawTransaction.bank_account_number,
                models.WithdrawTransaction.identification_number,
            )
            .filter(
                models.WithdrawTransaction.bank_account_number.isnot(None),
                models.WithdrawTransaction.identification_number.isnot(None),
            )
            .order_by(
                models.WithdrawTransaction.date_created.desc(),
                models.WithdrawTransaction.id.desc(),
            )
            .yield_per(STREAM_BATCH_SIZE)
        )
        for raw_account, raw_rut in rows:
            account = normalize_account_number(raw_account)
            if account in wanted and account not in observed:
                rut = normalize_rut(raw_rut)
                if rut:
                    observed[account] = rut
        return observed

    @staticmethod
    def _stream_withdrawal_identities(db: Session, *, rut: Optional[str] = None):
        """Identity columns of withdrawals carrying a RUT, newest first, in batches."""

        withdrawal = models.WithdrawTransaction
        query = db.query(
            withdrawal.identification_number,
            withdrawal.bank_account_number,
            withdrawal.bank_account_holder,
            withdrawal.bank_name,
            withdrawal.bank_account_type,
        ).filter(withdrawal.identification_number.isnot(None))
        if rut:
            query = _narrow_to_rut(query, withdrawal.identification_number, rut)
        return query.order_by(withdrawal.date_created.desc(), withdrawal.id.desc()).yield_per(
            STREAM_BATCH_SIZE
        )

    @staticmethod
    def _attach_response(
        counterpart: models.Counterpart,
        assigned_count: int,
        conflicts: list[schemas.AccountConflictRead],
    ) -> schemas.AttachRutResponse:
        return schemas.AttachRutResponse(
            counterpart_id=counterpart.id,
            rut=counterpart.identification_number,
            assigned_count=assigned_count,
            accounts=[
                schemas.CounterpartAccountRead.model_validate(account)
                for account in counterpart.accounts
            ],
            conflicts=conflicts,
        )

    @staticmethod
    def attach_by_rut(
        db: Session,
        rut: str,
        account_numbers: Iterable[str],
        *,
        holder: Optional[str] = None,
        force: bool = False,
    ) -> schemas.AttachRutResponse:
        """Assign accounts to the counterpart owning ``rut``, creating it if needed.

        Accounts whose withdrawals show a different RUT, or that already belong
        to another counterpart, are reported as conflicts and left untouched
        unless ``force`` is set.
        """

        normalized_rut = _require_rut(rut)
        accounts = list(
            dict.fromkeys(
                number for number in map(normalize_account_number, account_numbers) if number
            )
        )

        with ObservabilityService.timed_event(
            db, MetricEvent.RUT_ATTACHMENT, tags={"mode": "by_rut", "force": force}
        ):
            with rut_lock(normalized_rut):
                try:
                    counterpart = (
                        db.query(models.Counterpart)
                        .filter(models.Counterpart.identification_number == normalized_rut)
                        .with_for_update()
                        .first()
                    )
                    cleaned_holder = (holder or "").strip()
                    if counterpart is None:
                        counterpart = models.Counterpart(
                            identification_number=normalized_rut,
                            bank_account_holder=cleaned_holder or f"Titular {normalized_rut}",
                            category=models.CounterpartCategory.SUPPLIER,
                        )
                        db.add(counterpart)
                        db.flush()
                    elif cleaned_holder:
                        counterpart.bank_account_holder = cleaned_holder

                    observed = CounterpartService._observed_ruts(db, accounts)
                    conflicts: list[schemas.AccountConflictRead] = []
                    assigned = 0
                    for account_number in accounts:
                        observed_rut = observed.get(account_number)
                        if observed_rut and observed_rut != normalized_rut and not force:
                            conflicts.append(
                                schemas.AccountConflictRead(
                                    account_number=account_number,
                                    reason=CONFLICT_OBSERVED_RUT,
                                    observed_rut=observed_rut,
                                )
                            )
                            continue
                        conflict = CounterpartService._assign_account(
                            db, counterpart, account_number, force=force
                        )
                        if conflict is not None:
                            conflicts.append(conflict)
                            continue
                        assigned += 1
                    db.commit()
                except (ScheduleEngineError, SQLAlchemyError):
                    db.rollback()
                    raise

        db.refresh(counterpart)
        LOGGER.info(
            "Accounts attached by RUT",
            extra={
                "counterpart_id": counterpart.id,
                "assigned_count": assigned,
                "conflict_count": len(conflicts),
            },
        )
        return CounterpartService._attach_response(counterpart, assigned, conflicts)

    @staticmethod
    def attach_rut_to_counterpart(
        db: Session,
        counterpart_id: int,
        rut: str,
        *,
        force: bool = False,
    ) -> schemas.AttachRutResponse:
        """Set the RUT of a counterpart and adopt every account withdrawn under it."""

        normalized_rut = _require_rut(rut)

        with ObservabilityService.timed_event(
            db, MetricEvent.RUT_ATTACHMENT, tags={"mode": "counterpart", "force": force}
        ):
            with counterpart_lock(counterpart_id), rut_lock(normalized_rut):
                try:
                    counterpart = CounterpartService._get(db, counterpart_id)
                    owner = (
                        db.query(models.Counterpart)
                        .filter(models.Counterpart.identification_number == normalized_rut)
                        .first()
                    )
                    if owner is not None and owner.id != counterpart.id:
                        raise RutConflict(
                            f"El RUT {normalized_rut} ya está vinculado a otra contraparte (ID {owner.id})",
                            rut=normalized_rut,
                            counterpart_id=owner.id,
                        )
                    counterpart.identification_number = normalized_rut

                    withdrawn: dict[str, Any] = {}
                    for row in CounterpartService._stream_withdrawal_identities(
                        db, rut=normalized_rut
                    ):
                        if normalize_rut(row.identification_number) != normalized_rut:
                            continue
                        account_number = normalize_account_number(row.bank_account_number)
                        if account_number and account_number not in withdrawn:
                            withdrawn[account_number] = row

                    conflicts: list[schemas.AccountConflictRead] = []
                    assigned = 0
                    for account_number, row in withdrawn.items():
                        conflict = CounterpartService._assign_account(
                            db,
                            counterpart,
                            account_number,
                            bank_name=row.bank_name,
                            account_type=row.bank_account_type,
                            force=force,
                        )
                        if conflict is not None:
                            conflicts.append(conflict)
                        else:
                            assigned += 1
                    db.commit()
                except (ScheduleEngineError, SQLAlchemyError):
                    db.rollback()
                    raise

        db.refresh(counterpart)
        return CounterpartService._attach_response(counterpart, assigned, conflicts)

    @staticmethod
    def suggestions(
        db: Session,
        query: str,
        limit: int = 10,
        *,
        include_assigned: bool = False,
    ) -> list[schemas.AccountSuggestionRead]:
        """Identifiers seen on withdrawals that match ``query``.

        Grouped by normalized account and ranked by total amount, then by
        number of movements.
        """

        term = (query or "").strip()
        if not term:
            return []
        safe_limit = max(limit, 1)
        pattern = f"%{term}%"

        rows = (
            db.query(models.WithdrawTransaction)
            .filter(
                or_(
                    models.WithdrawTransaction.bank_account_holder.ilike(pattern),
                    models.WithdrawTransaction.bank_account_number.ilike(pattern),
                    models.WithdrawTransaction.identification_number.ilike(pattern),
                )
            )
            .order_by(models.WithdrawTransaction.date_created.desc())
            .limit(max(safe_limit * SUGGESTION_SCAN_FACTOR, MIN_SUGGESTION_SCAN))
            .all()
        )
        groups = group_accounts(
            rows, number=lambda row: row.bank_account_number or row.withdraw_id
        )
        if not groups:
            return []

        linked = dict(
            db.query(
                models.CounterpartAccount.account_number,
                models.CounterpartAccount.counterpart_id,
            )
            .filter(models.CounterpartAccount.account_number.in_(list(groups)))
            .all()
        )

        suggestions = []
        for key, group in groups.items():
            assigned_to = linked.get(key)
            if assigned_to is not None and not include_assigned:
                continue
            row = group.first_row
            suggestions.append(
                schemas.AccountSuggestionRead(
                    account_identifier=key,
                    bank_account_number=row.bank_account_number or key,
                    identification_number=normalize_rut(row.identification_number) or None,
                    holder=row.bank_account_holder,
                    bank_name=row.bank_name,
                    account_type=row.bank_account_type,
                    total_amount=group.total_amount,
                    movement_count=group.movement_count,
                    assigned_counterpart_id=assigned_to,
                )
            )
        suggestions.sort(key=lambda item: (-item.total_amount, -item.movement_count))
        return suggestions[:safe_limit]

    @staticmethod
    def list_unassigned_payout_accounts(
        db: Session,
        *,
        page: int = 1,
        page_size: int = 50,
        query: Optional[str] = None,
    ) -> schemas.PayoutAccountListResponse:
        """Payout destinations that still need a counterpart.

        Accounts already linked, or whose RUT is known from withdrawals, are
        hidden unless the linked counterpart's RUT disagrees with the
        withdrawal RUT; such conflicts are listed first.
        """

        term = (query or "").strip()
        release_query = db.query(
            models.ReleaseTransaction.payout_bank_account_number,
            models.ReleaseTransaction.gross_amount,
        ).filter(models.ReleaseTransaction.payout_bank_account_number.isnot(None))
        if term:
            release_query = release_query.filter(
                models.ReleaseTransaction.payout_bank_account_number.ilike(f"%{term}%")
            )
        groups = group_accounts(
            release_query.yield_per(STREAM_BATCH_SIZE),
            number=lambda row: row.payout_bank_account_number,
            amount=lambda row: row.gross_amount,
        )

        withdraw_rut: dict[str, str] = {}
        accounts_with_rut: set[str] = set()
        withdraw_rows = db.query(
            models.WithdrawTransaction.bank_account_number,
            models.WithdrawTransaction.identification_number,
        ).filter(models.WithdrawTransaction.bank_account_number.isnot(None))
        for raw_account, raw_rut in withdraw_rows.yield_per(STREAM_BATCH_SIZE):
            account = normalize_account_number(raw_account)
            if not account:
                continue
            accounts_with_rut.add(account)
            rut = normalize_rut(raw_rut)
            if rut:
                withdraw_rut[account] = rut

        linked = {
            account.account_number: account
            for account in db.query(models.CounterpartAccount)
            .options(selectinload(models.CounterpartAccount.counterpart))
            .all()
        }

        records: list[schemas.PayoutAccountRead] = []
        for key, group in groups.items():
            link = linked.get(key)
            observed = withdraw_rut.get(key)
            linked_rut = link.counterpart.identification_number if link else None
            conflict = bool(link and observed and linked_rut and linked_rut != observed)
            if not conflict and (key in accounts_with_rut or link is not None):
                continue
            records.append(
                schemas.PayoutAccountRead(
                    payout_bank_account_number=key,
                    movement_count=group.movement_count,
                    total_gross_amount=group.total_amount,
                    counterpart_id=link.counterpart_id if link else None,
                    counterpart_name=link.counterpart.bank_account_holder if link else None,
                    counterpart_rut=linked_rut,
                    withdraw_rut=observed,
                    conflict=conflict,
                )
            )

        records.sort(
            key=lambda item: (
                not item.conflict,
                -item.movement_count,
                item.payout_bank_account_number.casefold(),
            )
        )
        safe_page = max(page, 1)
        safe_size = max(page_size, 1)
        start = (safe_page - 1) * safe_size
        return schemas.PayoutAccountListResponse(
            items=records[start : start + safe_size],
            total=len(records),
            page=safe_page,
            page_size=safe_size,
        )

    @staticmethod
    def sync_from_withdrawals(db: Session) -> dict[str, int]:
        """Create counterparts and accounts for every valid RUT seen on withdrawals.

        Accounts owned by a different counterpart are counted as conflicts
        and never reassigned.
        """

        counters = {"counterparts": 0, "accounts": 0, "conflicts": 0, "invalid_ruts": 0}
        by_rut: dict[str, dict[str, Any]] = {}
        holders: dict[str, str] = {}
        for row in CounterpartService._stream_withdrawal_identities(db):
            rut = normalize_rut(row.identification_number)
            if not rut:
                continue
            if not is_valid_rut(rut):
                counters["invalid_ruts"] += 1
                continue
            accounts = by_rut.setdefault(rut, {})
            holder = (row.bank_account_holder or "").strip()
            if holder:
                holders.setdefault(rut, holder)
            key = normalize_account_number(row.bank_account_number)
            if key and key not in accounts:
                accounts[key] = row

        try:
            for rut, accounts in by_rut.items():
                counterpart = (
                    db.query(models.Counterpart)
                    .filter(models.Counterpart.identification_number == rut)
                    .first()
                )
                if counterpart is None:
                    counterpart = models.Counterpart(
                        identification_number=rut,
                        bank_account_holder=holders.get(rut, rut),
                        category=models.CounterpartCategory.SUPPLIER,
                    )
                    db.add(counterpart)
                    db.flush()
                counters["counterparts"] += 1

                for key, row in accounts.items():
                    conflict = CounterpartService._assign_account(
                        db,
                        counterpart,
                        key,
                        bank_name=row.bank_name,
                        account_type=row.bank_account_type,
                    )
                    if conflict is not None:
                        counters["conflicts"] += 1
                    else:
                        counters["accounts"] += 1
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            LOGGER.exception("Counterpart sync failed")
            raise

        LOGGER.info("Counterparts synced from withdrawals", extra=counters)
        return counters
