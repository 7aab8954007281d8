"""Importa movimientos bancarios, retiros, liberaciones o liquidaciones desde CSV o Excel."""

from __future__ import annotations

import argparse
import logging
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Optional

import pandas as pd
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from .. import models
from ..database import Base, build_engine_kwargs, enable_sqlite_foreign_keys, session_scope

LOGGER = logging.getLogger(__name__)

KIND_TRANSACTIONS = "transactions"
KIND_WITHDRAWALS = "withdrawals"
KIND_RELEASES = "releases"
KIND_SETTLEMENTS = "settlements"

REQUIRED_COLUMNS = {
    KIND_TRANSACTIONS: {"occurred_on", "amount"},
    KIND_WITHDRAWALS: {"withdraw_id"},
    KIND_RELEASES: {"date"},
    KIND_SETTLEMENTS: {"settlement_id"},
}

COLUMN_ALIASES = {
    "fecha": "occurred_on",
    "monto": "amount",
    "descripcion": "description",
    "cuenta": "bank_account_number",
    "rut": "identification_number",
    "titular": "bank_account_holder",
    "banco": "bank_name",
    "tipo_cuenta": "bank_account_type",
}


@dataclass
class ImportSummary:
    created: int = 0
    skipped_existing: int = 0
    skipped_invalid: int = 0


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Carga las tablas espejo usadas para conciliar pagos y cuentas."
    )
    parser.add_argument("source", type=Path, help="Archivo CSV o Excel a importar")
    parser.add_argument(
        "--kind",
        choices=[KIND_TRANSACTIONS, KIND_WITHDRAWALS, KIND_RELEASES, KIND_SETTLEMENTS],
        required=True,
        help="Tipo de registros contenidos en el archivo",
    )
    parser.add_argument("--sheet", default=None, help="Hoja a leer cuando el archivo es Excel")
    parser.add_argument(
        "--database-url",
        dest="database_url",
        help="URL de la base de datos (si se omite se utiliza DATABASE_URL o SQLite local)",
    )
    return parser.parse_args(argv)


def _canonical_column(name: object) -> str:
    text = unicodedata.normalize("NFKD", str(name)).encode("ascii", "ignore").decode()
    key = "_".join(text.strip().lower().split())
    return COLUMN_ALIASES.get(key, key)


def load_frame(source: Path, sheet: Optional[str] = None) -> pd.DataFrame:
    if source.suffix.lower() in {".xlsx", ".xls"}:
        frame = pd.read_excel(source, sheet_name=sheet or 0, dtype=str)
    else:
        frame = pd.read_csv(source, dtype=str)
    frame = frame.rename(columns=_canonical_column)
    return frame.where(pd.notna(frame), None)


def _text(value) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _decimal(value) -> Optional[Decimal]:
    raw = _text(value)
    if raw is None:
        return None
    try:
        return Decimal(raw.replace(" ", "").replace(",", "."))
    except InvalidOperation as exc:
        raise ValueError(f"Monto inválido: {raw}") from exc


def _date(value) -> Optional[date]:
    raw = _text(value)
    if raw is None:
        return None
    parsed = pd.to_datetime(raw, dayfirst="/" in raw, errors="coerce")
    if pd.isna(parsed):
        raise ValueError(f"Fecha inválida: {raw}")
    return parsed.date()


def _datetime(value) -> Optional[datetime]:
    parsed = _date(value)
    return datetime.combine(parsed, datetime.min.time()) if parsed else None


def _transaction(row: dict, db: Session) -> Optional[models.Transaction]:
    source_id = _text(row.get("source_id"))
    if source_id and db.query(models.Transaction.id).filter_by(source_id=source_id).first():
        return None
    amount = _decimal(row.get("amount"))
    occurred_on = _date(row.get("occurred_on"))
    if amount is None or occurred_on is None:
        raise ValueError("Fecha y monto son obligatorios")
    raw_direction = (_text(row.get("direction")) or "").upper()
    if raw_direction in {"IN", "OUT"}:
        direction = models.TransactionDirection(raw_direction)
    else:
        direction = models.TransactionDirection.OUT if amount < 0 else models.TransactionDirection.IN
    return models.Transaction(
        occurred_on=occurred_on,
        amount=abs(amount),
        description=_text(row.get("description")),
        direction=direction,
        bank_account_number=_text(row.get("bank_account_number")),
        source_id=source_id,
    )


def _withdrawal(row: dict, db: Session) -> Optional[models.WithdrawTransaction]:
    withdraw_id = _text(row.get("withdraw_id"))
    if not withdraw_id:
        raise ValueError("withdraw_id es obligatorio")
    if db.query(models.WithdrawTransaction.id).filter_by(withdraw_id=withdraw_id).first():
        return None
    return models.WithdrawTransaction(
        withdraw_id=withdraw_id,
        date_created=_datetime(row.get("date_created") or row.get("occurred_on")) or datetime.now(),
        amount=_decimal(row.get("amount")),
        identification_number=_text(row.get("identification_number")),
        bank_account_holder=_text(row.get("bank_account_holder")),
        bank_account_number=_text(row.get("bank_account_number")),
        bank_account_type=_text(row.get("bank_account_type")),
        bank_name=_text(row.get("bank_name")),
    )


def _release(row: dict, _db: Session) -> Optional[models.ReleaseTransaction]:
    release_date = _date(row.get("date"))
    if release_date is None:
        raise ValueError("La fecha es obligatoria")
    return models.ReleaseTransaction(
        date=release_date,
        gross_amount=_decimal(row.get("gross_amount") or row.get("amount")),
        payout_bank_account_number=_text(
            row.get("payout_bank_account_number") or row.get("bank_account_number")
        ),
        identification_number=_text(row.get("identification_number")),
    )


def _settlement(row: dict, db: Session) -> Optional[models.SettlementTransaction]:
    settlement_id = _text(row.get("settlement_id"))
    if not settlement_id:
        raise ValueError("settlement_id es obligatorio")
    if db.query(models.SettlementTransaction.id).filter_by(settlement_id=settlement_id).first():
        return None
    settled_on = _date(row.get("date") or row.get("occurred_on"))
    if settled_on is None:
        raise ValueError("La fecha es obligatoria")
    return models.SettlementTransaction(
        settlement_id=settlement_id,
        date=settled_on,
        amount=_decimal(row.get("amount")),
        identification_number=_text(row.get("identification_number")),
    )


BUILDERS: dict[str, Callable[[dict, Session], Optional[Base]]] = {
    KIND_TRANSACTIONS: _transaction,
    KIND_WITHDRAWALS: _withdrawal,
    KIND_RELEASES: _release,
    KIND_SETTLEMENTS: _settlement,
}


def import_frame(db: Session, frame: pd.DataFrame, kind: str) -> ImportSummary:
    missing = REQUIRED_COLUMNS[kind] - set(frame.columns)
    if missing:
        raise ValueError(f"Faltan columnas requeridas: {', '.join(sorted(missing))}")

    builder = BUILDERS[kind]
    summary = ImportSummary()
    for index, row in enumerate(frame.to_dict(orient="records"), start=2):
        try:
            record = builder(row, db)
        except ValueError as exc:
            summary.skipped_invalid += 1
            LOGGER.warning("Fila %s omitida: %s", index, exc)
            continue
        if record is None:
            summary.skipped_existing += 1
            continue
        db.add(record)
        db.flush()
        summary.created += 1
    return summary


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    frame = load_frame(args.source, args.sheet)
    if args.database_url:
        engine = create_engine(args.database_url, **build_engine_kwargs(args.database_url))
        enable_sqlite_foreign_keys(engine)
        with sessionmaker(bind=engine)() as db:
            summary = import_frame(db, frame, args.kind)
            db.commit()
        engine.dispose()
    else:
        with session_scope() as db:
            summary = import_frame(db, frame, args.kind)

    LOGGER.info(
        "Importación finalizada: %s creados, %s existentes, %s inválidos",
        summary.created,
        summary.skipped_existing,
        summary.skipped_invalid,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
