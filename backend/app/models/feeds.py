"""Read-only mirrors of the bank and payout feeds.

These rows are owned by the ingestion side of the intranet. The engine only
reads them to suggest payment matches and to reconcile payout accounts.
"""

from __future__ import annotations

import enum

from sqlalchemy import Column, Date, DateTime, Index, Integer, Numeric, String, Text, func

from ..database import Base
from .service import enum_column_type


class TransactionDirection(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


class Transaction(Base):
    """Bank movement available for matching against schedule entries."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    occurred_on = Column(Date, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    description = Column(Text, nullable=True)
    direction = Column(
        enum_column_type(TransactionDirection, "transaction_direction_enum"),
        nullable=False,
        default=TransactionDirection.OUT,
    )
    bank_account_number = Column(String(64), nullable=True)
    source_id = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class WithdrawTransaction(Base):
    """Payout withdrawal carrying the beneficiary RUT as observed by the bank."""

    __tablename__ = "withdraw_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    withdraw_id = Column(String(120), nullable=False, unique=True)
    date_created = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    amount = Column(Numeric(15, 2), nullable=True)
    identification_number = Column(String(20), nullable=True)
    bank_account_holder = Column(String(255), nullable=True)
    bank_account_number = Column(String(64), nullable=True)
    bank_account_type = Column(String(60), nullable=True)
    bank_name = Column(String(120), nullable=True)


class ReleaseTransaction(Base):
    """Released payout whose destination account may not be linked yet."""

    __tablename__ = "release_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False)
    gross_amount = Column(Numeric(15, 2), nullable=True)
    payout_bank_account_number = Column(String(64), nullable=True)
    identification_number = Column(String(20), nullable=True)


class SettlementTransaction(Base):
    """Settlement paid out to a RUT by the payment processor."""

    __tablename__ = "settlement_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    settlement_id = Column(String(120), nullable=False, unique=True)
    date = Column(Date, nullable=False)
    amount = Column(Numeric(15, 2), nullable=True)
    identification_number = Column(String(20), nullable=True)


Index("transactions_occurred_on_idx", Transaction.occurred_on)
Index("withdraw_transactions_rut_idx", WithdrawTransaction.identification_number)
Index(
    "release_transactions_payout_account_idx",
    ReleaseTransaction.payout_bank_account_number,
)
Index("release_transactions_rut_idx", ReleaseTransaction.identification_number)
Index("settlement_transactions_rut_idx", SettlementTransaction.identification_number)
