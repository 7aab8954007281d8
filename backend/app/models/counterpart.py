"""Counterparts (suppliers, lenders, employees...) keyed by RUT."""

from __future__ import annotations

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from ..database import Base
from .service import enum_column_type


class CounterpartCategory(str, enum.Enum):
    SUPPLIER = "SUPPLIER"
    PATIENT = "PATIENT"
    EMPLOYEE = "EMPLOYEE"
    PARTNER = "PARTNER"
    RELATED = "RELATED"
    OTHER = "OTHER"
    CLIENT = "CLIENT"
    LENDER = "LENDER"
    OCCASIONAL = "OCCASIONAL"


class Counterpart(Base):
    """External party identified by its tax id."""

    __tablename__ = "counterparts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identification_number = Column(String(20), nullable=False, unique=True)
    bank_account_holder = Column(String(255), nullable=False)
    category = Column(
        enum_column_type(CounterpartCategory, "counterpart_category_enum"),
        nullable=False,
        default=CounterpartCategory.SUPPLIER,
    )
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    accounts = relationship(
        "CounterpartAccount",
        back_populates="counterpart",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CounterpartAccount.account_number",
    )
    services = relationship("Service", back_populates="counterpart")


class CounterpartAccount(Base):
    """Bank account owned by exactly one counterpart at a time."""

    __tablename__ = "counterpart_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    counterpart_id = Column(
        Integer,
        ForeignKey("counterparts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_number = Column(String(64), nullable=False, unique=True)
    bank_name = Column(String(120), nullable=True)
    account_type = Column(String(60), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    counterpart = relationship("Counterpart", back_populates="accounts")
