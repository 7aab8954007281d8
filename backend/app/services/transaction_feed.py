"""Access to the external bank transaction feed."""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from .. import models
from .errors import ExternalDependencyError

LOGGER = logging.getLogger(__name__)

FEED_PAGE_SIZE = 200
FEED_MAX_PAGES = 25


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    occurred_on: date
    amount: Decimal
    description: Optional[str] = None
    bank_account_number: Optional[str] = None
    direction: models.TransactionDirection = models.TransactionDirection.OUT


def iter_pages(
    query: Query,
    *,
    page_size: int = FEED_PAGE_SIZE,
    max_pages: int = FEED_MAX_PAGES,
) -> Iterator[list]:
    """Yield successive pages of ``query`` without loading unbounded result sets.

    The query must have a deterministic ``order_by``. Iteration stops at the
    first short page or after ``max_pages``.
    """

    for page in range(max_pages):
        rows = query.offset(page * page_size).limit(page_size).all()
        if not rows:
            return
        yield rows
        if len(rows) < page_size:
            return
    LOGGER.info(
        "Feed scan stopped at page limit",
        extra={"page_size": page_size, "max_pages": max_pages},
    )


class TransactionFeed(abc.ABC):
    """Source of candidate transactions for payment matching."""

    @abc.abstractmethod
    def fetch_window(
        self,
        start: date,
        end: date,
        *,
        direction: models.TransactionDirection | None = models.TransactionDirection.OUT,
    ) -> list[TransactionRecord]:
        """Return transactions dated within ``[start, end]``."""


class SqlTransactionFeed(TransactionFeed):
    """Feed backed by the ``transactions`` mirror table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def fetch_window(
        self,
        start: date,
        end: date,
        *,
        direction: models.TransactionDirection | None = models.TransactionDirection.OUT,
    ) -> list[TransactionRecord]:
        query = self.db.query(models.Transaction).filter(
            models.Transaction.occurred_on >= start,
            models.Transaction.occurred_on <= end,
        )
        if direction is not None:
            query = query.filter(models.Transaction.direction == direction)
        query = query.order_by(models.Transaction.occurred_on.desc(), models.Transaction.id.desc())

        records: list[TransactionRecord] = []
        try:
            for rows in iter_pages(query):
                records.extend(
                    TransactionRecord(
                        id=row.id,
                        occurred_on=row.occurred_on,
                        amount=Decimal(row.amount),
                        description=row.description,
                        bank_account_number=row.bank_account_number,
                        direction=models.TransactionDirection(row.direction),
                    )
                    for row in rows
                )
        except SQLAlchemyError as exc:
            raise ExternalDependencyError(
                "No se pudo consultar el feed de transacciones."
            ) from exc
        return records

