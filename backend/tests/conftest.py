from __future__ import annotations

import itertools
import os
import sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the project root (which exposes the ``backend`` package) is on ``sys.path``
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "0"

from backend.app import models, schemas
from backend.app.database import Base, get_db
from backend.app.main import app
from backend.app.services import ServiceScheduleService
from backend.app.services.index_rates import StaticIndexRateProvider

SQLALCHEMY_DATABASE_URL = "sqlite://"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine, "connect")
def _configure_sqlite(dbapi_connection, _):
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs work with pysqlite.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@event.listens_for(engine, "begin")
def _begin_transaction(connection):
    connection.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    join_transaction_mode="create_savepoint",
)

TODAY = date(2024, 6, 1)


@pytest.fixture(scope="session", autouse=True)
def setup_database() -> Generator[None, None, None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        try:
            yield db_session
        finally:
            db_session.expire_all()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def uf_rates() -> StaticIndexRateProvider:
    return StaticIndexRateProvider("37000")


@pytest.fixture
def create_service(db_session: Session) -> Callable[..., schemas.ServiceDetailResponse]:
    """Factory registering a monthly service starting 2024-01-10 with due day 15."""

    def _create(**overrides) -> schemas.ServiceDetailResponse:
        index_rates = overrides.pop("index_rates", None)
        as_of = overrides.pop("as_of", TODAY)
        data = {
            "name": "Arriendo oficina",
            "start_date": date(2024, 1, 10),
            "due_day": 15,
            "default_amount": Decimal("100000"),
            "months_to_generate": 3,
        }
        data.update(overrides)
        payload = schemas.ServiceCreate(**data)
        return ServiceScheduleService.create_service(
            db_session, payload, index_rates=index_rates, as_of=as_of
        )

    return _create


@pytest.fixture
def seed_withdrawals(db_session: Session) -> Callable[..., list[models.WithdrawTransaction]]:
    sequence = itertools.count(1)

    def _seed(*rows: dict) -> list[models.WithdrawTransaction]:
        created = []
        for row in rows:
            withdrawal = models.WithdrawTransaction(
                withdraw_id=row.get("withdraw_id", f"W-{next(sequence)}"),
                date_created=row.get("date_created", datetime(2024, 1, 1)),
                amount=Decimal(str(row.get("amount", "1000"))),
                identification_number=row.get("identification_number"),
                bank_account_holder=row.get("bank_account_holder"),
                bank_account_number=row.get("bank_account_number"),
                bank_account_type=row.get("bank_account_type"),
                bank_name=row.get("bank_name"),
            )
            db_session.add(withdrawal)
            created.append(withdrawal)
        db_session.commit()
        return created

    return _seed
