"""Bring the database schema to the latest Alembic revision on startup."""

from __future__ import annotations

import errno
import logging
import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, Sequence

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine.reflection import Inspector

from .database import SQLALCHEMY_DATABASE_URL

LOGGER = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).resolve().parent.parent
LOCK_FILENAME = ".alembic-migration.lock"
LOCK_RETRY_DELAY = 0.25
LOCK_TIMEOUT_ENV = "ALEMBIC_MIGRATION_LOCK_TIMEOUT"
DEFAULT_LOCK_TIMEOUT = 30.0

if os.name == "posix":  # pragma: no cover - platform specific
    import fcntl
else:  # pragma: no cover - platform specific
    import msvcrt

RevisionSentinel = tuple[str, Callable[[Inspector], bool]]

# Newest first: the first matching check identifies the schema of databases
# created with ``Base.metadata.create_all`` before Alembic tracked them.
REVISION_SENTINELS: Sequence[RevisionSentinel] = (
    (
        "20260310_0003",
        lambda inspector: inspector.has_table("settlement_transactions")
        and inspector.has_table("operational_metric_events"),
    ),
    (
        "20260302_0002",
        lambda inspector: inspector.has_table("operational_metric_events")
        and inspector.has_table("services"),
    ),
    (
        "20260216_0001",
        lambda inspector: inspector.has_table("services")
        and inspector.has_table("service_schedules"),
    ),
)


def _read_lock_timeout() -> float:
    raw = os.getenv(LOCK_TIMEOUT_ENV)
    if not raw:
        return DEFAULT_LOCK_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        value = 0.0
    if value <= 0:
        LOGGER.warning(
            "Invalid %s=%s; using %.1f seconds", LOCK_TIMEOUT_ENV, raw, DEFAULT_LOCK_TIMEOUT
        )
        return DEFAULT_LOCK_TIMEOUT
    return value


def _try_lock(handle) -> bool:
    try:
        if os.name == "posix":  # pragma: no cover - platform specific
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        else:  # pragma: no cover - platform specific
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    except BlockingIOError:
        return False
    except OSError as error:
        # Windows reports a held lock as a sharing (32) or lock (33) violation.
        if error.errno in {errno.EACCES, errno.EAGAIN, errno.EBUSY} or getattr(
            error, "winerror", None
        ) in {32, 33}:
            return False
        raise
    return True


def _unlock(handle) -> None:
    try:
        if os.name == "posix":  # pragma: no cover - platform specific
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        else:  # pragma: no cover - platform specific
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    except OSError:  # pragma: no cover - best effort cleanup
        LOGGER.debug("Could not release migration lock", exc_info=True)


@contextmanager
def migration_lock(path: Path, *, timeout: float) -> Iterator[None]:
    """Hold an exclusive file lock so concurrent workers migrate one at a time."""

    path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout
    with path.open("a+") as handle:
        while not _try_lock(handle):
            if time.monotonic() >= deadline:
                raise TimeoutError("Timed out waiting for Alembic migration lock")
            time.sleep(LOCK_RETRY_DELAY)
        try:
            yield
        finally:
            _unlock(handle)


def detect_revision(inspector: Inspector, sentinels: Iterable[RevisionSentinel]) -> str | None:
    for revision, check in sentinels:
        if check(inspector):
            return revision
    return None


def build_alembic_config(database_url: str | None = None) -> Config:
    config = Config(str(BACKEND_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    config.set_main_option(
        "sqlalchemy.url", database_url or os.getenv("DATABASE_URL") or SQLALCHEMY_DATABASE_URL
    )
    return config


def run_database_migrations() -> None:
    """Upgrade to head, stamping untracked databases whose schema is recognised."""

    if str(BACKEND_DIR) not in sys.path:
        sys.path.insert(0, str(BACKEND_DIR))

    config = build_alembic_config()
    url = config.get_main_option("sqlalchemy.url")
    LOGGER.info("Running database migrations at %s", url)

    with migration_lock(BACKEND_DIR / LOCK_FILENAME, timeout=_read_lock_timeout()):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        engine = create_engine(url, connect_args=connect_args)
        try:
            inspector = inspect(engine)
            if not inspector.has_table("alembic_version"):
                detected = detect_revision(inspector, REVISION_SENTINELS)
                if detected:
                    LOGGER.info("Stamping untracked schema at revision %s", detected)
                    command.stamp(config, detected)
                    head = ScriptDirectory.from_config(config).get_current_head()
                    if detected == head:
                        return
        finally:
            engine.dispose()

        command.upgrade(config, "head")
