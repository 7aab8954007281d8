"""FastAPI application for the obligations and reconciliation backend."""

import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database import read_bool_env
from .migrations import run_database_migrations
from .routers import counterparts_router, services_router

LOGGER = logging.getLogger(__name__)

RUN_MIGRATIONS_ENV = "RUN_MIGRATIONS_ON_STARTUP"
ALLOWED_ORIGINS_ENV = "BACKEND_ALLOWED_ORIGINS"

LOCAL_DEVELOPMENT_ORIGIN = "http://localhost:5173"
LOCALHOST_ORIGIN_REGEX = r"https?://(localhost|127\.0\.0\.1|0\.0\.0\.0)(:\d+)?$"

DEFAULT_ALLOWED_ORIGINS = {
    LOCAL_DEVELOPMENT_ORIGIN,
    "http://127.0.0.1:5173",
    "http://localhost:4173",
    "http://127.0.0.1:4173",
}


def _normalize_origin(origin: str) -> str | None:
    stripped = origin.strip().rstrip("/")
    return stripped or None


def _split_raw_origins(raw_value: str) -> list[str]:
    """Accept comma and/or whitespace separated origin lists."""

    return [origin for origin in re.split(r"[\s,]+", raw_value) if origin]


def _read_allowed_origins(raw_origins: Iterable[str]) -> list[str]:
    normalized = {_normalize_origin(origin) for origin in raw_origins}
    return sorted(origin for origin in normalized if origin)


def _resolve_allowed_origins() -> list[str]:
    raw_value = os.getenv(ALLOWED_ORIGINS_ENV)
    if raw_value:
        configured = _read_allowed_origins(_split_raw_origins(raw_value))
        if configured:
            return configured
    return _read_allowed_origins(DEFAULT_ALLOWED_ORIGINS)


def ensure_database_is_ready() -> None:
    """Apply pending database migrations unless disabled for this process."""

    if not read_bool_env(RUN_MIGRATIONS_ENV, True):
        LOGGER.info("Skipping migrations on startup (%s disabled)", RUN_MIGRATIONS_ENV)
        return
    LOGGER.info("Ensuring database schema is up to date before serving requests")
    run_database_migrations()


@asynccontextmanager
async def lifespan(_: FastAPI):
    ensure_database_is_ready()
    yield


app = FastAPI(title="Obligations Backoffice API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_allowed_origins(),
    allow_origin_regex=LOCALHOST_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(services_router, prefix="/services", tags=["services"])
app.include_router(counterparts_router, prefix="/counterparts", tags=["counterparts"])


@app.get("/", tags=["health"])
def read_root() -> dict[str, str]:
    """Return a simple health check response."""
    return {"status": "ok"}
