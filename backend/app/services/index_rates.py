"""Index rate providers used to convert UF-denominated amounts to CLP."""

from __future__ import annotations

import abc
import logging
import os
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Optional

import httpx

from .errors import ExternalDependencyError

LOGGER = logging.getLogger(__name__)

UF_RATE_PROVIDER_ENV = "UF_RATE_PROVIDER"
UF_STATIC_RATE_ENV = "UF_STATIC_RATE"
UF_RATE_API_URL_ENV = "UF_RATE_API_URL"
UF_ALLOW_CACHED_RATE_ENV = "UF_ALLOW_CACHED_RATE"
UF_RATE_TIMEOUT_ENV = "UF_RATE_TIMEOUT"

DEFAULT_UF_API_URL = "https://mindicador.cl/api/uf"


@dataclass(frozen=True)
class IndexRate:
    """Value of one index unit in CLP on ``as_of``."""

    value: Decimal
    as_of: date
    source: str
    cached: bool = False


class IndexRateProvider(abc.ABC):
    """Interface implemented by UF rate sources."""

    name: str

    @abc.abstractmethod
    def get_rate(self, on: date) -> IndexRate:
        """Return the UF value for ``on`` or raise ``ExternalDependencyError``."""


class StaticIndexRateProvider(IndexRateProvider):
    """Fixed rate, for tests and offline environments."""

    name = "static"

    def __init__(self, value: Decimal | str | float) -> None:
        self.value = Decimal(str(value))
        if self.value <= 0:
            raise ValueError("UF rate must be positive")

    def get_rate(self, on: date) -> IndexRate:
        return IndexRate(value=self.value, as_of=on, source=self.name)


class MindicadorIndexRateProvider(IndexRateProvider):
    """Read the daily UF value from the mindicador.cl REST API."""

    name = "mindicador"

    def __init__(self, *, base_url: str = DEFAULT_UF_API_URL, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def get_rate(self, on: date) -> IndexRate:
        url = f"{self.base_url}/{on.strftime('%d-%m-%Y')}"
        try:
            response = httpx.get(url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalDependencyError(
                "No se pudo obtener el valor de la UF.", source=self.name
            ) from exc

        series = payload.get("serie") or []
        if not series:
            raise ExternalDependencyError(
                f"La fuente de UF no informó valor para {on.isoformat()}", source=self.name
            )
        try:
            value = Decimal(str(series[0]["valor"]))
        except (KeyError, InvalidOperation, TypeError) as exc:
            raise ExternalDependencyError(
                "Respuesta de UF con formato inesperado", source=self.name
            ) from exc
        return IndexRate(value=value, as_of=on, source=self.name)


class CachedIndexRateProvider(IndexRateProvider):
    """Remember the last rate obtained and optionally fall back to it.

    Whether a stale rate is acceptable is a policy decision
    (``allow_cached``); when it is not, failures propagate and generation
    fails closed.
    """

    def __init__(self, delegate: IndexRateProvider, *, allow_cached: bool = False) -> None:
        self.delegate = delegate
        self.allow_cached = allow_cached
        self.name = f"cached:{delegate.name}"
        self._lock = Lock()
        self._last: Optional[IndexRate] = None

    def get_rate(self, on: date) -> IndexRate:
        try:
            rate = self.delegate.get_rate(on)
        except ExternalDependencyError:
            with self._lock:
                last = self._last
            if not self.allow_cached or last is None:
                raise
            LOGGER.warning(
                "UF source unavailable; using last known rate",
                extra={"as_of": last.as_of.isoformat(), "source": last.source},
            )
            return IndexRate(value=last.value, as_of=last.as_of, source=last.source, cached=True)

        with self._lock:
            self._last = rate
        return rate


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Invalid %s=%s; using %.1f", name, raw, default)
        return default


def build_index_rate_provider_from_env() -> IndexRateProvider:
    """Build the configured UF provider wrapped with the last-known-rate cache."""

    provider_name = (os.getenv(UF_RATE_PROVIDER_ENV) or "mindicador").strip().lower()
    allow_cached = (os.getenv(UF_ALLOW_CACHED_RATE_ENV) or "").strip().lower() in {
        "1",
        "true",
        "yes",
        "on",
    }

    if provider_name == "static":
        raw_value = os.getenv(UF_STATIC_RATE_ENV)
        if not raw_value:
            raise ExternalDependencyError(
                "UF_STATIC_RATE debe configurarse cuando UF_RATE_PROVIDER=static"
            )
        delegate: IndexRateProvider = StaticIndexRateProvider(raw_value)
    else:
        delegate = MindicadorIndexRateProvider(
            base_url=os.getenv(UF_RATE_API_URL_ENV) or DEFAULT_UF_API_URL,
            timeout=_read_float_env(UF_RATE_TIMEOUT_ENV, 10.0),
        )
    return CachedIndexRateProvider(delegate, allow_cached=allow_cached)


_default_provider: Optional[IndexRateProvider] = None
_default_provider_lock = Lock()


def get_index_rate_provider() -> IndexRateProvider:
    """Process-wide provider so the last-known rate survives between requests."""

    global _default_provider
    with _default_provider_lock:
        if _default_provider is None:
            _default_provider = build_index_rate_provider_from_env()
        return _default_provider


def reset_index_rate_provider() -> None:
    global _default_provider
    with _default_provider_lock:
        _default_provider = None
