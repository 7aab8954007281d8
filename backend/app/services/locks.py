"""Per-entity mutual exclusion for schedule mutations."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Hashable, Iterator

from ..database import read_int_env
from .errors import EntityBusy

LOGGER = logging.getLogger(__name__)

LOCK_TIMEOUT_ENV = "ENTITY_LOCK_TIMEOUT"
DEFAULT_LOCK_TIMEOUT = 10


@dataclass
class _LockSlot:
    lock: Lock
    holders: int = 0


class KeyedLock:
    """Thread-safe registry of mutexes keyed by entity.

    Slots are reference counted so the registry only holds locks that are
    currently in use.
    """

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._slots: Dict[Hashable, _LockSlot] = {}

    def _checkout(self, key: Hashable) -> _LockSlot:
        with self._registry_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = _LockSlot(lock=Lock())
                self._slots[key] = slot
            slot.holders += 1
            return slot

    def _release(self, key: Hashable, slot: _LockSlot) -> None:
        with self._registry_lock:
            slot.holders -= 1
            if slot.holders == 0:
                self._slots.pop(key, None)

    @contextmanager
    def hold(self, key: Hashable, *, timeout: float | None = None) -> Iterator[None]:
        wait = float(read_int_env(LOCK_TIMEOUT_ENV, DEFAULT_LOCK_TIMEOUT)) if timeout is None else timeout
        slot = self._checkout(key)
        acquired = slot.lock.acquire(timeout=wait)
        if not acquired:
            self._release(key, slot)
            LOGGER.warning("Timed out waiting for entity lock", extra={"lock_key": str(key)})
            raise EntityBusy(
                "La operación está en curso en otra solicitud; inténtalo nuevamente.",
                entity=str(key),
            )
        try:
            yield
        finally:
            slot.lock.release()
            self._release(key, slot)

    def active_keys(self) -> list[Hashable]:
        with self._registry_lock:
            return list(self._slots)


ENTITY_LOCKS = KeyedLock()


def service_lock(service_id: int):
    """Serialize generate/pay/unlink/skip calls touching the same service."""

    return ENTITY_LOCKS.hold(("service", int(service_id)))


def counterpart_lock(counterpart_id: int):
    return ENTITY_LOCKS.hold(("counterpart", int(counterpart_id)))


def rut_lock(rut: str):
    """Serialize attachments that may create the counterpart for ``rut``."""

    return ENTITY_LOCKS.hold(("rut", rut))
