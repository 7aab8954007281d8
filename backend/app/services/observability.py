"""Persist structured outcomes of schedule and reconciliation operations."""

from __future__ import annotations

import enum
import logging
import time
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from .. import models

LOGGER = logging.getLogger(__name__)


class MetricOutcome(str, enum.Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    ERROR = "error"


class MetricEvent(str, enum.Enum):
    """Event types written to ``operational_metric_events``."""

    SCHEDULE_GENERATION = "services.schedule_generation"
    PAYMENT_REGISTERED = "services.payment_registered"
    PAYMENT_UNLINKED = "services.payment_unlinked"
    SCHEDULE_SKIPPED = "services.schedule_skipped"
    RUT_ATTACHMENT = "counterparts.rut_attachment"


class ObservabilityService:
    """Best-effort recorder; a metrics failure never aborts the operation."""

    @staticmethod
    def record_event(
        db: Session,
        event_type: MetricEvent | str,
        outcome: MetricOutcome | str,
        *,
        duration_ms: float | None = None,
        tags: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        event = models.OperationalMetricEvent(
            event_type=getattr(event_type, "value", event_type),
            outcome=getattr(outcome, "value", outcome),
            duration_ms=Decimal(f"{duration_ms:.3f}") if duration_ms is not None else None,
            tags=tags or {},
            details=metadata or None,
        )
        ObservabilityService._persist(db, event)

    @staticmethod
    def timed_event(db: Session, event_type: MetricEvent | str, *, tags: dict[str, Any] | None = None):
        """Context manager measuring an operation and recording its outcome.

        Domain errors (anything carrying a ``code``) are stored as rejections,
        everything else as errors.
        """

        class _Timer:
            def __enter__(self):
                self._start = time.perf_counter()
                return self

            def __exit__(self, exc_type, exc, tb):
                duration = (time.perf_counter() - self._start) * 1000
                if exc is None:
                    outcome = MetricOutcome.SUCCESS
                    metadata = None
                elif getattr(exc, "code", None):
                    outcome = MetricOutcome.REJECTED
                    metadata = {"rejection_code": exc.code}
                else:
                    outcome = MetricOutcome.ERROR
                    metadata = {"exception": str(exc)}
                ObservabilityService.record_event(
                    db,
                    event_type,
                    outcome,
                    duration_ms=duration,
                    tags=tags,
                    metadata=metadata,
                )
                return False

        return _Timer()

    @staticmethod
    def _persist(db: Session, event: models.OperationalMetricEvent) -> None:
        try:
            with Session(bind=db.get_bind()) as metrics_session:
                metrics_session.add(event)
                metrics_session.commit()
        except Exception:  # pragma: no cover - metrics failures must not break flows
            LOGGER.exception(
                "Failed to persist operational metric event",
                extra={"event_type": event.event_type},
            )
