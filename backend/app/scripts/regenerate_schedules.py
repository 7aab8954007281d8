"""CLI utility to re-synchronize the pending schedule of every active service."""

from __future__ import annotations

import argparse
import logging
from typing import Optional

from .. import models
from ..database import session_scope
from ..services.errors import ScheduleEngineError
from ..services.service_schedules import ServiceScheduleService

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Regenera los periodos pendientes de los servicios no archivados. "
            "Los periodos pagados u omitidos nunca se modifican."
        )
    )
    parser.add_argument(
        "--service",
        dest="services",
        action="append",
        default=[],
        help="publicId del servicio a regenerar (repetible). Por defecto, todos.",
    )
    parser.add_argument(
        "--months",
        type=int,
        default=None,
        help="Cantidad de periodos a generar; por defecto la configurada en cada servicio.",
    )
    parser.add_argument("--verbose", action="store_true", help="Muestra el detalle por servicio.")
    return parser.parse_args(argv)


def regenerate_services(db, public_ids: list[str], months: Optional[int]) -> tuple[int, int]:
    """Return ``(regenerated, failed)``; one failing service does not stop the run."""

    query = db.query(models.Service.id, models.Service.public_id).filter(
        models.Service.archived_at.is_(None)
    )
    if public_ids:
        query = query.filter(models.Service.public_id.in_(public_ids))

    regenerated = failed = 0
    for service_id, public_id in query.order_by(models.Service.id).all():
        try:
            detail = ServiceScheduleService.generate(db, service_id, months=months)
        except ScheduleEngineError as exc:
            failed += 1
            LOGGER.warning("%s: %s", public_id, exc.message, extra={"code": exc.code})
            continue
        regenerated += 1
        LOGGER.debug(
            "%s: %s periodos pendientes", public_id, detail.service.pending_count
        )
    return regenerated, failed


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    with session_scope() as db:
        regenerated, failed = regenerate_services(db, args.services, args.months)

    LOGGER.info("Servicios regenerados: %s, con errores: %s", regenerated, failed)
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
