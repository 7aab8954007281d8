"""Router for recurring obligations and their payment schedules."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..services import (
    PaymentMatchingService,
    ScheduleEngineError,
    ServiceScheduleService,
)
from .errors import http_error

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _persistence_failure(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "persistence_error", "message": message},
    )


@router.put("/schedules/{schedule_id}", response_model=schemas.ScheduleResponse)
def update_schedule(
    schedule_id: int,
    payload: schemas.ScheduleUpdate,
    db: Session = Depends(get_db),
) -> schemas.ScheduleResponse:
    try:
        schedule = ServiceScheduleService.update_schedule(db, schedule_id, payload)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc
    return schemas.ScheduleResponse(schedule=schedule)


@router.post("/schedules/{schedule_id}/pay", response_model=schemas.ScheduleResponse)
def register_payment(
    schedule_id: int,
    payload: schemas.SchedulePaymentCreate,
    db: Session = Depends(get_db),
) -> schemas.ScheduleResponse:
    try:
        schedule = PaymentMatchingService.register_payment(db, schedule_id, payload)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        LOGGER.exception("Failed to register payment", extra={"schedule_id": schedule_id})
        raise _persistence_failure("No se pudo registrar el pago.") from exc
    return schemas.ScheduleResponse(schedule=schedule)


@router.post("/schedules/{schedule_id}/unlink", response_model=schemas.ScheduleResponse)
def unlink_payment(schedule_id: int, db: Session = Depends(get_db)) -> schemas.ScheduleResponse:
    try:
        schedule = PaymentMatchingService.unlink_payment(db, schedule_id)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc
    return schemas.ScheduleResponse(schedule=schedule)


@router.post("/schedules/{schedule_id}/skip", response_model=schemas.ScheduleResponse)
def skip_schedule(
    schedule_id: int,
    payload: schemas.ScheduleSkipRequest,
    db: Session = Depends(get_db),
) -> schemas.ScheduleResponse:
    try:
        schedule = PaymentMatchingService.skip_schedule(db, schedule_id, payload.reason)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc
    return schemas.ScheduleResponse(schedule=schedule)


@router.get(
    "/schedules/{schedule_id}/suggestions",
    response_model=schemas.MatchSuggestionListResponse,
)
def list_match_suggestions(
    schedule_id: int, db: Session = Depends(get_db)
) -> schemas.MatchSuggestionListResponse:
    try:
        return PaymentMatchingService.suggest_for_schedule(db, schedule_id)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.get("/", response_model=schemas.ServiceListResponse)
def list_services(
    db: Session = Depends(get_db),
    status_filter: Optional[models.ServiceStatus] = Query(
        None, alias="status", description="Filter by derived status"
    ),
    search: Optional[str] = Query(None, max_length=255, description="Match on the service name"),
    skip: int = Query(0, ge=0, description="Records to skip"),
    limit: int = Query(50, ge=1, le=200, description="Records to return"),
) -> schemas.ServiceListResponse:
    try:
        return ServiceScheduleService.list_services(
            db, skip=skip, limit=limit, status=status_filter, search=search
        )
    except SQLAlchemyError as exc:
        LOGGER.exception("Failed to list services")
        raise _persistence_failure("No se pudieron cargar los servicios.") from exc


@router.post(
    "/",
    response_model=schemas.ServiceDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_service(
    payload: schemas.ServiceCreate, db: Session = Depends(get_db)
) -> schemas.ServiceDetailResponse:
    try:
        return ServiceScheduleService.create_service(db, payload)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        LOGGER.exception("Failed to create service")
        raise _persistence_failure("No se pudo crear el servicio.") from exc


@router.get("/{public_id}", response_model=schemas.ServiceDetailResponse)
def get_service(public_id: str, db: Session = Depends(get_db)) -> schemas.ServiceDetailResponse:
    try:
        return ServiceScheduleService.get_service_detail(db, public_id)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.put("/{public_id}", response_model=schemas.ServiceDetailResponse)
def update_service(
    public_id: str,
    payload: schemas.ServiceUpdate,
    db: Session = Depends(get_db),
) -> schemas.ServiceDetailResponse:
    try:
        return ServiceScheduleService.update_service(db, public_id, payload)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.post("/{public_id}/schedules", response_model=schemas.ServiceDetailResponse)
def regenerate_schedules(
    public_id: str,
    payload: schemas.RegenerateServicePayload,
    db: Session = Depends(get_db),
) -> schemas.ServiceDetailResponse:
    try:
        return ServiceScheduleService.regenerate_by_public_id(db, public_id, payload)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        LOGGER.exception("Failed to regenerate schedules", extra={"public_id": public_id})
        raise _persistence_failure("No se pudo generar el calendario de pagos.") from exc


@router.post("/{public_id}/archive", response_model=schemas.ServiceDetailResponse)
def archive_service(public_id: str, db: Session = Depends(get_db)) -> schemas.ServiceDetailResponse:
    try:
        return ServiceScheduleService.archive_service(db, public_id)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.delete("/{public_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_service(public_id: str, db: Session = Depends(get_db)) -> Response:
    try:
        ServiceScheduleService.delete_service(db, public_id)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
