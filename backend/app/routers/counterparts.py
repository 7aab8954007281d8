"""Router for counterparts and payout account reconciliation."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..services import CounterpartService, ScheduleEngineError
from .errors import http_error

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("/suggestions", response_model=schemas.AccountSuggestionListResponse)
def counterpart_suggestions(
    db: Session = Depends(get_db),
    q: str = Query("", max_length=120, description="Holder, account or RUT fragment"),
    limit: int = Query(10, ge=1, le=100),
) -> schemas.AccountSuggestionListResponse:
    return schemas.AccountSuggestionListResponse(
        suggestions=CounterpartService.suggestions(db, q, limit)
    )


@router.get("/unassigned-payout", response_model=schemas.PayoutAccountListResponse)
def unassigned_payout_accounts(
    db: Session = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200, alias="pageSize"),
    query: Optional[str] = Query(None, max_length=64),
) -> schemas.PayoutAccountListResponse:
    return CounterpartService.list_unassigned_payout_accounts(
        db, page=page, page_size=page_size, query=query
    )


@router.post("/attach-by-rut", response_model=schemas.AttachRutResponse)
def attach_by_rut(
    payload: schemas.AttachByRutRequest, db: Session = Depends(get_db)
) -> schemas.AttachRutResponse:
    try:
        return CounterpartService.attach_by_rut(
            db,
            payload.rut,
            payload.account_numbers,
            holder=payload.holder,
            force=payload.force,
        )
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.post("/sync")
def sync_counterparts(db: Session = Depends(get_db)) -> dict[str, int]:
    return CounterpartService.sync_from_withdrawals(db)


@router.get("/by-rut/{rut}", response_model=schemas.CounterpartRead)
def get_counterpart_by_rut(rut: str, db: Session = Depends(get_db)) -> models.Counterpart:
    try:
        return CounterpartService.get_counterpart_by_rut(db, rut)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.put("/accounts/{account_id}", response_model=schemas.CounterpartAccountRead)
def update_counterpart_account(
    account_id: int,
    payload: schemas.CounterpartAccountUpdate,
    db: Session = Depends(get_db),
) -> models.CounterpartAccount:
    try:
        return CounterpartService.update_account(db, account_id, payload)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.get("/", response_model=schemas.CounterpartListResponse)
def list_counterparts(
    db: Session = Depends(get_db),
    search: Optional[str] = Query(None, max_length=255),
    category: Optional[models.CounterpartCategory] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
) -> schemas.CounterpartListResponse:
    items, total = CounterpartService.list_counterparts(
        db, skip=skip, limit=limit, search=search, category=category
    )
    return schemas.CounterpartListResponse(items=items, total=total, limit=limit, skip=skip)


@router.post("/", response_model=schemas.CounterpartRead, status_code=status.HTTP_201_CREATED)
def create_counterpart(
    payload: schemas.CounterpartCreate, db: Session = Depends(get_db)
) -> models.Counterpart:
    try:
        return CounterpartService.create_counterpart(db, payload)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.get("/{counterpart_id}", response_model=schemas.CounterpartRead)
def get_counterpart(counterpart_id: int, db: Session = Depends(get_db)) -> models.Counterpart:
    try:
        return CounterpartService.get_counterpart(db, counterpart_id)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.put("/{counterpart_id}", response_model=schemas.CounterpartRead)
def update_counterpart(
    counterpart_id: int,
    payload: schemas.CounterpartUpdate,
    db: Session = Depends(get_db),
) -> models.Counterpart:
    try:
        return CounterpartService.update_counterpart(db, counterpart_id, payload)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{counterpart_id}/accounts",
    response_model=schemas.CounterpartAccountRead,
    status_code=status.HTTP_201_CREATED,
)
def upsert_counterpart_account(
    counterpart_id: int,
    payload: schemas.CounterpartAccountUpsert,
    db: Session = Depends(get_db),
) -> models.CounterpartAccount:
    try:
        return CounterpartService.upsert_account(db, counterpart_id, payload)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.post("/{counterpart_id}/attach-rut", response_model=schemas.AttachRutResponse)
def attach_rut(
    counterpart_id: int,
    payload: schemas.AttachRutRequest,
    db: Session = Depends(get_db),
) -> schemas.AttachRutResponse:
    try:
        return CounterpartService.attach_rut_to_counterpart(
            db, counterpart_id, payload.rut, force=payload.force
        )
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc


@router.get("/{counterpart_id}/summary", response_model=schemas.CounterpartSummaryRead)
def counterpart_summary(
    counterpart_id: int, db: Session = Depends(get_db)
) -> schemas.CounterpartSummaryRead:
    try:
        return CounterpartService.counterpart_summary(db, counterpart_id)
    except ScheduleEngineError as exc:
        raise http_error(exc) from exc
