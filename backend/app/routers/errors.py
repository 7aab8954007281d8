"""Translate service layer errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ..services.errors import (
    ConflictError,
    ExternalDependencyError,
    NotFoundError,
    ScheduleEngineError,
    ValidationError,
)

LOGGER = logging.getLogger(__name__)

STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalDependencyError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: ScheduleEngineError) -> HTTPException:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped_status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped_status
            break
    if status_code >= 500:
        LOGGER.warning("Request failed on a dependency", extra={"code": exc.code})
    return HTTPException(status_code=status_code, detail=exc.to_detail())
