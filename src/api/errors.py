"""Translate workflow exceptions into ``{"error": code, "detail": message}`` responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.workflow.errors import (
    DecisionError,
    DuplicateActiveRequest,
    Forbidden,
    InvalidStateTransition,
    RequestNotFound,
    RequestWorkflowError,
    StoreError,
)

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
STATUS_BY_ERROR: list[tuple[type[RequestWorkflowError], int]] = [
    (DuplicateActiveRequest, status.HTTP_409_CONFLICT),
    (InvalidStateTransition, status.HTTP_409_CONFLICT),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (RequestNotFound, status.HTTP_404_NOT_FOUND),
    (DecisionError, 422),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: RequestWorkflowError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def workflow_error_handler(request: Request, exc: RequestWorkflowError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc)
    return JSONResponse({"error": exc.code, "detail": str(exc)}, status_code=status_code)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestWorkflowError, workflow_error_handler)
