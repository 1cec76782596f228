"""Batch submission and processing status endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from shelfcopy.api.deps import ContainerDep, TenantIdDep, apply_rate_limit
from shelfcopy.models.contracts import (
    BatchAccepted,
    BatchRequest,
    ErrorResponse,
    HistoryFilters,
    HistoryStatus,
    StatusReport,
    SubmitBatchRequest,
)

logger = structlog.get_logger()

router = APIRouter(tags=["batches"])


def _error(status: int, code: str, message: str, *, retryable: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=code, message=message, retryable=retryable).model_dump(),
    )


@router.post(
    "/batches",
    status_code=202,
    response_model=BatchAccepted,
    responses={
        402: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)
async def submit_batch(
    body: SubmitBatchRequest,
    response: Response,
    tenant_id: TenantIdDep,
    container: ContainerDep,
):
    """Estimate, check credits and start enrichment in the background."""
    apply_rate_limit(container.submit_limiter, f"{tenant_id}:batches", response)
    try:
        request = BatchRequest(tenant_id=tenant_id, **body.model_dump())
    except ValidationError as exc:
        return _error(422, "validation_error", exc.errors()[0]["msg"])
    return await container.service.submit(request)


@router.get(
    "/processing/status",
    response_model=StatusReport,
    responses={429: {"model": ErrorResponse}},
)
async def processing_status(
    response: Response,
    tenant_id: TenantIdDep,
    container: ContainerDep,
    status: HistoryStatus | None = None,
    item_id: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> StatusReport:
    """Paged generation history with per-status counts."""
    apply_rate_limit(container.status_limiter, f"{tenant_id}:status", response)
    return await container.service.query_status(
        tenant_id,
        HistoryFilters(status=status, item_id=item_id),
        page=page,
        page_size=limit,
    )
