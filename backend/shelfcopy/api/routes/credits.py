"""Credit balance and purchase endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from shelfcopy.api.deps import ContainerDep, TenantIdDep
from shelfcopy.models.contracts import (
    CreditsSummary,
    ErrorResponse,
    PurchaseCreditsRequest,
    PurchaseCreditsResponse,
)

router = APIRouter(tags=["credits"])


@router.get(
    "/credits",
    response_model=CreditsSummary,
    responses={404: {"model": ErrorResponse}},
)
async def get_credits(tenant_id: TenantIdDep, container: ContainerDep) -> CreditsSummary:
    return await container.service.credits_summary(tenant_id)


@router.post(
    "/credits/purchase",
    response_model=PurchaseCreditsResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def purchase_credits(
    body: PurchaseCreditsRequest, tenant_id: TenantIdDep, container: ContainerDep
) -> PurchaseCreditsResponse:
    """Grant purchased credits. Payment capture happens upstream."""
    return await container.service.purchase_credits(tenant_id, body.amount)
