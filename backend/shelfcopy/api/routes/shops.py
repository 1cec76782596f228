"""Shop installation and generation settings endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Response

from shelfcopy.api.deps import ContainerDep, TenantIdDep
from shelfcopy.models.contracts import (
    ErrorResponse,
    ShopInstallRequest,
    ShopInstallResponse,
    ShopSettings,
    ShopSettingsUpdate,
)

router = APIRouter(tags=["shops"])


@router.post(
    "/shops",
    response_model=ShopInstallResponse,
    status_code=201,
    responses={200: {"model": ShopInstallResponse}, 422: {"model": ErrorResponse}},
)
async def install_shop(
    body: ShopInstallRequest,
    tenant_id: TenantIdDep,
    container: ContainerDep,
    response: Response,
) -> ShopInstallResponse:
    """Called after the OAuth exchange. 201 for a new shop, 200 for a reinstall."""
    result = await container.service.install_shop(tenant_id, body)
    if not result.created:
        response.status_code = 200
    return result


@router.get(
    "/settings",
    response_model=ShopSettings,
    responses={404: {"model": ErrorResponse}},
)
async def get_settings(tenant_id: TenantIdDep, container: ContainerDep) -> ShopSettings:
    return await container.service.get_settings(tenant_id)


@router.put(
    "/settings",
    response_model=ShopSettings,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_settings(
    body: ShopSettingsUpdate, tenant_id: TenantIdDep, container: ContainerDep
) -> ShopSettings:
    """Partial update. Omitted, null and empty fields keep their current value."""
    return await container.service.update_settings(tenant_id, body)
