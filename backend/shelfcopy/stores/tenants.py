"""Tenant lookup and provisioning: shop credentials plus generation settings."""

from __future__ import annotations

from abc import ABC, abstractmethod

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from shelfcopy.errors import NotFoundError
from shelfcopy.models.contracts import ShopSettings, ShopSettingsUpdate, Tenant
from shelfcopy.models.db import Shop, ShopSettingsRow


class TenantStore(ABC):
    @abstractmethod
    async def get(self, tenant_id: str) -> Tenant:
        """Raises NotFoundError for unknown tenants."""

    @abstractmethod
    async def install(
        self, tenant_id: str, shop_domain: str, access_token: str
    ) -> tuple[Tenant, bool]:
        """Create the shop with default settings, or refresh a known shop's token.

        Returns the tenant and whether it was created.
        """

    @abstractmethod
    async def update_settings(self, tenant_id: str, changes: ShopSettingsUpdate) -> ShopSettings:
        """Apply ``changes.changes()`` and return the resulting settings."""


class InMemoryTenantStore(TenantStore):
    def __init__(self, tenants: list[Tenant] | None = None) -> None:
        self._tenants = {t.id: t for t in tenants or []}

    def add(self, tenant: Tenant) -> None:
        self._tenants[tenant.id] = tenant

    async def get(self, tenant_id: str) -> Tenant:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Shop {tenant_id} not found")
        return tenant

    async def install(
        self, tenant_id: str, shop_domain: str, access_token: str
    ) -> tuple[Tenant, bool]:
        existing = self._tenants.get(tenant_id)
        if existing is not None:
            tenant = existing.model_copy(update={"access_token": access_token})
            self._tenants[tenant_id] = tenant
            return tenant, False
        tenant = Tenant(id=tenant_id, shop_domain=shop_domain, access_token=access_token)
        self._tenants[tenant_id] = tenant
        return tenant, True

    async def update_settings(self, tenant_id: str, changes: ShopSettingsUpdate) -> ShopSettings:
        tenant = await self.get(tenant_id)
        settings = tenant.settings.model_copy(update=changes.changes())
        self._tenants[tenant_id] = tenant.model_copy(update={"settings": settings})
        return settings


def _settings_from_row(row: ShopSettingsRow | None) -> ShopSettings:
    if row is None:
        return ShopSettings()
    defaults = ShopSettings()
    return ShopSettings(
        default_tone=row.default_tone,  # type: ignore[arg-type]
        include_meta=row.include_meta,
        product_desc_template=row.product_desc_template or defaults.product_desc_template,
        meta_title_template=row.meta_title_template or defaults.meta_title_template,
        meta_desc_template=row.meta_desc_template or defaults.meta_desc_template,
        visual_analysis_depth=row.visual_analysis_depth,  # type: ignore[arg-type]
    )


def _default_settings_row(tenant_id: str) -> ShopSettingsRow:
    """Templates stay null so they track the current defaults."""
    defaults = ShopSettings()
    return ShopSettingsRow(
        shop_id=tenant_id,
        default_tone=defaults.default_tone,
        include_meta=defaults.include_meta,
        visual_analysis_depth=defaults.visual_analysis_depth,
    )


def _tenant_from_row(shop: Shop) -> Tenant:
    return Tenant(
        id=shop.id,
        shop_domain=shop.shop_domain,
        access_token=shop.access_token,
        settings=_settings_from_row(shop.settings),
    )


class SqlTenantStore(TenantStore):
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _by_id(tenant_id: str) -> Select[tuple[Shop]]:
        return select(Shop).where(Shop.id == tenant_id).options(selectinload(Shop.settings))

    async def get(self, tenant_id: str) -> Tenant:
        async with self._session_factory() as session:
            shop = await session.scalar(self._by_id(tenant_id))
        if shop is None:
            raise NotFoundError(f"Shop {tenant_id} not found")
        return _tenant_from_row(shop)

    async def install(
        self, tenant_id: str, shop_domain: str, access_token: str
    ) -> tuple[Tenant, bool]:
        async with self._session_factory() as session:
            shop = await session.scalar(self._by_id(tenant_id))
            created = shop is None
            if shop is None:
                shop = Shop(
                    id=tenant_id,
                    shop_domain=shop_domain,
                    access_token=access_token,
                    settings=_default_settings_row(tenant_id),
                )
                session.add(shop)
            else:
                shop.access_token = access_token
            await session.commit()
            tenant = _tenant_from_row(shop)
        return tenant, created

    async def update_settings(self, tenant_id: str, changes: ShopSettingsUpdate) -> ShopSettings:
        async with self._session_factory() as session:
            shop = await session.scalar(self._by_id(tenant_id))
            if shop is None:
                raise NotFoundError(f"Shop {tenant_id} not found")
            row = shop.settings
            if row is None:
                row = _default_settings_row(tenant_id)
                shop.settings = row
            for name, value in changes.changes().items():
                setattr(row, name, value)
            await session.commit()
            settings = _settings_from_row(row)
        return settings
