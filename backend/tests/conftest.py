"""Shared fixtures: in-memory stores, a fake catalog and a scripted provider."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest

from shelfcopy.config import Settings
from shelfcopy.dependencies import Container
from shelfcopy.errors import NotFoundError
from shelfcopy.models.contracts import (
    CollectionPage,
    GeneratedMeta,
    ItemDetail,
    ProductImage,
    ShopSettings,
    Tenant,
)
from shelfcopy.providers.base import GenerationProvider
from shelfcopy.stores.credits import InMemoryCreditLedger
from shelfcopy.stores.history import InMemoryHistoryStore
from shelfcopy.stores.tenants import InMemoryTenantStore
from shelfcopy.utils.rate_limit import SlidingWindowRateLimiter
from shelfcopy.workflows.batch_enrichment import BatchEnrichmentService

TENANT_ID = "shop-1"


def make_item(item_id: str, title: str | None = None, *, image: bool = True) -> ItemDetail:
    return ItemDetail(
        id=item_id,
        title=title or f"Product {item_id}",
        description=f"Old copy for {item_id}",
        featured_image=ProductImage(url=f"https://cdn.test/{item_id}.jpg") if image else None,
    )


class FakeCatalog:
    """Dict-backed catalog. Collections are lists of pages."""

    def __init__(self) -> None:
        self.items: dict[str, ItemDetail] = {}
        self.collections: dict[str, list[list[str]]] = {}
        self.descriptions: dict[str, str] = {}
        self.seo: dict[str, dict[str, str | None]] = {}
        self.write_errors: dict[str, Exception] = {}
        self.collection_calls: list[tuple[str, str | None]] = []

    def add_items(self, *item_ids: str, image: bool = True) -> None:
        for item_id in item_ids:
            self.items[item_id] = make_item(item_id, image=image)

    def item_ref(self, raw_id: str) -> str:
        return raw_id.removeprefix("gid://shopify/Product/")

    async def fetch_item_detail(self, item_id: str) -> ItemDetail:
        if item_id not in self.items:
            raise NotFoundError(f"Product {item_id} not found")
        return self.items[item_id]

    async def fetch_collection_members(
        self, collection_id: str, cursor: str | None = None, page_size: int = 50
    ) -> CollectionPage:
        self.collection_calls.append((collection_id, cursor))
        if collection_id not in self.collections:
            raise NotFoundError(f"Collection {collection_id} not found")
        pages = self.collections[collection_id]
        index = int(cursor.removeprefix("page-")) if cursor else 0
        next_cursor = f"page-{index + 1}" if index + 1 < len(pages) else None
        return CollectionPage(item_ids=pages[index], next_cursor=next_cursor)

    async def write_description(self, item_id: str, html: str) -> None:
        if item_id in self.write_errors:
            raise self.write_errors[item_id]
        self.descriptions[item_id] = html

    async def write_seo(
        self, item_id: str, title: str | None = None, description: str | None = None
    ) -> None:
        self.seo[item_id] = {"title": title, "description": description}


class ScriptedProvider(GenerationProvider):
    """Provider whose per-item behaviour is set up by each test."""

    name = "scripted"

    def __init__(self) -> None:
        self.failures: dict[tuple[str, str], Exception] = {}
        self.empty_descriptions: set[str] = set()
        self.meta = GeneratedMeta(title="SEO title", description="SEO description")
        self.delay: float = 0.0
        self.calls: list[tuple[str, Any]] = []

    def _maybe_fail(self, stage: str, item_id: str) -> None:
        exc = self.failures.get((stage, item_id))
        if exc is not None:
            raise exc

    async def analyze_image(self, image_url: str, depth: str) -> dict[str, Any]:
        item_id = image_url.rsplit("/", 1)[-1].removesuffix(".jpg")
        self.calls.append(("analyze_image", depth))
        if self.delay:
            await asyncio.sleep(self.delay)
        self._maybe_fail("analyze", item_id)
        return {"productType": "mug", "features": ["handmade"]}

    async def generate_description(
        self, item: ItemDetail, analysis: dict[str, Any], tone: str | None, template: str
    ) -> str:
        self.calls.append(("generate_description", tone))
        self._maybe_fail("describe", item.id)
        if item.id in self.empty_descriptions:
            return ""
        return f"<p>New copy for {item.id}</p>"

    async def generate_meta(
        self,
        item: ItemDetail,
        analysis: dict[str, Any],
        title_template: str,
        description_template: str,
    ) -> GeneratedMeta:
        self.calls.append(("generate_meta", item.id))
        self._maybe_fail("meta", item.id)
        return self.meta


@pytest.fixture
def tenant() -> Tenant:
    return Tenant(
        id=TENANT_ID,
        shop_domain="shop-1.myshopify.com",
        access_token="shpat_test",
        settings=ShopSettings(default_tone="casual", visual_analysis_depth="detailed"),
    )


@pytest.fixture
def tenants(tenant: Tenant) -> InMemoryTenantStore:
    return InMemoryTenantStore([tenant])


@pytest.fixture
async def ledger() -> InMemoryCreditLedger:
    ledger = InMemoryCreditLedger()
    await ledger.initialize(TENANT_ID, "FREE")
    return ledger


@pytest.fixture
def history() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def service(
    tenants: InMemoryTenantStore,
    ledger: InMemoryCreditLedger,
    history: InMemoryHistoryStore,
    provider: ScriptedProvider,
    catalog: FakeCatalog,
) -> BatchEnrichmentService:
    return BatchEnrichmentService(
        tenants,
        ledger,
        history,
        provider,
        lambda _tenant: catalog,
        max_concurrent_items=2,
        call_timeout=5.0,
    )


@pytest.fixture
async def container(
    tenants: InMemoryTenantStore,
    ledger: InMemoryCreditLedger,
    history: InMemoryHistoryStore,
    provider: ScriptedProvider,
    service: BatchEnrichmentService,
) -> AsyncIterator[Container]:
    http_client = httpx.AsyncClient()
    yield Container(
        settings=Settings(),
        tenants=tenants,
        ledger=ledger,
        history=history,
        provider=provider,
        service=service,
        status_limiter=SlidingWindowRateLimiter(interval=60, limit=5),
        submit_limiter=SlidingWindowRateLimiter(interval=60, limit=10),
        http_client=http_client,
    )
    await service.drain()
    await http_client.aclose()


@pytest.fixture
async def client(container: Container) -> AsyncIterator[httpx.AsyncClient]:
    """ASGI client against the app with the test container installed."""
    from shelfcopy.main import app

    app.state.container = container
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.state.container = None
