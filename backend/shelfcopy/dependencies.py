"""Startup wiring: stores, provider, HTTP client and the batch service.

Built once per process in the app lifespan and stored on ``app.state``.
Nothing in the pipeline looks these up globally.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from shelfcopy.catalog.shopify import ShopifyCatalog
from shelfcopy.config import Settings
from shelfcopy.models.contracts import Tenant
from shelfcopy.providers.base import GenerationProvider
from shelfcopy.stores.credits import CreditLedger, InMemoryCreditLedger, SqlCreditLedger
from shelfcopy.stores.history import HistoryStore, InMemoryHistoryStore, SqlHistoryStore
from shelfcopy.stores.tenants import InMemoryTenantStore, SqlTenantStore, TenantStore
from shelfcopy.utils.rate_limit import SlidingWindowRateLimiter
from shelfcopy.workflows.batch_enrichment import BatchEnrichmentService

if TYPE_CHECKING:
    from temporalio.client import Client

log = structlog.get_logger("dependencies")


@dataclass
class Container:
    settings: Settings
    tenants: TenantStore
    ledger: CreditLedger
    history: HistoryStore
    provider: GenerationProvider
    service: BatchEnrichmentService
    status_limiter: SlidingWindowRateLimiter
    submit_limiter: SlidingWindowRateLimiter
    http_client: httpx.AsyncClient
    engine: AsyncEngine | None = None

    async def aclose(self) -> None:
        await self.service.drain()
        await self.http_client.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def build_provider(settings: Settings, http_client: httpx.AsyncClient) -> GenerationProvider:
    if settings.generation_provider == "anthropic":
        from shelfcopy.providers.anthropic_provider import AnthropicProvider

        return AnthropicProvider(http_client, settings.anthropic_api_key, settings.anthropic_model)
    if settings.generation_provider == "gemini":
        from shelfcopy.providers.gemini_provider import GeminiProvider

        return GeminiProvider(http_client, settings.google_ai_api_key, settings.gemini_model)
    from shelfcopy.providers.mock_provider import MockProvider

    return MockProvider()


def build_container(settings: Settings, temporal_client: Client | None = None) -> Container:
    """Wire stores, provider and service. Batches run on Temporal when a client is given."""
    http_client = httpx.AsyncClient(timeout=settings.external_call_timeout_seconds)
    engine: AsyncEngine | None = None
    tenants: TenantStore
    ledger: CreditLedger
    history: HistoryStore

    if settings.use_database:
        from shelfcopy.stores.database import create_engine, create_session_factory

        engine = create_engine(settings.database_url)
        session_factory = create_session_factory(engine)
        tenants = SqlTenantStore(session_factory)
        ledger = SqlCreditLedger(session_factory)
        history = SqlHistoryStore(session_factory)
    else:
        tenants = InMemoryTenantStore()
        ledger = InMemoryCreditLedger()
        history = InMemoryHistoryStore()

    if temporal_client is not None and not settings.use_database:
        log.warning(
            "temporal_without_database",
            hint="Worker and API share no state unless USE_DATABASE=true",
        )

    provider = build_provider(settings, http_client)

    def catalog_for(tenant: Tenant) -> ShopifyCatalog:
        return ShopifyCatalog(
            http_client,
            tenant.shop_domain,
            tenant.access_token,
            api_version=settings.shopify_api_version,
        )

    service = BatchEnrichmentService(
        tenants,
        ledger,
        history,
        provider,
        catalog_for,
        max_concurrent_items=settings.max_concurrent_items,
        call_timeout=settings.external_call_timeout_seconds,
        collection_page_size=settings.collection_page_size,
        temporal_client=temporal_client,
        task_queue=settings.temporal_task_queue,
    )

    def limiter(limit: int) -> SlidingWindowRateLimiter:
        return SlidingWindowRateLimiter(
            interval=settings.rate_limit_interval_seconds,
            limit=limit,
            unique_token_per_interval=settings.rate_limit_unique_tokens,
        )

    log.info(
        "container_built",
        use_database=settings.use_database,
        generation_provider=provider.name,
        durable_batches=temporal_client is not None,
    )
    return Container(
        settings=settings,
        tenants=tenants,
        ledger=ledger,
        history=history,
        provider=provider,
        service=service,
        status_limiter=limiter(settings.status_rate_limit),
        submit_limiter=limiter(settings.submit_rate_limit),
        http_client=http_client,
        engine=engine,
    )
