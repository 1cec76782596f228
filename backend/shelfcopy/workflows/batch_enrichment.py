"""Batch enrichment orchestration.

``submit`` does all pre-flight work synchronously (tenant lookup, expansion,
cost estimate, ledger check) and then hands the batch off. With a Temporal
client the batch runs as a ``BatchEnrichmentWorkflow`` on the worker; without
one (local development, tests) it runs as an in-process task. Per-unit
results are observable only through the history store.
"""


from __future__ import annotations

import asyncio
import math
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from shelfcopy.activities.expand import expand_batch
from shelfcopy.activities.process_item import UnitActivities
from shelfcopy.catalog.base import CatalogFactory
from shelfcopy.errors import InsufficientCreditsError
from shelfcopy.models.contracts import (
    BatchAccepted,
    BatchRequest,
    BatchSummary,
    BatchWorkflowInput,
    CreditsSummary,
    HistoryFilters,
    Pagination,
    ProcessingUnit,
    PurchaseCreditsResponse,
    ShopInstallRequest,
    ShopInstallResponse,
    ShopSettings,
    ShopSettingsUpdate,
    StatusReport,
    UnitOutcome,
)
from shelfcopy.providers.base import GenerationProvider
from shelfcopy.stores.credits import USAGE_TREND_WINDOW, CreditLedger, credits_summary
from shelfcopy.stores.history import HistoryStore, overall_progress
from shelfcopy.stores.tenants import TenantStore

if TYPE_CHECKING:
    from temporalio.client import Client

log = structlog.get_logger("batch_enrichment")

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

# Stages per unit that make an external call; bounds one activity attempt.
_EXTERNAL_CALLS_PER_UNIT = 8


def _utcnow() -> datetime:
    return datetime.now(UTC)


def credits_per_unit(update_meta: bool) -> int:
    return 2 if update_meta else 1


class BatchEnrichmentService:
    def __init__(
        self,
        tenants: TenantStore,
        ledger: CreditLedger,
        history: HistoryStore,
        provider: GenerationProvider,
        catalog_factory: CatalogFactory,
        max_concurrent_items: int = 4,
        call_timeout: float = 120.0,
        collection_page_size: int = 50,
        clock: Callable[[], datetime] = _utcnow,
        temporal_client: Client | None = None,
        task_queue: str = "shelfcopy-tasks",
    ) -> None:
        self._tenants = tenants
        self._ledger = ledger
        self._history = history
        self._catalog_factory = catalog_factory
        self._max_concurrent_items = max_concurrent_items
        self._call_timeout = call_timeout
        self._collection_page_size = collection_page_size
        self._clock = clock
        self._temporal_client = temporal_client
        self._task_queue = task_queue
        self.units = UnitActivities(
            tenants,
            ledger,
            history,
            provider,
            catalog_factory,
            call_timeout=call_timeout,
            clock=clock,
        )
        # Strong references so in-process batches are not garbage-collected mid-run
        self._background_tasks: set[asyncio.Task] = set()  # type: ignore[type-arg]

    @property
    def in_flight(self) -> int:
        return len(self._background_tasks)

    async def submit(self, request: BatchRequest) -> BatchAccepted:
        tenant = await self._tenants.get(request.tenant_id)
        catalog = self._catalog_factory(tenant)
        units = await expand_batch(
            catalog,
            request.item_ids,
            request.collection_ids,
            page_size=self._collection_page_size,
        )
        estimated_credits = len(units) * credits_per_unit(request.update_meta)

        if not units:
            log.info("batch_empty", tenant_id=tenant.id)
            return BatchAccepted(accepted=True, estimated_units=0, estimated_credits=0)

        if not await self._ledger.check(tenant.id, estimated_credits):
            log.info(
                "batch_rejected_insufficient_credits",
                tenant_id=tenant.id,
                estimated_credits=estimated_credits,
            )
            raise InsufficientCreditsError(estimated_credits)

        batch = BatchWorkflowInput(
            batch_id=str(uuid.uuid4()),
            tenant_id=tenant.id,
            units=units,
            tone=request.tone,
            update_meta=request.update_meta,
            max_concurrent_items=self._max_concurrent_items,
            unit_timeout_seconds=self._call_timeout * _EXTERNAL_CALLS_PER_UNIT,
        )
        if self._temporal_client is not None:
            await self._start_workflow(self._temporal_client, batch)
        else:
            task = asyncio.create_task(self._run_batch(batch), name=f"batch-{batch.batch_id}")
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        log.info(
            "batch_accepted",
            batch_id=batch.batch_id,
            tenant_id=tenant.id,
            estimated_units=len(units),
            estimated_credits=estimated_credits,
            durable=self._temporal_client is not None,
        )
        return BatchAccepted(
            accepted=True,
            batch_id=batch.batch_id,
            estimated_units=len(units),
            estimated_credits=estimated_credits,
        )

    async def _start_workflow(self, client: Client, batch: BatchWorkflowInput) -> None:
        from temporalio.service import RPCError

        from shelfcopy.workflows.enrichment_workflow import BatchEnrichmentWorkflow

        try:
            await client.start_workflow(
                BatchEnrichmentWorkflow.run,
                batch,
                id=f"batch-{batch.batch_id}",
                task_queue=self._task_queue,
            )
        except RPCError:
            log.exception("workflow_start_failed", batch_id=batch.batch_id)
            raise

    async def _run_batch(self, batch: BatchWorkflowInput) -> BatchSummary:
        """In-process counterpart of BatchEnrichmentWorkflow.run."""
        structlog.contextvars.bind_contextvars(batch_id=batch.batch_id, tenant_id=batch.tenant_id)
        semaphore = asyncio.Semaphore(max(1, batch.max_concurrent_items))

        async def run_unit(unit: ProcessingUnit) -> UnitOutcome | None:
            async with semaphore:
                try:
                    return await self.units.run_unit(batch.unit_input(unit))
                except Exception:
                    # Raised outside the unit's own error handling (history store down)
                    log.exception("unit_unrecorded", item_id=unit.item_id)
                    return None

        log.info("batch_started", units=len(batch.units))
        outcomes = await asyncio.gather(*(run_unit(u) for u in batch.units))
        summary = BatchSummary.from_outcomes(batch.batch_id, list(outcomes))
        log.info(
            "batch_complete",
            units=summary.units,
            completed=summary.completed,
            errors=summary.errors,
            unrecorded=summary.unrecorded,
            credits_used=summary.credits_used,
        )
        return summary

    async def drain(self) -> None:
        """Wait for every in-process batch to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def query_status(
        self,
        tenant_id: str,
        filters: HistoryFilters,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> StatusReport:
        page = max(1, page)
        page_size = min(max(1, page_size), MAX_PAGE_SIZE)
        if filters.item_id is not None:
            # History holds the catalog's canonical ids
            tenant = await self._tenants.get(tenant_id)
            item_ref = self._catalog_factory(tenant).item_ref(filters.item_id)
            filters = filters.model_copy(update={"item_id": item_ref})
        result = await self._history.query(tenant_id, filters, page, page_size)
        stats = await self._history.status_counts(tenant_id, filters)
        return StatusReport(
            records=result.records,
            pagination=Pagination(
                page=page,
                limit=page_size,
                total_items=result.total_count,
                total_pages=math.ceil(result.total_count / page_size),
            ),
            stats=stats,
            overall_progress=overall_progress(stats),
        )

    async def credits_summary(self, tenant_id: str) -> CreditsSummary:
        now = self._clock()
        balance = await self._ledger.get_balance(tenant_id)
        used = await self._history.credits_used_since(tenant_id, now - USAGE_TREND_WINDOW)
        return credits_summary(balance, used, now)

    async def purchase_credits(self, tenant_id: str, amount: int) -> PurchaseCreditsResponse:
        await self._ledger.grant(tenant_id, amount)
        log.info("credits_purchased", tenant_id=tenant_id, amount=amount)
        return PurchaseCreditsResponse(
            success=True,
            message=f"Successfully added {amount} credits",
            credits=await self.credits_summary(tenant_id),
        )

    async def install_shop(self, tenant_id: str, request: ShopInstallRequest) -> ShopInstallResponse:
        """Register a shop, or refresh its access token if it is already known.

        A new shop gets default settings and a ledger funded with its plan's
        allowance. Reinstalling never touches the balance.
        """
        tenant, created = await self._tenants.install(
            tenant_id, request.shop_domain, request.access_token
        )
        if created:
            await self._ledger.initialize(tenant.id, request.plan)
        log.info("shop_installed", tenant_id=tenant.id, created=created, plan=request.plan)
        return ShopInstallResponse(
            tenant_id=tenant.id,
            shop_domain=tenant.shop_domain,
            created=created,
            settings=tenant.settings,
            credits=await self.credits_summary(tenant.id),
        )

    async def get_settings(self, tenant_id: str) -> ShopSettings:
        return (await self._tenants.get(tenant_id)).settings

    async def update_settings(self, tenant_id: str, changes: ShopSettingsUpdate) -> ShopSettings:
        settings = await self._tenants.update_settings(tenant_id, changes)
        log.info("settings_updated", tenant_id=tenant_id, fields=sorted(changes.changes()))
        return settings
