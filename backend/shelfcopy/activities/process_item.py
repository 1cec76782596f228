"""Per-item enrichment state machine.

    created -> fetching -> analyzing -> describing -> writing_description
            -> [generating_meta -> writing_meta] -> completed
    any stage -> error (terminal)

One credit is consumed after the description write stage and one on
reaching writing_meta. Credits already consumed are never refunded. Every
failure inside a unit ends up on the unit's history record; nothing raised
here reaches sibling units.

A unit started again with the same record id picks up after the last stage
whose credit was recorded, so a retried Temporal activity never pays twice
for a description or meta it already has.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

import structlog
from temporalio import activity

from shelfcopy.catalog.base import Catalog, CatalogFactory
from shelfcopy.errors import (
    EnrichmentError,
    ExternalTimeoutError,
    InternalError,
    NoImageAvailableError,
    NotFoundError,
)
from shelfcopy.models.contracts import (
    TERMINAL_STATUSES,
    GeneratedMeta,
    HistoryRecord,
    HistoryUpdate,
    ProcessingUnit,
    ProcessUnitInput,
    Tenant,
    Tone,
    UnitOutcome,
)
from shelfcopy.providers.base import GenerationProvider
from shelfcopy.stores.credits import CreditLedger
from shelfcopy.stores.history import HistoryStore
from shelfcopy.stores.tenants import TenantStore

log = structlog.get_logger("process_item")

T = TypeVar("T")

CREDITS_PER_STAGE = 1


class UnitStage(enum.IntEnum):
    CREATED = 0
    FETCHING = 1
    ANALYZING = 2
    DESCRIBING = 3
    WRITING_DESCRIPTION = 4
    GENERATING_META = 5
    WRITING_META = 6
    COMPLETED = 7


class _UnitRun:
    """Mutable progress of one unit. Stages only move forward."""

    def __init__(self, record_id: str, item_id: str) -> None:
        self.record_id = record_id
        self.item_id = item_id
        self.stage = UnitStage.CREATED
        self.credits_used = 0
        self.log = log.bind(record_id=record_id, item_id=item_id)

    def advance(self, stage: UnitStage) -> None:
        if stage <= self.stage:
            raise InternalError(
                f"Illegal stage transition {self.stage.name.lower()} -> {stage.name.lower()}"
            )
        self.stage = stage
        self.log.debug("unit_stage", stage=stage.name.lower())


def _utcnow() -> datetime:
    return datetime.now(UTC)


def unit_record_id(batch_id: str, item_id: str) -> str:
    """History record id for one item of one batch, stable across retries."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"shelfcopy:{batch_id}:{item_id}"))


def _charged_description(record: HistoryRecord | None) -> HistoryRecord | None:
    """``record`` if its description stage was already paid for."""
    if record is None or record.generated_description is None:
        return None
    return record if record.credits_used >= CREDITS_PER_STAGE else None


def _charged_meta(record: HistoryRecord | None) -> GeneratedMeta | None:
    if record is None or record.credits_used < 2 * CREDITS_PER_STAGE:
        return None
    return record.generated_meta


def _outcome(record: HistoryRecord) -> UnitOutcome:
    return UnitOutcome(
        record_id=record.id,
        item_id=record.item_id,
        status=record.status,
        credits_used=record.credits_used,
        error=record.error,
    )


class ItemProcessor:
    """Runs one unit through every stage and records the result.

    With ``resumable`` set, a cancelled unit leaves its record at
    ``processing`` for the next attempt; otherwise cancellation is recorded
    as an error before it propagates.
    """

    def __init__(
        self,
        catalog: Catalog,
        provider: GenerationProvider,
        ledger: CreditLedger,
        history: HistoryStore,
        call_timeout: float = 120.0,
        clock: Callable[[], datetime] = _utcnow,
        resumable: bool = False,
    ) -> None:
        self._catalog = catalog
        self._provider = provider
        self._ledger = ledger
        self._history = history
        self._call_timeout = call_timeout
        self._clock = clock
        self._resumable = resumable

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            async with asyncio.timeout(self._call_timeout):
                return await awaitable
        except TimeoutError as e:
            raise ExternalTimeoutError(
                f"{operation} timed out after {self._call_timeout:g}s"
            ) from e

    async def _update(self, run: _UnitRun, changes: HistoryUpdate) -> None:
        await self._call("history_update", self._history.update(run.record_id, changes))

    async def _consume_credit(self, tenant_id: str, run: _UnitRun) -> None:
        consumed = await self._call(
            "consume_credit", self._ledger.consume(tenant_id, CREDITS_PER_STAGE)
        )
        if consumed < CREDITS_PER_STAGE:
            run.log.warning("credit_shortfall", requested=CREDITS_PER_STAGE, consumed=consumed)
        run.credits_used += consumed

    async def _previous(self, record_id: str | None) -> HistoryRecord | None:
        if record_id is None:
            return None
        try:
            return await self._call("history_get", self._history.get(record_id))
        except NotFoundError:
            return None

    async def _record_failure(self, run: _UnitRun, message: str) -> UnitOutcome:
        await self._update(
            run, HistoryUpdate(status="error", error=message, credits_used=run.credits_used)
        )
        return UnitOutcome(
            record_id=run.record_id,
            item_id=run.item_id,
            status="error",
            credits_used=run.credits_used,
            error=message,
        )

    async def process(
        self,
        tenant: Tenant,
        unit: ProcessingUnit,
        tone: Tone | None = None,
        update_meta: bool = True,
        record_id: str | None = None,
    ) -> UnitOutcome:
        previous = await self._previous(record_id)
        if previous is not None and previous.status in TERMINAL_STATUSES:
            log.info("unit_already_finished", record_id=previous.id, status=previous.status)
            return _outcome(previous)
        if previous is None:
            record_id = await self._call(
                "history_create", self._history.create(tenant.id, unit, record_id)
            )
        else:
            record_id = previous.id

        run = _UnitRun(record_id, unit.item_id)
        if previous is not None:
            run.credits_used = previous.credits_used
            run.log.info("unit_resumed", credits_used=run.credits_used)

        try:
            await self._run_stages(tenant, unit, run, tone, update_meta, previous)
        except EnrichmentError as exc:
            run.log.warning(
                "unit_failed",
                stage=run.stage.name.lower(),
                error_code=exc.code,
                error=exc.message,
            )
            message = exc.message
        except asyncio.CancelledError:
            if self._resumable:
                run.log.warning("unit_interrupted", stage=run.stage.name.lower())
                raise
            message = f"Cancelled during {run.stage.name.lower()}"
            run.log.warning("unit_cancelled", stage=run.stage.name.lower())
            await asyncio.shield(self._record_failure(run, message))
            raise
        except Exception as exc:
            run.log.exception("unit_crashed", stage=run.stage.name.lower())
            message = f"Internal error: {type(exc).__name__}: {exc}"
        else:
            return UnitOutcome(
                record_id=record_id,
                item_id=unit.item_id,
                status="completed",
                credits_used=run.credits_used,
            )

        return await self._record_failure(run, message)

    async def _run_stages(
        self,
        tenant: Tenant,
        unit: ProcessingUnit,
        run: _UnitRun,
        tone: Tone | None,
        update_meta: bool,
        previous: HistoryRecord | None,
    ) -> None:
        settings = tenant.settings

        run.advance(UnitStage.FETCHING)
        item = await self._call(
            "fetch_item_detail", self._catalog.fetch_item_detail(unit.item_id)
        )

        if (done := _charged_description(previous)) is not None:
            analysis = done.image_analysis or {}
            run.advance(UnitStage.WRITING_DESCRIPTION)
        else:
            await self._update(
                run,
                HistoryUpdate(
                    item_title=item.title,
                    original_description=item.description_html or item.description,
                ),
            )

            run.advance(UnitStage.ANALYZING)
            image_url = item.representative_image_url()
            if image_url is None:
                raise NoImageAvailableError(
                    f"No image available for product {item.title or item.id}"
                )
            analysis = await self._call(
                "analyze_image",
                self._provider.analyze_image(image_url, settings.visual_analysis_depth),
            )

            run.advance(UnitStage.DESCRIBING)
            description = await self._call(
                "generate_description",
                self._provider.generate_description(
                    item, analysis, tone or settings.default_tone, settings.product_desc_template
                ),
            )

            run.advance(UnitStage.WRITING_DESCRIPTION)
            if description:
                await self._call(
                    "write_description",
                    self._catalog.write_description(unit.item_id, description),
                )
            else:
                run.log.warning("description_empty_skipping_write")
            await self._consume_credit(tenant.id, run)
            await self._update(
                run,
                HistoryUpdate(
                    generated_description=description,
                    image_analysis=analysis,
                    credits_used=run.credits_used,
                ),
            )

        if update_meta:
            if (charged := _charged_meta(previous)) is not None:
                meta = charged
                run.advance(UnitStage.WRITING_META)
            else:
                run.advance(UnitStage.GENERATING_META)
                meta = await self._call(
                    "generate_meta",
                    self._provider.generate_meta(
                        item, analysis, settings.meta_title_template, settings.meta_desc_template
                    ),
                )

                run.advance(UnitStage.WRITING_META)
                await self._consume_credit(tenant.id, run)
                await self._update(
                    run, HistoryUpdate(generated_meta=meta, credits_used=run.credits_used)
                )
            if meta.title or meta.description:
                await self._call(
                    "write_seo",
                    self._catalog.write_seo(
                        unit.item_id, meta.title or None, meta.description or None
                    ),
                )
            else:
                run.log.info("meta_empty_skipping_write")

        run.advance(UnitStage.COMPLETED)
        await self._update(run, HistoryUpdate(status="completed", completed_at=self._clock()))
        run.log.info("unit_completed", credits_used=run.credits_used)


class UnitActivities:
    """Processes one unit from ids alone, in-process or on a Temporal worker."""

    def __init__(
        self,
        tenants: TenantStore,
        ledger: CreditLedger,
        history: HistoryStore,
        provider: GenerationProvider,
        catalog_factory: CatalogFactory,
        call_timeout: float = 120.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._tenants = tenants
        self._ledger = ledger
        self._history = history
        self._provider = provider
        self._catalog_factory = catalog_factory
        self._call_timeout = call_timeout
        self._clock = clock

    async def run_unit(self, data: ProcessUnitInput, *, resumable: bool = False) -> UnitOutcome:
        tenant = await self._tenants.get(data.tenant_id)
        processor = ItemProcessor(
            self._catalog_factory(tenant),
            self._provider,
            self._ledger,
            self._history,
            call_timeout=self._call_timeout,
            clock=self._clock,
            resumable=resumable,
        )
        return await processor.process(
            tenant,
            data.unit,
            tone=data.tone,
            update_meta=data.update_meta,
            record_id=unit_record_id(data.batch_id, data.unit.item_id),
        )

    @activity.defn(name="process_unit")
    async def process_unit(self, data: ProcessUnitInput) -> UnitOutcome:
        structlog.contextvars.bind_contextvars(
            batch_id=data.batch_id,
            tenant_id=data.tenant_id,
            attempt=activity.info().attempt,
        )
        return await self.run_unit(data, resumable=True)
