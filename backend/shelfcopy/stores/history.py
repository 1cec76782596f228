"""Generation history: one record per processed unit.

Records are created when a unit starts (status=processing), updated in
place as stages complete, and frozen once they reach ``completed`` or
``error``. Status queries read from here; the pipeline never reports
per-unit outcomes any other way.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from shelfcopy.errors import HistoryTransitionError, NotFoundError
from shelfcopy.models.contracts import (
    TERMINAL_STATUSES,
    GeneratedMeta,
    HistoryFilters,
    HistoryPage,
    HistoryRecord,
    HistoryUpdate,
    ProcessingUnit,
    StatusCounts,
)
from shelfcopy.models.db import GenerationHistory

log = structlog.get_logger("history")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def overall_progress(counts: StatusCounts) -> int:
    """Percentage of records that reached a terminal state."""
    if counts.total == 0:
        return 0
    return round((counts.completed + counts.error) / counts.total * 100)


def _check_writable(record_id: str, status: str) -> None:
    if status in TERMINAL_STATUSES:
        raise HistoryTransitionError(f"History record {record_id} is already {status}")


class HistoryStore(ABC):
    @abstractmethod
    async def create(
        self, tenant_id: str, unit: ProcessingUnit, record_id: str | None = None
    ) -> str:
        """Insert a processing record for ``unit`` and return its id.

        A caller-chosen ``record_id`` lets a retried unit find its record again.
        """

    @abstractmethod
    async def update(self, record_id: str, changes: HistoryUpdate) -> None:
        """Apply the explicitly-set fields of ``changes``."""

    @abstractmethod
    async def get(self, record_id: str) -> HistoryRecord: ...

    @abstractmethod
    async def query(
        self,
        tenant_id: str,
        filters: HistoryFilters,
        page: int,
        page_size: int,
    ) -> HistoryPage:
        """Newest first, ``page`` is 1-based."""

    @abstractmethod
    async def status_counts(self, tenant_id: str, filters: HistoryFilters) -> StatusCounts: ...

    @abstractmethod
    async def credits_used_since(self, tenant_id: str, since: datetime) -> int: ...


class InMemoryHistoryStore(HistoryStore):
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._records: dict[str, HistoryRecord] = {}

    async def create(
        self, tenant_id: str, unit: ProcessingUnit, record_id: str | None = None
    ) -> str:
        record_id = record_id or str(uuid.uuid4())
        self._records[record_id] = HistoryRecord(
            id=record_id,
            tenant_id=tenant_id,
            item_id=unit.item_id,
            status="processing",
            created_at=self._clock(),
        )
        return record_id

    async def update(self, record_id: str, changes: HistoryUpdate) -> None:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"History record {record_id} not found")
        _check_writable(record_id, record.status)
        fields = {name: getattr(changes, name) for name in changes.model_fields_set}
        self._records[record_id] = record.model_copy(update=fields)

    async def get(self, record_id: str) -> HistoryRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"History record {record_id} not found")
        return record.model_copy()

    def _matching(self, tenant_id: str, filters: HistoryFilters) -> list[HistoryRecord]:
        return [
            r
            for r in self._records.values()
            if r.tenant_id == tenant_id
            and (filters.status is None or r.status == filters.status)
            and (filters.item_id is None or r.item_id == filters.item_id)
        ]

    async def query(
        self,
        tenant_id: str,
        filters: HistoryFilters,
        page: int,
        page_size: int,
    ) -> HistoryPage:
        matching = sorted(
            self._matching(tenant_id, filters), key=lambda r: r.created_at, reverse=True
        )
        start = (page - 1) * page_size
        return HistoryPage(
            records=[r.model_copy() for r in matching[start : start + page_size]],
            total_count=len(matching),
        )

    async def status_counts(self, tenant_id: str, filters: HistoryFilters) -> StatusCounts:
        counts = StatusCounts()
        for record in self._matching(tenant_id, filters):
            counts.total += 1
            setattr(counts, record.status, getattr(counts, record.status) + 1)
        return counts

    async def credits_used_since(self, tenant_id: str, since: datetime) -> int:
        return sum(
            r.credits_used
            for r in self._records.values()
            if r.tenant_id == tenant_id and r.created_at >= since
        )


def _row_to_record(row: GenerationHistory) -> HistoryRecord:
    return HistoryRecord(
        id=str(row.id),
        tenant_id=row.shop_id,
        item_id=row.item_id,
        item_title=row.item_title,
        original_description=row.original_description,
        generated_description=row.generated_description,
        image_analysis=row.image_analysis,
        generated_meta=GeneratedMeta(**row.generated_meta) if row.generated_meta else None,
        credits_used=row.credits_used,
        status=row.status,  # type: ignore[arg-type]
        error=row.error,
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


class SqlHistoryStore(HistoryStore):
    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @staticmethod
    def _filtered(stmt: Any, tenant_id: str, filters: HistoryFilters) -> Any:
        stmt = stmt.where(GenerationHistory.shop_id == tenant_id)
        if filters.status is not None:
            stmt = stmt.where(GenerationHistory.status == filters.status)
        if filters.item_id is not None:
            stmt = stmt.where(GenerationHistory.item_id == filters.item_id)
        return stmt

    async def create(
        self, tenant_id: str, unit: ProcessingUnit, record_id: str | None = None
    ) -> str:
        row = GenerationHistory(
            id=uuid.UUID(record_id) if record_id else uuid.uuid4(),
            shop_id=tenant_id,
            item_id=unit.item_id,
            status="processing",
            credits_used=0,
            created_at=self._clock(),
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
        return str(row.id)

    async def update(self, record_id: str, changes: HistoryUpdate) -> None:
        values = changes.model_dump(include=changes.model_fields_set)
        if not values:
            return
        row_id = uuid.UUID(record_id)
        async with self._session_factory() as session:
            result = await session.execute(
                update(GenerationHistory)
                .where(
                    GenerationHistory.id == row_id,
                    GenerationHistory.status.not_in(TERMINAL_STATUSES),
                )
                .values(**values)
            )
            if result.rowcount == 1:
                await session.commit()
                return
            await session.rollback()
            status = await session.scalar(
                select(GenerationHistory.status).where(GenerationHistory.id == row_id)
            )
        if status is None:
            raise NotFoundError(f"History record {record_id} not found")
        _check_writable(record_id, status)

    async def get(self, record_id: str) -> HistoryRecord:
        async with self._session_factory() as session:
            row = await session.get(GenerationHistory, uuid.UUID(record_id))
        if row is None:
            raise NotFoundError(f"History record {record_id} not found")
        return _row_to_record(row)

    async def query(
        self,
        tenant_id: str,
        filters: HistoryFilters,
        page: int,
        page_size: int,
    ) -> HistoryPage:
        stmt = (
            self._filtered(select(GenerationHistory), tenant_id, filters)
            .order_by(GenerationHistory.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        count_stmt = self._filtered(select(func.count(GenerationHistory.id)), tenant_id, filters)
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
            total = await session.scalar(count_stmt) or 0
        return HistoryPage(records=[_row_to_record(r) for r in rows], total_count=total)

    async def status_counts(self, tenant_id: str, filters: HistoryFilters) -> StatusCounts:
        stmt = self._filtered(
            select(GenerationHistory.status, func.count(GenerationHistory.id)),
            tenant_id,
            filters,
        ).group_by(GenerationHistory.status)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        counts = StatusCounts()
        for status, count in rows:
            if status in StatusCounts.model_fields:
                setattr(counts, status, count)
            counts.total += count
        return counts

    async def credits_used_since(self, tenant_id: str, since: datetime) -> int:
        stmt = select(func.coalesce(func.sum(GenerationHistory.credits_used), 0)).where(
            GenerationHistory.shop_id == tenant_id,
            GenerationHistory.created_at >= since,
        )
        async with self._session_factory() as session:
            return int(await session.scalar(stmt) or 0)
