"""Tests for the in-memory history store and progress math."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from shelfcopy.errors import HistoryTransitionError, NotFoundError
from shelfcopy.models.contracts import (
    GeneratedMeta,
    HistoryFilters,
    HistoryUpdate,
    ProcessingUnit,
    StatusCounts,
)
from shelfcopy.stores.history import InMemoryHistoryStore, overall_progress


class SteppingClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 5, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore(clock=SteppingClock())


class TestRecordLifecycle:
    @pytest.mark.asyncio
    async def test_create_starts_processing(self, store) -> None:
        record_id = await store.create("t1", ProcessingUnit(item_id="A"))
        record = await store.get(record_id)
        assert record.status == "processing"
        assert record.credits_used == 0
        assert record.item_id == "A"

    @pytest.mark.asyncio
    async def test_update_applies_only_set_fields(self, store) -> None:
        record_id = await store.create("t1", ProcessingUnit(item_id="A"))
        await store.update(record_id, HistoryUpdate(item_title="Mug"))
        await store.update(record_id, HistoryUpdate(credits_used=1))
        record = await store.get(record_id)
        assert record.item_title == "Mug"
        assert record.credits_used == 1

    @pytest.mark.asyncio
    async def test_terminal_record_rejects_updates(self, store) -> None:
        """A completed record cannot be moved back to processing."""
        record_id = await store.create("t1", ProcessingUnit(item_id="A"))
        await store.update(record_id, HistoryUpdate(status="completed"))
        with pytest.raises(HistoryTransitionError):
            await store.update(record_id, HistoryUpdate(status="processing"))
        assert (await store.get(record_id)).status == "completed"

    @pytest.mark.asyncio
    async def test_unknown_record(self, store) -> None:
        with pytest.raises(NotFoundError):
            await store.update("missing", HistoryUpdate(status="error"))

    @pytest.mark.asyncio
    async def test_meta_is_stored(self, store) -> None:
        record_id = await store.create("t1", ProcessingUnit(item_id="A"))
        await store.update(record_id, HistoryUpdate(generated_meta=GeneratedMeta(title="T")))
        assert (await store.get(record_id)).generated_meta.title == "T"


class TestQueries:
    async def _seed(self, store: InMemoryHistoryStore) -> list[str]:
        ids = []
        for item_id, status in [("A", "completed"), ("B", "error"), ("C", "processing")]:
            record_id = await store.create("t1", ProcessingUnit(item_id=item_id))
            if status != "processing":
                await store.update(record_id, HistoryUpdate(status=status, credits_used=1))
            ids.append(record_id)
        await store.create("other", ProcessingUnit(item_id="Z"))
        return ids

    @pytest.mark.asyncio
    async def test_newest_first_and_paged(self, store) -> None:
        await self._seed(store)
        page = await store.query("t1", HistoryFilters(), page=1, page_size=2)
        assert [r.item_id for r in page.records] == ["C", "B"]
        assert page.total_count == 3
        page2 = await store.query("t1", HistoryFilters(), page=2, page_size=2)
        assert [r.item_id for r in page2.records] == ["A"]

    @pytest.mark.asyncio
    async def test_filters(self, store) -> None:
        await self._seed(store)
        by_status = await store.query("t1", HistoryFilters(status="error"), 1, 50)
        assert [r.item_id for r in by_status.records] == ["B"]
        by_item = await store.query("t1", HistoryFilters(item_id="A"), 1, 50)
        assert by_item.total_count == 1

    @pytest.mark.asyncio
    async def test_status_counts_scoped_to_tenant(self, store) -> None:
        await self._seed(store)
        counts = await store.status_counts("t1", HistoryFilters())
        assert counts == StatusCounts(total=3, completed=1, error=1, processing=1)

    @pytest.mark.asyncio
    async def test_credits_used_since(self, store) -> None:
        await self._seed(store)
        assert await store.credits_used_since("t1", datetime(2026, 1, 1, tzinfo=UTC)) == 2
        assert await store.credits_used_since("t1", datetime(2027, 1, 1, tzinfo=UTC)) == 0


class TestOverallProgress:
    def test_empty_is_zero(self) -> None:
        assert overall_progress(StatusCounts()) == 0

    def test_terminal_share(self) -> None:
        assert overall_progress(StatusCounts(total=3, completed=1, error=1, processing=1)) == 67
