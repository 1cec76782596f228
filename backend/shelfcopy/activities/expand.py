"""Batch expansion: request ids + collections -> flat, de-duplicated units."""

from __future__ import annotations

import structlog

from shelfcopy.catalog.base import Catalog
from shelfcopy.models.contracts import ProcessingUnit

log = structlog.get_logger("expand")


async def expand_batch(
    catalog: Catalog,
    item_ids: list[str],
    collection_ids: list[str],
    page_size: int = 50,
) -> list[ProcessingUnit]:
    """Direct ids first in request order, then each collection's members.

    Every id goes through ``catalog.item_ref`` so the same item named two
    ways yields one unit; first occurrence wins. An unknown collection
    raises NotFoundError before anything is returned.
    """
    seen: set[str] = set()
    units: list[ProcessingUnit] = []

    def add(raw_id: str) -> None:
        ref = catalog.item_ref(raw_id)
        if ref not in seen:
            seen.add(ref)
            units.append(ProcessingUnit(item_id=ref))

    for raw_id in item_ids:
        add(raw_id)

    for collection_id in collection_ids:
        cursor: str | None = None
        visited: set[str] = set()
        pages = 0
        while True:
            page = await catalog.fetch_collection_members(collection_id, cursor, page_size)
            pages += 1
            for raw_id in page.item_ids:
                add(raw_id)
            if page.next_cursor is None:
                break
            if page.next_cursor in visited:
                log.warning(
                    "collection_cursor_repeated",
                    collection_id=collection_id,
                    cursor=page.next_cursor,
                )
                break
            visited.add(page.next_cursor)
            cursor = page.next_cursor
        log.debug("collection_expanded", collection_id=collection_id, pages=pages)

    return units
