"""The four catalog operations the pipeline depends on."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from shelfcopy.models.contracts import CollectionPage, ItemDetail, Tenant


class Catalog(Protocol):
    def item_ref(self, raw_id: str) -> str:
        """Canonical identity for an item id in any accepted form."""
        ...

    async def fetch_item_detail(self, item_id: str) -> ItemDetail:
        """Raises NotFoundError when the item does not exist."""
        ...

    async def fetch_collection_members(
        self, collection_id: str, cursor: str | None = None, page_size: int = 50
    ) -> CollectionPage:
        """One page of item ids. Raises NotFoundError for unknown collections."""
        ...

    async def write_description(self, item_id: str, html: str) -> None: ...

    async def write_seo(
        self, item_id: str, title: str | None = None, description: str | None = None
    ) -> None: ...


CatalogFactory = Callable[[Tenant], Catalog]
