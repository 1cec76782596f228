"""Tests for the Shopify Admin GraphQL catalog client."""

from __future__ import annotations

import json

import httpx
import pytest

from shelfcopy.catalog.shopify import ShopifyCatalog, to_gid
from shelfcopy.errors import CatalogError, CatalogWriteError, NotFoundError

PRODUCT = {
    "id": "gid://shopify/Product/7",
    "title": "Blue Mug",
    "handle": "blue-mug",
    "description": "A mug",
    "descriptionHtml": "<p>A mug</p>",
    "productType": "Mug",
    "vendor": "Acme",
    "tags": ["kitchen"],
    "featuredImage": None,
    "images": {"edges": [{"node": {"url": "https://cdn.test/7.jpg", "altText": None}}]},
    "metafields": {"edges": []},
    "seo": {"title": None, "description": None},
    "variants": {"edges": [{"node": {"id": "gid://shopify/ProductVariant/1", "price": "9.00"}}]},
}


class Recorder:
    """MockTransport handler returning queued GraphQL bodies."""

    def __init__(self, *bodies: dict, status: int = 200) -> None:
        self.bodies = list(bodies)
        self.status = status
        self.requests: list[dict] = []
        self.headers: list[httpx.Headers] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        return httpx.Response(self.status, json=self.bodies.pop(0) if self.bodies else {})


def _catalog(recorder: Recorder) -> ShopifyCatalog:
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return ShopifyCatalog(client, "shop-1.myshopify.com", "shpat_x", api_version="2024-10")


class TestItemRef:
    def test_bare_id_becomes_gid(self) -> None:
        assert to_gid("Product", "7") == "gid://shopify/Product/7"

    def test_gid_passes_through(self) -> None:
        assert to_gid("Product", "gid://shopify/Product/7") == "gid://shopify/Product/7"

    def test_catalog_item_ref(self) -> None:
        catalog = _catalog(Recorder())
        assert catalog.item_ref("7") == catalog.item_ref("gid://shopify/Product/7")


class TestFetchItemDetail:
    @pytest.mark.asyncio
    async def test_parses_product(self) -> None:
        recorder = Recorder({"data": {"product": PRODUCT}})
        item = await _catalog(recorder).fetch_item_detail("7")

        assert item.id == "gid://shopify/Product/7"
        assert item.description_html == "<p>A mug</p>"
        assert item.featured_image is None
        assert item.representative_image_url() == "https://cdn.test/7.jpg"
        assert item.variants[0]["price"] == "9.00"
        assert recorder.requests[0]["variables"] == {"id": "gid://shopify/Product/7"}
        assert recorder.headers[0]["X-Shopify-Access-Token"] == "shpat_x"

    @pytest.mark.asyncio
    async def test_missing_product(self) -> None:
        with pytest.raises(NotFoundError):
            await _catalog(Recorder({"data": {"product": None}})).fetch_item_detail("8")

    @pytest.mark.asyncio
    async def test_graphql_errors(self) -> None:
        recorder = Recorder({"errors": [{"message": "Throttled"}]})
        with pytest.raises(CatalogError, match="Throttled"):
            await _catalog(recorder).fetch_item_detail("7")

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        with pytest.raises(CatalogError) as exc_info:
            await _catalog(Recorder({}, status=502)).fetch_item_detail("7")
        assert exc_info.value.retryable is True


class TestCollectionMembers:
    @pytest.mark.asyncio
    async def test_page_with_cursor(self) -> None:
        recorder = Recorder(
            {
                "data": {
                    "collection": {
                        "products": {
                            "edges": [{"node": {"id": "gid://shopify/Product/1"}}],
                            "pageInfo": {"hasNextPage": True, "endCursor": "abc"},
                        }
                    }
                }
            }
        )
        page = await _catalog(recorder).fetch_collection_members("55", None, page_size=1)
        assert page.item_ids == ["gid://shopify/Product/1"]
        assert page.next_cursor == "abc"
        assert recorder.requests[0]["variables"] == {
            "id": "gid://shopify/Collection/55",
            "first": 1,
            "after": None,
        }

    @pytest.mark.asyncio
    async def test_last_page_has_no_cursor(self) -> None:
        body = {
            "data": {
                "collection": {
                    "products": {
                        "edges": [],
                        "pageInfo": {"hasNextPage": False, "endCursor": "zzz"},
                    }
                }
            }
        }
        page = await _catalog(Recorder(body)).fetch_collection_members("55", "abc")
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_missing_collection(self) -> None:
        with pytest.raises(NotFoundError):
            await _catalog(Recorder({"data": {"collection": None}})).fetch_collection_members("9")


class TestWrites:
    @pytest.mark.asyncio
    async def test_write_description(self) -> None:
        recorder = Recorder({"data": {"productUpdate": {"product": {"id": "x"}, "userErrors": []}}})
        await _catalog(recorder).write_description("7", "<p>New</p>")
        assert recorder.requests[0]["variables"]["input"] == {
            "id": "gid://shopify/Product/7",
            "descriptionHtml": "<p>New</p>",
        }

    @pytest.mark.asyncio
    async def test_user_errors_raise(self) -> None:
        recorder = Recorder(
            {
                "data": {
                    "productUpdate": {
                        "product": None,
                        "userErrors": [{"field": ["seo", "title"], "message": "Title too long"}],
                    }
                }
            }
        )
        with pytest.raises(CatalogWriteError, match="Title too long") as exc_info:
            await _catalog(recorder).write_seo("7", title="x" * 300)
        assert exc_info.value.user_errors[0]["field"] == ["seo", "title"]

    @pytest.mark.asyncio
    async def test_write_seo_omits_missing_fields(self) -> None:
        recorder = Recorder({"data": {"productUpdate": {"product": {"id": "x"}, "userErrors": []}}})
        await _catalog(recorder).write_seo("7", description="Short")
        assert recorder.requests[0]["variables"]["input"]["seo"] == {"description": "Short"}

    @pytest.mark.asyncio
    async def test_write_seo_with_nothing_is_noop(self) -> None:
        recorder = Recorder()
        await _catalog(recorder).write_seo("7")
        assert recorder.requests == []
