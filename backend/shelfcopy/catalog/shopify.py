"""Shopify Admin GraphQL implementation of the catalog operations.

One instance per shop. Transport failures raise CatalogError; ``userErrors``
on a mutation raise CatalogWriteError; a null product or collection raises
NotFoundError.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from shelfcopy.errors import CatalogError, CatalogWriteError, NotFoundError
from shelfcopy.models.contracts import (
    CollectionPage,
    ItemDetail,
    ProductImage,
    SeoFields,
)

log = structlog.get_logger("shopify")

_GID_PREFIX = "gid://shopify/"

GET_PRODUCT_QUERY = """
query GetProductDetail($id: ID!) {
  product(id: $id) {
    id
    title
    handle
    description
    descriptionHtml
    productType
    vendor
    tags
    featuredImage { url altText }
    images(first: 10) { edges { node { url altText } } }
    metafields(first: 10) { edges { node { namespace key value type } } }
    seo { title description }
    variants(first: 10) {
      edges { node { id title price compareAtPrice sku barcode inventoryQuantity } }
    }
  }
}
"""

GET_COLLECTION_PRODUCTS_QUERY = """
query GetCollectionProducts($id: ID!, $first: Int!, $after: String) {
  collection(id: $id) {
    products(first: $first, after: $after) {
      edges { node { id } }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

UPDATE_DESCRIPTION_MUTATION = """
mutation ProductDescriptionUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { id }
    userErrors { field message }
  }
}
"""

UPDATE_SEO_MUTATION = """
mutation ProductSeoUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { id seo { title description } }
    userErrors { field message }
  }
}
"""


def to_gid(kind: str, raw_id: str) -> str:
    """``gid://shopify/<kind>/<id>`` for bare ids; gids pass through."""
    raw_id = raw_id.strip()
    if raw_id.startswith(_GID_PREFIX):
        return raw_id
    return f"{_GID_PREFIX}{kind}/{raw_id}"


def _nodes(connection: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not connection:
        return []
    return [edge["node"] for edge in connection.get("edges", []) if edge.get("node")]


def _image(data: dict[str, Any] | None) -> ProductImage | None:
    if not data or not data.get("url"):
        return None
    return ProductImage(url=data["url"], alt_text=data.get("altText"))


def parse_product(product: dict[str, Any]) -> ItemDetail:
    seo = product.get("seo") or {}
    return ItemDetail(
        id=product["id"],
        title=product.get("title") or "",
        handle=product.get("handle"),
        description=product.get("description") or "",
        description_html=product.get("descriptionHtml") or "",
        product_type=product.get("productType") or None,
        vendor=product.get("vendor") or None,
        tags=product.get("tags") or [],
        featured_image=_image(product.get("featuredImage")),
        images=[img for node in _nodes(product.get("images")) if (img := _image(node))],
        seo=SeoFields(title=seo.get("title"), description=seo.get("description")),
        metafields=_nodes(product.get("metafields")),
        variants=_nodes(product.get("variants")),
    )


class ShopifyCatalog:
    def __init__(
        self,
        client: httpx.AsyncClient,
        shop_domain: str,
        access_token: str,
        api_version: str = "2024-10",
    ) -> None:
        self._client = client
        self._shop_domain = shop_domain
        self._endpoint = f"https://{shop_domain}/admin/api/{api_version}/graphql.json"
        self._headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
        }

    def item_ref(self, raw_id: str) -> str:
        return to_gid("Product", raw_id)

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                self._endpoint,
                json={"query": query, "variables": variables},
                headers=self._headers,
            )
        except httpx.TimeoutException as exc:
            raise CatalogError(
                f"Timeout calling Shopify for {self._shop_domain}", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise CatalogError(
                f"Network error calling Shopify: {type(exc).__name__}", retryable=True
            ) from exc

        if response.status_code >= 400:
            log.error("shopify_http_error", shop=self._shop_domain, status=response.status_code)
            raise CatalogError(
                f"Shopify returned HTTP {response.status_code}",
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        body = response.json()
        if body.get("errors"):
            log.error("shopify_graphql_errors", shop=self._shop_domain, errors=body["errors"])
            first = body["errors"][0]
            message = first.get("message", "unknown") if isinstance(first, dict) else str(first)
            raise CatalogError(f"Shopify GraphQL error: {message}")
        return body.get("data") or {}

    def _raise_user_errors(self, data: dict[str, Any], item_id: str) -> None:
        user_errors = (data.get("productUpdate") or {}).get("userErrors") or []
        if user_errors:
            log.warning("shopify_user_errors", item_id=item_id, user_errors=user_errors)
            raise CatalogWriteError(
                f"Failed to update product: {user_errors[0].get('message', 'unknown')}",
                user_errors=user_errors,
            )

    async def fetch_item_detail(self, item_id: str) -> ItemDetail:
        gid = self.item_ref(item_id)
        data = await self._graphql(GET_PRODUCT_QUERY, {"id": gid})
        product = data.get("product")
        if product is None:
            raise NotFoundError(f"Product {gid} not found")
        return parse_product(product)

    async def fetch_collection_members(
        self, collection_id: str, cursor: str | None = None, page_size: int = 50
    ) -> CollectionPage:
        gid = to_gid("Collection", collection_id)
        data = await self._graphql(
            GET_COLLECTION_PRODUCTS_QUERY, {"id": gid, "first": page_size, "after": cursor}
        )
        collection = data.get("collection")
        if collection is None:
            raise NotFoundError(f"Collection {gid} not found")
        products = collection.get("products") or {}
        page_info = products.get("pageInfo") or {}
        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
        return CollectionPage(
            item_ids=[node["id"] for node in _nodes(products)],
            next_cursor=next_cursor,
        )

    async def write_description(self, item_id: str, html: str) -> None:
        gid = self.item_ref(item_id)
        data = await self._graphql(
            UPDATE_DESCRIPTION_MUTATION, {"input": {"id": gid, "descriptionHtml": html}}
        )
        self._raise_user_errors(data, gid)

    async def write_seo(
        self, item_id: str, title: str | None = None, description: str | None = None
    ) -> None:
        seo = {k: v for k, v in (("title", title), ("description", description)) if v is not None}
        if not seo:
            return
        gid = self.item_ref(item_id)
        data = await self._graphql(UPDATE_SEO_MUTATION, {"input": {"id": gid, "seo": seo}})
        self._raise_user_errors(data, gid)
