"""Integration tests for the FastAPI endpoints against in-memory stores."""

from __future__ import annotations

import pytest

from conftest import TENANT_ID

HEADERS = {"X-Tenant-ID": TENANT_ID}


class TestSubmitBatch:
    """POST /api/v1/batches"""

    @pytest.mark.asyncio
    async def test_accepts_batch(self, client, catalog, container):
        catalog.add_items("A", "B")
        resp = await client.post(
            "/api/v1/batches", json={"item_ids": ["A", "B"]}, headers=HEADERS
        )
        assert resp.status_code == 202
        body = resp.json()
        assert body["accepted"] is True
        assert body["estimated_units"] == 2
        assert body["estimated_credits"] == 4
        assert resp.headers["X-RateLimit-Limit"] == "10"
        await container.service.drain()

    @pytest.mark.asyncio
    async def test_empty_targets_is_validation_error(self, client):
        resp = await client.post("/api/v1/batches", json={}, headers=HEADERS)
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_missing_tenant_header(self, client):
        resp = await client.post("/api/v1/batches", json={"item_ids": ["A"]})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_insufficient_credits_returns_402(self, client, catalog):
        ids = [f"P{i}" for i in range(30)]
        catalog.add_items(*ids)
        resp = await client.post("/api/v1/batches", json={"item_ids": ids}, headers=HEADERS)
        assert resp.status_code == 402
        body = resp.json()
        assert body["error"] == "insufficient_credits"
        assert body["retryable"] is False

    @pytest.mark.asyncio
    async def test_unknown_tenant_returns_404(self, client):
        resp = await client.post(
            "/api/v1/batches", json={"item_ids": ["A"]}, headers={"X-Tenant-ID": "nobody"}
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"


class TestProcessingStatus:
    """GET /api/v1/processing/status"""

    @pytest.mark.asyncio
    async def test_reports_progress(self, client, catalog, container):
        catalog.add_items("A")
        await client.post("/api/v1/batches", json={"item_ids": ["A"]}, headers=HEADERS)
        await container.service.drain()

        resp = await client.get("/api/v1/processing/status", headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["stats"]["completed"] == 1
        assert body["overall_progress"] == 100
        assert body["pagination"] == {"page": 1, "limit": 50, "total_items": 1, "total_pages": 1}
        assert body["records"][0]["credits_used"] == 2

    @pytest.mark.asyncio
    async def test_invalid_status_filter(self, client):
        resp = await client.get("/api/v1/processing/status?status=bogus", headers=HEADERS)
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_sixth_request_rate_limited(self, client):
        for _ in range(5):
            resp = await client.get("/api/v1/processing/status", headers=HEADERS)
            assert resp.status_code == 200
        resp = await client.get("/api/v1/processing/status", headers=HEADERS)
        assert resp.status_code == 429
        assert resp.json()["error"] == "rate_limited"
        assert 0 < int(resp.headers["Retry-After"]) <= 60
        assert resp.headers["X-RateLimit-Limit"] == "5"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_item_filter_accepts_gid(self, client, catalog, container):
        catalog.add_items("123", "456")
        await client.post("/api/v1/batches", json={"item_ids": ["123", "456"]}, headers=HEADERS)
        await container.service.drain()

        resp = await client.get(
            "/api/v1/processing/status",
            params={"item_id": "gid://shopify/Product/123"},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["pagination"]["total_items"] == 1
        assert body["records"][0]["item_id"] == "123"


class TestCredits:
    @pytest.mark.asyncio
    async def test_summary(self, client):
        resp = await client.get("/api/v1/credits", headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["available"] == 50
        assert body["plan"] == "FREE"
        assert body["usage_trend"] == 0

    @pytest.mark.asyncio
    async def test_purchase(self, client):
        resp = await client.post(
            "/api/v1/credits/purchase", json={"amount": 25}, headers=HEADERS
        )
        assert resp.status_code == 200
        assert resp.json()["credits"]["available"] == 75

    @pytest.mark.asyncio
    async def test_purchase_rejects_non_positive(self, client):
        resp = await client.post("/api/v1/credits/purchase", json={"amount": 0}, headers=HEADERS)
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client):
        resp = await client.get("/api/v1/credits", headers={"X-Tenant-ID": "nobody"})
        assert resp.status_code == 404


class TestShops:
    """POST /api/v1/shops, GET and PUT /api/v1/settings"""

    @pytest.mark.asyncio
    async def test_install_new_shop(self, client, container):
        resp = await client.post(
            "/api/v1/shops",
            json={"shop_domain": "shop-2.myshopify.com", "access_token": "shpat_2"},
            headers={"X-Tenant-ID": "shop-2"},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["created"] is True
        assert body["settings"]["default_tone"] == "professional"
        assert body["credits"]["available"] == 50
        assert (await container.ledger.get_balance("shop-2")).plan == "FREE"

    @pytest.mark.asyncio
    async def test_reinstall_keeps_balance(self, client, container):
        await container.ledger.consume(TENANT_ID, 5)
        resp = await client.post(
            "/api/v1/shops",
            json={"shop_domain": "shop-1.myshopify.com", "access_token": "shpat_new"},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["created"] is False
        assert resp.json()["credits"]["available"] == 45
        assert (await container.tenants.get(TENANT_ID)).access_token == "shpat_new"

    @pytest.mark.asyncio
    async def test_install_requires_token(self, client):
        resp = await client.post(
            "/api/v1/shops", json={"shop_domain": "shop-3.myshopify.com"}, headers=HEADERS
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_get_settings(self, client):
        resp = await client.get("/api/v1/settings", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["default_tone"] == "casual"
        assert resp.json()["visual_analysis_depth"] == "detailed"

    @pytest.mark.asyncio
    async def test_put_settings_is_partial(self, client):
        resp = await client.put(
            "/api/v1/settings",
            json={"default_tone": "minimal", "meta_title_template": "", "include_meta": None},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["default_tone"] == "minimal"
        assert body["include_meta"] is True
        assert body["meta_title_template"] == "[title] - [primary_keyword] | [brand_name]"
        assert body["visual_analysis_depth"] == "detailed"

        again = await client.get("/api/v1/settings", headers=HEADERS)
        assert again.json() == body

    @pytest.mark.asyncio
    async def test_put_settings_rejects_unknown_tone(self, client):
        resp = await client.put(
            "/api/v1/settings", json={"default_tone": "shouty"}, headers=HEADERS
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_settings_unknown_tenant(self, client):
        resp = await client.get("/api/v1/settings", headers={"X-Tenant-ID": "nobody"})
        assert resp.status_code == 404


class TestCrossCutting:
    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_error_responses_carry_request_id(self, client):
        resp = await client.get("/api/v1/credits", headers={"X-Tenant-ID": "nobody"})
        assert resp.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["postgres"] == "not_configured"
        assert body["generation_provider"] == "scripted"
