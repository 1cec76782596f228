"""Deterministic provider for local development without API keys."""

from __future__ import annotations

from typing import Any

import structlog

from shelfcopy.models.contracts import GeneratedMeta, ItemDetail
from shelfcopy.providers.base import GenerationProvider
from shelfcopy.providers.formatting import format_description, truncate_meta_description
from shelfcopy.providers.prompts import tone_profile

log = structlog.get_logger("mock_provider")


class MockProvider(GenerationProvider):
    name = "mock"

    async def analyze_image(self, image_url: str, depth: str) -> dict[str, Any]:
        log.info("mock_analyze_image", image_url=image_url[:100], depth=depth)
        return {
            "productType": "sample product",
            "materials": ["cotton"],
            "colors": ["white"],
            "features": ["lightweight", "durable"],
            "style": "modern",
        }

    async def generate_description(
        self,
        item: ItemDetail,
        analysis: dict[str, Any],
        tone: str | None,
        template: str,
    ) -> str:
        features = analysis.get("features") or []
        profile = tone_profile(tone)
        text = f"{item.title or 'This product'}, written in a {tone or 'professional'} voice."
        if features:
            text += "\n\n" + "\n\n".join(str(f).capitalize() for f in features)
        log.info("mock_generate_description", item_id=item.id, temperature=profile.temperature)
        return format_description(text, template)

    async def generate_meta(
        self,
        item: ItemDetail,
        analysis: dict[str, Any],
        title_template: str,
        description_template: str,
    ) -> GeneratedMeta:
        title = (item.title or "Product")[:60]
        description = f"Discover {item.title or 'this product'}. Shop now."
        return GeneratedMeta(
            title=title,
            description=truncate_meta_description(description, description_template),
        )
