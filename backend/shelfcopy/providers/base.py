"""Generation capability interface.

The item processor only ever sees ``GenerationProvider``. Concrete providers
are chosen once at startup (see shelfcopy.dependencies).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from shelfcopy.errors import GenerationError
from shelfcopy.models.contracts import GeneratedMeta, ItemDetail
from shelfcopy.providers.formatting import finalize_meta, format_description, normalize_analysis
from shelfcopy.providers.prompts import (
    ANALYSIS_TEMPERATURE,
    DESCRIPTION_MAX_TOKENS,
    META_MAX_TOKENS,
    META_TEMPERATURE,
    analysis_max_tokens,
    build_analysis_prompt,
    build_description_prompt,
    build_meta_prompt,
)
from shelfcopy.utils.http import FetchedImage, fetch_image
from shelfcopy.utils.json_extract import extract_json_object

log = structlog.get_logger("providers")


class GenerationProvider(ABC):
    name: str = "abstract"

    @abstractmethod
    async def analyze_image(self, image_url: str, depth: str) -> dict[str, Any]:
        """Structured visual analysis of one product image."""

    @abstractmethod
    async def generate_description(
        self,
        item: ItemDetail,
        analysis: dict[str, Any],
        tone: str | None,
        template: str,
    ) -> str: ...

    @abstractmethod
    async def generate_meta(
        self,
        item: ItemDetail,
        analysis: dict[str, Any],
        title_template: str,
        description_template: str,
    ) -> GeneratedMeta: ...


class ModelBackedProvider(GenerationProvider):
    """Shared prompt/parse flow; subclasses implement the two raw model calls."""

    def __init__(self, http_client: httpx.AsyncClient, model: str) -> None:
        self._http = http_client
        self.model = model

    @abstractmethod
    async def _complete_vision(
        self, prompt: str, image: FetchedImage, *, max_tokens: int, temperature: float
    ) -> str: ...

    @abstractmethod
    async def _complete_text(
        self, system: str | None, prompt: str, *, max_tokens: int, temperature: float
    ) -> str: ...

    async def analyze_image(self, image_url: str, depth: str) -> dict[str, Any]:
        image = await fetch_image(self._http, image_url)
        text = await self._complete_vision(
            build_analysis_prompt(depth),
            image,
            max_tokens=analysis_max_tokens(depth),
            temperature=ANALYSIS_TEMPERATURE,
        )
        data = extract_json_object(text)
        if data is None:
            log.warning("analysis_no_json", provider=self.name, text=text[:200])
            raise GenerationError(f"{self.name} analysis returned no JSON object")
        return normalize_analysis(data)

    async def generate_description(
        self,
        item: ItemDetail,
        analysis: dict[str, Any],
        tone: str | None,
        template: str,
    ) -> str:
        system, prompt, temperature = build_description_prompt(item, analysis, tone, template)
        text = await self._complete_text(
            system, prompt, max_tokens=DESCRIPTION_MAX_TOKENS, temperature=temperature
        )
        return format_description(text.strip(), template)

    async def generate_meta(
        self,
        item: ItemDetail,
        analysis: dict[str, Any],
        title_template: str,
        description_template: str,
    ) -> GeneratedMeta:
        prompt = build_meta_prompt(item, analysis, title_template, description_template)
        text = await self._complete_text(
            None, prompt, max_tokens=META_MAX_TOKENS, temperature=META_TEMPERATURE
        )
        data = extract_json_object(text)
        if data is None:
            log.warning("meta_no_json", provider=self.name, text=text[:200])
            raise GenerationError(f"{self.name} meta generation returned no JSON object")
        return finalize_meta(data, description_template)
