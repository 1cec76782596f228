"""Gemini-backed generation provider (google-genai SDK)."""

from __future__ import annotations

import asyncio

import httpx
import structlog
from google import genai
from google.genai import types

from shelfcopy.errors import GenerationError
from shelfcopy.providers.base import ModelBackedProvider
from shelfcopy.utils.http import FetchedImage
from shelfcopy.utils.tracing import wrap_gemini

log = structlog.get_logger("gemini_provider")


def extract_text(response: types.GenerateContentResponse) -> str:
    """Extract all text parts from a Gemini response."""
    if not response.candidates:
        return ""
    content = response.candidates[0].content
    if content is None or content.parts is None:
        return ""
    return "\n".join(part.text for part in content.parts if part.text is not None)


def _classify(exc: Exception) -> GenerationError:
    error_type = type(exc).__name__
    error_msg = str(exc)
    # TODO: Catch typed google.genai exceptions when SDK stabilizes
    if "429" in error_msg or "RESOURCE_EXHAUSTED" in error_msg:
        return GenerationError("Gemini rate limited", retryable=True)
    if "SAFETY" in error_msg or "blocked" in error_msg.lower():
        return GenerationError(f"Content policy violation: {error_msg[:200]}")
    return GenerationError(f"Gemini call failed: {error_type}: {error_msg[:200]}", retryable=True)


class GeminiProvider(ModelBackedProvider):
    name = "gemini"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        model: str,
        client: genai.Client | None = None,
    ) -> None:
        super().__init__(http_client, model)
        if client is None:
            if not api_key:
                raise ValueError("GOOGLE_AI_API_KEY not set")
            client = wrap_gemini(genai.Client(api_key=api_key))
        self._client = client

    async def _generate(self, contents: list, config: types.GenerateContentConfig) -> str:
        try:
            # Sync SDK call runs in the thread pool; the caller bounds it with a timeout
            response = await asyncio.to_thread(
                self._client.models.generate_content,
                model=self.model,
                contents=contents,
                config=config,
            )
        except Exception as e:
            error = _classify(e)
            log.warning("gemini_call_failed", error_type=type(e).__name__, retryable=error.retryable)
            raise error from e
        return extract_text(response)

    async def _complete_vision(
        self, prompt: str, image: FetchedImage, *, max_tokens: int, temperature: float
    ) -> str:
        contents = [types.Part.from_bytes(data=image.data, mime_type=image.mime_type), prompt]
        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type="application/json",
        )
        return await self._generate(contents, config)

    async def _complete_text(
        self, system: str | None, prompt: str, *, max_tokens: int, temperature: float
    ) -> str:
        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=temperature,
            max_output_tokens=max_tokens,
            top_k=40,
            top_p=0.95,
        )
        return await self._generate([prompt], config)
