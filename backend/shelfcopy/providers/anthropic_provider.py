"""Claude-backed generation provider."""

from __future__ import annotations

import base64
from typing import Any

import anthropic
import httpx
import structlog

from shelfcopy.errors import GenerationError
from shelfcopy.providers.base import ModelBackedProvider
from shelfcopy.utils.http import FetchedImage
from shelfcopy.utils.tracing import wrap_anthropic

log = structlog.get_logger("anthropic_provider")


def extract_text(response: anthropic.types.Message) -> str:
    """Concatenate the text blocks of a Claude response."""
    return "".join(block.text for block in response.content if block.type == "text")


class AnthropicProvider(ModelBackedProvider):
    name = "anthropic"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        model: str,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        super().__init__(http_client, model)
        if client is None:
            if not api_key:
                raise ValueError("ANTHROPIC_API_KEY not set")
            client = wrap_anthropic(anthropic.AsyncAnthropic(api_key=api_key))
        self._client = client

    async def _create(self, **kwargs: Any) -> str:
        try:
            response = await self._client.messages.create(model=self.model, **kwargs)
        except anthropic.RateLimitError as e:
            log.warning("anthropic_rate_limited")
            raise GenerationError(f"Claude rate limited: {e}", retryable=True) from e
        except anthropic.APIStatusError as e:
            log.error("anthropic_api_error", status=e.status_code)
            raise GenerationError(
                f"Claude API error ({e.status_code}): {e}",
                retryable=e.status_code >= 500,
            ) from e
        except anthropic.APIConnectionError as e:
            log.warning("anthropic_connection_error", error_type=type(e).__name__)
            raise GenerationError(f"Claude connection error: {e}", retryable=True) from e
        return extract_text(response)

    async def _complete_vision(
        self, prompt: str, image: FetchedImage, *, max_tokens: int, temperature: float
    ) -> str:
        content: list[dict[str, Any]] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": base64.b64encode(image.data).decode("ascii"),
                },
            },
            {"type": "text", "text": prompt},
        ]
        return await self._create(
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": content}],
        )

    async def _complete_text(
        self, system: str | None, prompt: str, *, max_tokens: int, temperature: float
    ) -> str:
        kwargs: dict[str, Any] = {
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        return await self._create(**kwargs)
