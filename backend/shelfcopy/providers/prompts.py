"""Prompt construction shared by every generation provider.

Templates live in backend/prompts/*.txt; tone profiles are code because each
carries a sampling temperature alongside its wording.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from shelfcopy.models.contracts import ItemDetail

PROMPTS_DIR = Path(__file__).resolve().parent.parent.parent / "prompts"

DESCRIPTION_MAX_TOKENS = 1000
META_MAX_TOKENS = 500
META_TEMPERATURE = 0.3
ANALYSIS_TEMPERATURE = 0.2

ANALYSIS_MAX_TOKENS = {"basic": 300, "standard": 500, "detailed": 800}
_DETAIL_LEVELS = {
    "basic": "basic",
    "standard": "standard",
    "detailed": "comprehensive and detailed",
}


@dataclass(frozen=True)
class ToneProfile:
    system: str
    instruction: str
    temperature: float


TONE_PROFILES: dict[str, ToneProfile] = {
    "professional": ToneProfile(
        system=(
            "You are a professional e-commerce copywriter who creates well-structured, "
            "informative product descriptions.\n"
            "- Use a professional, authoritative tone\n"
            "- Focus on technical details and specifications\n"
            "- Highlight practical benefits and applications\n"
            "- Use industry-standard terminology\n"
            "- Be precise and factual, avoiding hyperbole"
        ),
        instruction=(
            "Create a professional product description for the following product "
            "using the template provided. Maintain a professional and informative tone."
        ),
        temperature=0.5,
    ),
    "casual": ToneProfile(
        system=(
            "You are a friendly, conversational e-commerce copywriter who creates "
            "approachable and engaging product descriptions.\n"
            "- Write like you're talking to a friend\n"
            "- Prefer easy-to-understand benefits over technical jargon\n"
            "- Use contractions and conversational language\n"
            "- Include relatable scenarios"
        ),
        instruction=(
            "Create a casual, friendly product description for the following product "
            "using the template provided. Keep the tone conversational."
        ),
        temperature=0.5,
    ),
    "luxury": ToneProfile(
        system=(
            "You are an upscale, sophisticated e-commerce copywriter who creates elegant "
            "and premium product descriptions.\n"
            "- Use refined, sophisticated language\n"
            "- Emphasize exclusivity, craftsmanship and quality\n"
            "- Highlight premium materials and artisanal details\n"
            "- Create an aspirational atmosphere"
        ),
        instruction=(
            "Create a luxury product description for the following product using the "
            "template provided. Emphasize premium quality and craftsmanship."
        ),
        temperature=0.5,
    ),
    "minimal": ToneProfile(
        system=(
            "You are a minimalist e-commerce copywriter who creates clean, concise and "
            "modern product descriptions.\n"
            "- Use brief, efficient language with no fluff\n"
            "- Use short sentences and paragraphs\n"
            "- Focus on key features only"
        ),
        instruction=(
            "Create a minimalist product description for the following product using "
            "the template provided. Focus only on essential information."
        ),
        temperature=0.3,
    ),
    "enthusiastic": ToneProfile(
        system=(
            "You are an energetic e-commerce copywriter who creates dynamic and exciting "
            "product descriptions.\n"
            "- Use vibrant, energetic language\n"
            "- Use exciting adjectives and superlatives appropriately\n"
            "- Be passionate about the product's benefits"
        ),
        instruction=(
            "Create an enthusiastic, energetic product description for the following "
            "product using the template provided. Convey genuine excitement."
        ),
        temperature=0.8,
    ),
}


def tone_profile(tone: str | None) -> ToneProfile:
    """Profile for ``tone``; unknown or missing tones fall back to professional."""
    return TONE_PROFILES.get(tone or "", TONE_PROFILES["professional"])


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    return (PROMPTS_DIR / f"{name}.txt").read_text()


def analysis_max_tokens(depth: str) -> int:
    return ANALYSIS_MAX_TOKENS.get(depth, ANALYSIS_MAX_TOKENS["standard"])


def build_analysis_prompt(depth: str) -> str:
    detail_level = _DETAIL_LEVELS.get(depth, "standard")
    return load_prompt("analyze_product").format(detail_level=detail_level)


def _product_data(item: ItemDetail) -> str:
    data = item.model_dump(
        include={"title", "description", "product_type", "vendor", "tags", "variants"},
        exclude_none=True,
    )
    return json.dumps(data, indent=2, default=str)


def _analysis_json(analysis: dict[str, Any] | None) -> str:
    return json.dumps(analysis or {}, indent=2, default=str)


def build_description_prompt(
    item: ItemDetail, analysis: dict[str, Any], tone: str | None, template: str
) -> tuple[str, str, float]:
    """Return ``(system, user, temperature)`` for the description call."""
    profile = tone_profile(tone)
    user = load_prompt("describe_product").format(
        tone_instruction=profile.instruction,
        product_data=_product_data(item),
        image_analysis=_analysis_json(analysis),
        template=template,
    )
    return profile.system, user, profile.temperature


def build_meta_prompt(
    item: ItemDetail,
    analysis: dict[str, Any],
    title_template: str,
    description_template: str,
) -> str:
    return load_prompt("seo_meta").format(
        product_data=_product_data(item),
        image_analysis=_analysis_json(analysis),
        title_template=title_template,
        description_template=description_template,
    )
