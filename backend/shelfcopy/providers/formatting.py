"""Post-processing of model output: analysis normalization, description
templating and the meta description length backstop."""

from __future__ import annotations

import re
from typing import Any

import structlog
from pydantic import ValidationError

from shelfcopy.models.contracts import GeneratedMeta, ProductAnalysis

log = structlog.get_logger("formatting")

META_DESCRIPTION_MAX = 155
_TRUNCATION_SUFFIX = "..."

_CANONICAL_KEYS = frozenset(
    field.alias or name for name, field in ProductAnalysis.model_fields.items()
)

# First alias found wins for each canonical key.
_ANALYSIS_ALIASES: dict[str, str] = {
    "product_type": "productType",
    "type": "productType",
    "material": "materials",
    "color": "colors",
    "colorPalette": "colors",
    "color_palette": "colors",
    "design": "style",
    "designElements": "style",
    "keyFeatures": "features",
    "key_features": "features",
    "target_audience": "targetAudience",
    "audience": "targetAudience",
    "uses": "useCases",
    "use_cases": "useCases",
    "applications": "useCases",
    "potentialUses": "useCases",
    "quality": "qualityImpression",
    "notes": "additionalNotes",
}

_TEMPLATE_MARKERS = ("[product_intro]", "[features_list]", "[technical_specs]")
_HTML_TAG = re.compile(r"</?[a-z][\s\S]*>", re.IGNORECASE)
_PARAGRAPH_BREAK = re.compile(r"\n\n+")


def _validated(data: dict[str, Any]) -> dict[str, Any]:
    return ProductAnalysis.model_validate(data).model_dump(by_alias=True, exclude_none=True)


def normalize_analysis(raw: dict[str, Any]) -> dict[str, Any]:
    """Coerce a vision model's JSON into the product analysis shape.

    Tried in order: the canonical schema (extra keys kept), a remap of known
    alias keys, and finally the raw object untouched. Canonical keys the
    schema rejected survive the remap as sent, unless an alias supplies them.
    """
    rejected: set[str] = set()
    if _CANONICAL_KEYS.intersection(raw):
        try:
            return _validated(raw)
        except ValidationError as exc:
            log.warning("analysis_schema_mismatch", errors=exc.error_count())
            rejected = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}

    remapped: dict[str, Any] = {}
    leftovers: dict[str, Any] = {}
    for key, value in raw.items():
        canonical = _ANALYSIS_ALIASES.get(key)
        if canonical is None:
            if key not in rejected:
                leftovers[key] = value
        elif canonical not in remapped:
            remapped[canonical] = value
    if remapped:
        try:
            result = _validated({**leftovers, **remapped})
        except ValidationError as exc:
            log.warning("analysis_alias_remap_failed", errors=exc.error_count())
        else:
            for key in rejected.difference(remapped):
                if key in raw:
                    result[key] = raw[key]
            return result

    return dict(raw)


def format_description(description: str, template: str) -> str:
    """Fit plain model output into an HTML template when needed."""
    if not description:
        return ""
    if any(marker in description for marker in _TEMPLATE_MARKERS):
        return description
    if not template or not template.strip():
        return description

    is_html = bool(_HTML_TAG.search(description))
    if "<" not in template or is_html:
        return description

    intro, *features = _PARAGRAPH_BREAK.split(description)
    features_list = ""
    if features:
        features_list = "<ul>" + "".join(f"<li>{f.strip()}</li>" for f in features) + "</ul>"
    return (
        template.replace("[product_intro]", intro, 1)
        .replace("[features_list]", features_list, 1)
        .replace("[technical_specs]", "", 1)
    )


def truncate_meta_description(description: str, template: str | None) -> str:
    """Cut to 152 characters plus an ellipsis when a template is in play."""
    if template and len(description) > META_DESCRIPTION_MAX:
        keep = META_DESCRIPTION_MAX - len(_TRUNCATION_SUFFIX)
        return description[:keep] + _TRUNCATION_SUFFIX
    return description


def finalize_meta(data: dict[str, Any], description_template: str | None) -> GeneratedMeta:
    """Keep only title/description; missing or non-string fields become ""."""
    title = data.get("title")
    description = data.get("description")
    title = title.strip() if isinstance(title, str) else ""
    description = description.strip() if isinstance(description, str) else ""
    return GeneratedMeta(
        title=title,
        description=truncate_meta_description(description, description_template),
    )
