"""Shelfcopy contract models.

Shared by the pipeline, the stores and the HTTP layer. Wire-facing models
keep snake_case field names; the product analysis payload keeps the
camelCase keys the vision prompt asks the model for.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Tone = Literal["professional", "casual", "luxury", "minimal", "enthusiastic"]
AnalysisDepth = Literal["basic", "standard", "detailed"]
HistoryStatus = Literal["pending", "processing", "completed", "error"]
Plan = Literal["FREE", "BASIC", "STANDARD", "PRO"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error"})

DEFAULT_DESCRIPTION_TEMPLATE = "[product_intro]\n\n[features_list]"
DEFAULT_META_TITLE_TEMPLATE = "[title] - [primary_keyword] | [brand_name]"
DEFAULT_META_DESC_TEMPLATE = "[short_description] Features: [key_features]. [cta]"


# === Tenants ===


class ShopSettings(BaseModel):
    """Per-shop generation preferences. Read-only to the pipeline."""

    default_tone: Tone = "professional"
    include_meta: bool = True
    product_desc_template: str = DEFAULT_DESCRIPTION_TEMPLATE
    meta_title_template: str = DEFAULT_META_TITLE_TEMPLATE
    meta_desc_template: str = DEFAULT_META_DESC_TEMPLATE
    visual_analysis_depth: AnalysisDepth = "standard"


class Tenant(BaseModel):
    id: str
    shop_domain: str
    access_token: str = ""
    settings: ShopSettings = Field(default_factory=ShopSettings)


class ShopSettingsUpdate(BaseModel):
    """Partial settings change. Unset, null and blank-template fields are left as they are."""

    default_tone: Tone | None = None
    include_meta: bool | None = None
    product_desc_template: str | None = None
    meta_title_template: str | None = None
    meta_desc_template: str | None = None
    visual_analysis_depth: AnalysisDepth | None = None

    def changes(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in self.model_dump(include=self.model_fields_set).items()
            if value is not None and value != ""
        }


class ShopInstallRequest(BaseModel):
    shop_domain: str = Field(min_length=1)
    access_token: str = Field(min_length=1)
    plan: Plan = "FREE"


class ShopInstallResponse(BaseModel):
    tenant_id: str
    shop_domain: str
    created: bool
    settings: ShopSettings
    credits: CreditsSummary


# === Credits ===


class CreditBalance(BaseModel):
    tenant_id: str
    plan: Plan = "FREE"
    available: int = Field(ge=0)
    total: int = Field(ge=0)
    reset_date: datetime
    last_granted_at: datetime | None = None


class CreditsSummary(BaseModel):
    available: int
    total: int
    days_until_reset: int
    usage_trend: int  # % of plan allowance used in the trailing 7 days
    plan: Plan


class PurchaseCreditsRequest(BaseModel):
    amount: int = Field(gt=0)


class PurchaseCreditsResponse(BaseModel):
    success: bool
    message: str
    credits: CreditsSummary


# === Catalog ===


class ProductImage(BaseModel):
    url: str
    alt_text: str | None = None


class SeoFields(BaseModel):
    title: str | None = None
    description: str | None = None


class ItemDetail(BaseModel):
    id: str
    title: str = ""
    handle: str | None = None
    description: str = ""
    description_html: str = ""
    product_type: str | None = None
    vendor: str | None = None
    tags: list[str] = []
    featured_image: ProductImage | None = None
    images: list[ProductImage] = []
    seo: SeoFields = Field(default_factory=SeoFields)
    metafields: list[dict[str, Any]] = []
    variants: list[dict[str, Any]] = []

    def representative_image_url(self) -> str | None:
        """Featured image if set, else the first gallery image."""
        if self.featured_image and self.featured_image.url:
            return self.featured_image.url
        for image in self.images:
            if image.url:
                return image.url
        return None


class CollectionPage(BaseModel):
    item_ids: list[str] = []
    next_cursor: str | None = None


# === Generation ===


class ProductAnalysis(BaseModel):
    """The structured analysis the vision prompt asks for.

    Unknown keys are kept; list fields accept a bare string.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    product_type: str | None = Field(default=None, alias="productType")
    materials: list[str] = []
    colors: list[str] = []
    features: list[str] = []
    style: str | None = None
    target_audience: str | None = Field(default=None, alias="targetAudience")
    use_cases: list[str] = Field(default=[], alias="useCases")
    quality_impression: str | None = Field(default=None, alias="qualityImpression")
    additional_notes: str | None = Field(default=None, alias="additionalNotes")

    @field_validator("materials", "colors", "features", "use_cases", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            return [str(v) for v in value if v is not None]
        return value

    @field_validator(
        "product_type",
        "style",
        "target_audience",
        "quality_impression",
        "additional_notes",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return value


class GeneratedMeta(BaseModel):
    title: str = ""
    description: str = ""


# === Batches ===


class BatchRequest(BaseModel):
    tenant_id: str
    item_ids: list[str] = []
    collection_ids: list[str] = []
    tone: Tone | None = None
    update_meta: bool = True

    @model_validator(mode="after")
    def _require_targets(self) -> BatchRequest:
        if not self.item_ids and not self.collection_ids:
            raise ValueError("Either item_ids or collection_ids is required")
        return self


class SubmitBatchRequest(BaseModel):
    """Request body for POST /batches (tenant comes from the session)."""

    item_ids: list[str] = []
    collection_ids: list[str] = []
    tone: Tone | None = None
    update_meta: bool = True


class ProcessingUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str


class BatchAccepted(BaseModel):
    accepted: bool
    batch_id: str | None = None
    estimated_units: int
    estimated_credits: int


class UnitOutcome(BaseModel):
    record_id: str
    item_id: str
    status: HistoryStatus
    credits_used: int = 0
    error: str | None = None


class ProcessUnitInput(BaseModel):
    batch_id: str
    tenant_id: str
    unit: ProcessingUnit
    tone: Tone | None = None
    update_meta: bool = True


class BatchWorkflowInput(BaseModel):
    batch_id: str
    tenant_id: str
    units: list[ProcessingUnit]
    tone: Tone | None = None
    update_meta: bool = True
    max_concurrent_items: int = 4
    unit_timeout_seconds: float = 900.0

    def unit_input(self, unit: ProcessingUnit) -> ProcessUnitInput:
        return ProcessUnitInput(
            batch_id=self.batch_id,
            tenant_id=self.tenant_id,
            unit=unit,
            tone=self.tone,
            update_meta=self.update_meta,
        )


class BatchSummary(BaseModel):
    batch_id: str
    units: int
    completed: int = 0
    errors: int = 0
    unrecorded: int = 0
    credits_used: int = 0

    @classmethod
    def from_outcomes(cls, batch_id: str, outcomes: list[UnitOutcome | None]) -> BatchSummary:
        recorded = [o for o in outcomes if o is not None]
        return cls(
            batch_id=batch_id,
            units=len(outcomes),
            completed=sum(1 for o in recorded if o.status == "completed"),
            errors=sum(1 for o in recorded if o.status == "error"),
            unrecorded=len(outcomes) - len(recorded),
            credits_used=sum(o.credits_used for o in recorded),
        )


# === History ===


class HistoryRecord(BaseModel):
    id: str
    tenant_id: str
    item_id: str
    item_title: str = ""
    original_description: str | None = None
    generated_description: str | None = None
    image_analysis: dict[str, Any] | None = None
    generated_meta: GeneratedMeta | None = None
    credits_used: int = Field(ge=0, default=0)
    status: HistoryStatus = "pending"
    error: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class HistoryUpdate(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    item_title: str | None = None
    original_description: str | None = None
    generated_description: str | None = None
    image_analysis: dict[str, Any] | None = None
    generated_meta: GeneratedMeta | None = None
    credits_used: int | None = Field(default=None, ge=0)
    status: HistoryStatus | None = None
    error: str | None = None
    completed_at: datetime | None = None


class HistoryFilters(BaseModel):
    status: HistoryStatus | None = None
    item_id: str | None = None


class HistoryPage(BaseModel):
    records: list[HistoryRecord] = []
    total_count: int = 0


class StatusCounts(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    error: int = 0


class Pagination(BaseModel):
    page: int
    limit: int
    total_items: int
    total_pages: int


class StatusReport(BaseModel):
    records: list[HistoryRecord] = []
    pagination: Pagination
    stats: StatusCounts
    overall_progress: int


# === API ===


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool = False
