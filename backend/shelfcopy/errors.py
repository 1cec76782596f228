"""Error taxonomy for the enrichment pipeline.

Every failure the pipeline knows about is an ``EnrichmentError`` carrying a
stable ``code`` and a ``retryable`` hint. Pre-flight errors (insufficient
credits, rate limiting, unknown tenant or collection) propagate to the
caller; per-unit errors are caught by the item processor and recorded on the
unit's history record.
"""

from __future__ import annotations


class EnrichmentError(Exception):
    code = "enrichment_error"

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class NotFoundError(EnrichmentError):
    """Ledger, tenant, item or collection does not exist."""

    code = "not_found"


class InsufficientCreditsError(EnrichmentError):
    code = "insufficient_credits"

    def __init__(self, required: int, available: int | None = None) -> None:
        message = f"Not enough credits: {required} required"
        if available is not None:
            message += f", {available} available"
        super().__init__(message)
        self.required = required
        self.available = available


class RateLimitExceededError(EnrichmentError):
    code = "rate_limited"

    def __init__(self, message: str, retry_after: int, limit: int | None = None) -> None:
        super().__init__(message, retryable=True)
        self.retry_after = retry_after
        self.limit = limit


class NoImageAvailableError(EnrichmentError):
    code = "no_image"


class GenerationError(EnrichmentError):
    """Upstream model call failed or its response could not be parsed."""

    code = "generation_failed"


class CatalogError(EnrichmentError):
    """Catalog transport failure (network, HTTP status, GraphQL errors)."""

    code = "catalog_unavailable"


class CatalogWriteError(EnrichmentError):
    """Write-back rejected by the catalog's field validation."""

    code = "catalog_write_failed"

    def __init__(self, message: str, user_errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.user_errors = user_errors or []


class ExternalTimeoutError(EnrichmentError):
    code = "timeout"

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=True)


class InternalError(EnrichmentError):
    code = "internal"


class HistoryTransitionError(InternalError):
    """A terminal history record was asked to change."""
