import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shelfcopy.api.routes import batches, credits, health, shops
from shelfcopy.config import settings
from shelfcopy.dependencies import build_container
from shelfcopy.errors import EnrichmentError, RateLimitExceededError
from shelfcopy.logging import configure_logging

configure_logging()

logger = structlog.get_logger()

_STATUS_BY_CODE: dict[str, int] = {
    "not_found": 404,
    "insufficient_credits": 402,
    "rate_limited": 429,
    "no_image": 422,
    "generation_failed": 502,
    "catalog_unavailable": 502,
    "catalog_write_failed": 502,
    "timeout": 504,
    "internal": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the container once; drain in-process batches on shutdown."""
    if getattr(app.state, "container", None) is None:
        temporal_client = None
        if settings.use_temporal:
            from shelfcopy.worker import create_temporal_client

            temporal_client = await create_temporal_client()
            logger.info(
                "temporal_connected",
                address=settings.temporal_address,
                task_queue=settings.temporal_task_queue,
            )
        app.state.container = build_container(settings, temporal_client)
    yield
    await app.state.container.aclose()


app = FastAPI(
    title="Shelfcopy API",
    version=health.VERSION,
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", request.headers.get("X-Request-ID", ""))


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a unique request ID to every request for log correlation.

    Sets the ID in structlog context vars (appears in all log entries for the
    request, including in-process batches) and returns it in the
    X-Request-ID response header.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(EnrichmentError)
async def enrichment_exception_handler(request: Request, exc: EnrichmentError) -> JSONResponse:
    """Map the pipeline's error taxonomy onto HTTP statuses."""
    status_code = _STATUS_BY_CODE.get(exc.code, 500)
    logger.info(
        "request_rejected",
        path=request.url.path,
        error_code=exc.code,
        status=status_code,
    )
    response = JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, "retryable": exc.retryable},
    )
    if isinstance(exc, RateLimitExceededError):
        response.headers["Retry-After"] = str(exc.retry_after)
        if exc.limit is not None:
            response.headers["X-RateLimit-Limit"] = str(exc.limit)
            response.headers["X-RateLimit-Remaining"] = "0"
    response.headers["X-Request-ID"] = _request_id(request)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return ErrorResponse JSON for Pydantic validation errors.

    FastAPI's default 422 returns {"detail": [...]}, which doesn't match
    the ErrorResponse contract.
    """
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    response = JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "; ".join(messages),
            "retryable": False,
        },
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return consistent ErrorResponse JSON for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


app.include_router(health.router)
app.include_router(batches.router, prefix="/api/v1")
app.include_router(credits.router, prefix="/api/v1")
app.include_router(shops.router, prefix="/api/v1")
