"""Request-scoped dependencies shared by the route modules."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request, Response

from shelfcopy.dependencies import Container
from shelfcopy.utils.rate_limit import SlidingWindowRateLimiter


def get_container(request: Request) -> Container:
    return request.app.state.container  # type: ignore[no-any-return]


def get_tenant_id(x_tenant_id: Annotated[str, Header(min_length=1)]) -> str:
    """Tenant (shop) id set by the session middleware in front of this service."""
    return x_tenant_id


ContainerDep = Annotated[Container, Depends(get_container)]
TenantIdDep = Annotated[str, Depends(get_tenant_id)]


def apply_rate_limit(
    limiter: SlidingWindowRateLimiter, token: str, response: Response
) -> None:
    """Count one request; raises RateLimitExceededError when over the limit."""
    status = limiter.check(token)
    response.headers["X-RateLimit-Limit"] = str(status.limit)
    response.headers["X-RateLimit-Remaining"] = str(status.remaining)
