"""LangSmith tracing for model clients: zero-cost when LANGSMITH_API_KEY is unset.

The env var and import are checked when a provider is built, not at import
time. If the key is set but langsmith is not installed, the raw client is
used and a warning logged.
"""

from __future__ import annotations

import os
from typing import Any

import structlog

_log = structlog.get_logger("tracing")


def _tracing_enabled() -> bool:
    return bool(os.environ.get("LANGSMITH_API_KEY", "").strip())


def _wrap(client: Any, wrapper_name: str) -> Any:
    if not _tracing_enabled():
        return client
    try:
        from langsmith import wrappers
    except ImportError:
        _log.warning(
            "langsmith_not_installed",
            reason="LANGSMITH_API_KEY is set but langsmith is not installed; "
            "install with: pip install 'shelfcopy[tracing]'",
        )
        return client
    wrapper = getattr(wrappers, wrapper_name, None)
    if wrapper is None:
        _log.warning("langsmith_wrapper_missing", wrapper=wrapper_name)
        return client
    try:
        return wrapper(client)
    except Exception as exc:
        _log.error(
            "langsmith_wrap_failed",
            wrapper=wrapper_name,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return client


def wrap_anthropic(client: Any) -> Any:
    """Wrap an Anthropic client for auto-tracing."""
    return _wrap(client, "wrap_anthropic")


def wrap_gemini(client: Any) -> Any:
    """Wrap a google-genai client for auto-tracing."""
    return _wrap(client, "wrap_gemini")
