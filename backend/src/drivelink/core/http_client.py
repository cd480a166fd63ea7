"""Shared outbound HTTP client.

Google API calls, OAuth token refreshes and chat server calls all go
through one pooled ``httpx.AsyncClient``. Components receive the async
``get_http_client`` callable rather than the client itself so that tests
can hand in a client backed by ``httpx.MockTransport``.
"""

import asyncio

import httpx

from .config import get_settings_instance
from .logging import get_logger

logger = get_logger(__name__)

POOL_LIMITS = httpx.Limits(max_keepalive_connections=20, max_connections=100, keepalive_expiry=30.0)

_client: httpx.AsyncClient | None = None
_client_lock = asyncio.Lock()


def _build_client() -> httpx.AsyncClient:
    settings = get_settings_instance()
    return httpx.AsyncClient(
        limits=POOL_LIMITS,
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        headers={"User-Agent": f"{settings.app_name}/{settings.version}"},
    )


async def get_http_client() -> httpx.AsyncClient:
    """Return the process-wide client, creating it on first use."""
    global _client  # noqa: PLW0603
    if _client is not None:
        return _client
    async with _client_lock:
        if _client is None:
            _client = _build_client()
            logger.debug("Created shared HTTP client", extra={"max_connections": POOL_LIMITS.max_connections})
    return _client


async def close_http_client() -> None:
    """Close the shared client during shutdown. Safe to call twice."""
    global _client  # noqa: PLW0603
    client, _client = _client, None
    if client is not None:
        await client.aclose()
        logger.debug("Closed shared HTTP client")
