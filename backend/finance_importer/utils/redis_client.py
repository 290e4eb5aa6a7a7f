"""Redis client creation (SSL aware) and the process-wide shared handle."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis

from finance_importer.core.config import get_settings

_shared_client: Redis | None = None


def normalize_redis_url(url: str) -> str:
    """Upstash only accepts TLS connections; upgrade plain redis:// URLs."""
    if ".upstash.io" in url and url.startswith("redis://"):
        return url.replace("redis://", "rediss://", 1)
    return url


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client with proper SSL configuration.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Additional arguments (decode_responses, socket_connect_timeout, etc.)
    """
    url = normalize_redis_url(url)
    client = Redis.from_url(url, **kwargs)

    if url.startswith("rediss://"):
        pool_kwargs = getattr(client.connection_pool, "connection_kwargs", None)
        if pool_kwargs is not None:
            pool_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client


def get_redis_client() -> Redis:
    """Return the shared binary-safe client, creating it on first use."""
    global _shared_client
    if _shared_client is None:
        _shared_client = create_redis_client(
            get_settings().redis_url,
            decode_responses=False,
            socket_connect_timeout=2,
            socket_timeout=5,
        )
    return _shared_client


def set_redis_client(client: Any) -> None:
    """Install a specific client (tests use an in-memory stand-in)."""
    global _shared_client
    _shared_client = client


def reset_redis_client() -> None:
    global _shared_client
    if _shared_client is not None and hasattr(_shared_client, "close"):
        _shared_client.close()
    _shared_client = None
