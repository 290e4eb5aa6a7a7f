"""Shared helpers for publishing live job progress to Redis/SSE."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any

from redis.exceptions import RedisError

from finance_importer.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "imports:progress:"
PROGRESS_TTL = timedelta(hours=24)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def publish_progress(
    job_id: str,
    progress: float,
    message: str | None = None,
    *,
    status: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """Persist a progress snapshot so polling and SSE clients see every batch."""
    payload = {
        "job_id": job_id,
        "progress": max(0.0, min(progress, 1.0)),
        "message": message,
        "status": status,
        "meta": meta or {},
    }
    try:
        get_redis_client().set(
            _key(job_id),
            json.dumps(payload),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError as e:
        # Redis availability should not break ingestion.
        logger.debug(f"Could not publish progress for job {job_id}: {e}")


def fetch_progress(job_id: str) -> dict[str, Any]:
    """Return the latest live snapshot, or an empty dict when unavailable."""
    try:
        raw = get_redis_client().get(_key(job_id))
    except RedisError:
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
