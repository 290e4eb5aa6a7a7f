"""Stage uploaded bytes in Redis (with local fallback) so any worker can read them."""

from __future__ import annotations

import logging
from pathlib import Path

from redis.exceptions import RedisError

from finance_importer.storage.local_storage import delete_upload, save_upload
from finance_importer.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)

FILE_STORAGE_PREFIX = "imports:upload:"
FILE_STORAGE_TTL = 86400  # seconds
MAX_REDIS_FILE_SIZE = 100 * 1024 * 1024

REDIS_LOCATION_PREFIX = "redis:"


def _key(job_id: str) -> str:
    return f"{FILE_STORAGE_PREFIX}{job_id}"


def store_file_in_redis(content: bytes, job_id: str) -> bool:
    """Store file content in Redis for worker access across separate instances."""
    if len(content) > MAX_REDIS_FILE_SIZE:
        logger.warning(
            f"File too large for Redis storage ({len(content)} bytes), "
            f"will use local filesystem fallback"
        )
        return False
    try:
        get_redis_client().set(_key(job_id), content, ex=FILE_STORAGE_TTL)
    except RedisError as e:
        logger.warning(f"Failed to store file in Redis: {e}, will use local filesystem")
        return False
    logger.info(f"Stored file in Redis for job {job_id} ({len(content)} bytes)")
    return True


def get_file_from_redis(job_id: str) -> bytes | None:
    try:
        return get_redis_client().get(_key(job_id))
    except RedisError as e:
        logger.warning(f"Failed to retrieve file from Redis: {e}")
        return None


def delete_file_from_redis(job_id: str) -> None:
    try:
        get_redis_client().delete(_key(job_id))
    except RedisError as e:
        logger.warning(f"Failed to delete file from Redis: {e}")


def stage_upload(content: bytes, job_id: str, original_name: str | None = None) -> str:
    """Stage bytes for the worker and return a location string.

    Redis is preferred so separate worker instances can fetch the file; the
    local filesystem is the fallback for single-host deployments.
    """
    if store_file_in_redis(content, job_id):
        return f"{REDIS_LOCATION_PREFIX}{job_id}"
    try:
        return str(save_upload(content, job_id, original_name))
    except OSError as e:
        raise ValueError(f"Failed to stage file for job {job_id}: {e}") from e


def load_staged(location: str, job_id: str) -> bytes:
    """Fetch staged bytes, trying Redis when the local copy is missing."""
    if location.startswith(REDIS_LOCATION_PREFIX):
        content = get_file_from_redis(job_id)
        if content is None:
            raise FileNotFoundError(
                f"File not found in Redis for job {job_id}. "
                "It may have expired or Redis storage failed."
            )
        return content

    path = Path(location)
    if path.exists():
        return path.read_bytes()
    logger.warning(f"Local file not found: {path}, trying Redis fallback for job {job_id}")
    content = get_file_from_redis(job_id)
    if content is None:
        raise FileNotFoundError(f"Staged file not found: {path}")
    return content


def discard_staged(location: str, job_id: str) -> None:
    delete_file_from_redis(job_id)
    if not location.startswith(REDIS_LOCATION_PREFIX):
        delete_upload(location)
