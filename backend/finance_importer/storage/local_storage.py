"""Local filesystem staging for uploads awaiting a worker."""

from __future__ import annotations

import logging
from pathlib import Path

from finance_importer.core.config import get_settings

logger = logging.getLogger(__name__)


def uploads_dir() -> Path:
    path = Path(get_settings().uploads_dir).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def save_upload(content: bytes, job_id: str, original_name: str | None = None) -> Path:
    """Write the uploaded bytes next to other staged files and return the path."""
    suffix = Path(original_name or "upload.csv").suffix or ".csv"
    target_path = (uploads_dir() / f"{job_id}{suffix}").resolve()
    target_path.write_bytes(content)
    return target_path


def delete_upload(uri: str | Path) -> None:
    """Cleanup staged files when imports finish."""
    path = Path(uri)
    if not path.is_absolute():
        path = path.resolve()
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not delete staged upload {path}: {e}")
