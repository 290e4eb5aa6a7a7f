"""Celery application for background import processing."""

import ssl

from celery import Celery

from finance_importer.core.config import get_settings
from finance_importer.utils.redis_client import normalize_redis_url

settings = get_settings()

broker_url = normalize_redis_url(settings.celery_broker_url or settings.redis_url)
backend_url = normalize_redis_url(settings.celery_result_url or settings.redis_url)
is_ssl = broker_url.startswith("rediss://") or backend_url.startswith("rediss://")

# The Redis result backend reads ssl_cert_reqs from the URL during initialization
if is_ssl:
    ssl_param = "ssl_cert_reqs=none"
    if "ssl_cert_reqs" not in broker_url:
        separator = "&" if "?" in broker_url else "?"
        broker_url = f"{broker_url}{separator}{ssl_param}"
    if "ssl_cert_reqs" not in backend_url:
        separator = "&" if "?" in backend_url else "?"
        backend_url = f"{backend_url}{separator}{ssl_param}"

celery_app = Celery(
    "finance_importer",
    broker=broker_url,
    backend=backend_url,
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,  # Acknowledge after task completion
    "task_reject_on_worker_lost": True,  # Re-queue if worker dies
    "worker_prefetch_multiplier": 1,  # Fair task distribution
    "task_time_limit": 3600,  # 1 hour hard limit
    "task_soft_time_limit": 3300,
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
    "task_routes": {
        "finance_importer.workers.tasks.import_records": {"queue": "imports"},
        "finance_importer.workers.tasks.cleanup_import_jobs": {"queue": "maintenance"},
    },
    "task_default_queue": "imports",
    "beat_schedule": {
        "cleanup-import-jobs": {
            "task": "finance_importer.workers.tasks.cleanup_import_jobs",
            "schedule": 3600.0,
        },
    },
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict

celery_app.conf.update(celery_config)

# Tasks use @celery_app.task, importing registers them
from finance_importer.workers.tasks import import_records, maintenance  # noqa: E402,F401
