import asyncio
import logging
from datetime import UTC, datetime
from time import perf_counter

from celery.signals import worker_process_init, worker_process_shutdown

from app.application.services.delivery_scheduler import DeliveryScheduler, build_delivery_scheduler
from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import Database
from app.infrastructure.observability.metrics import increment_background_counter, measure_redis
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_database = Database(settings.sqlalchemy_database_uri)
_scheduler: DeliveryScheduler | None = None


@worker_process_init.connect
def _open_database(**_kwargs) -> None:
    _database.open()


@worker_process_shutdown.connect
def _close_database(**_kwargs) -> None:
    _database.close()


def _get_scheduler() -> DeliveryScheduler:
    global _scheduler
    if _scheduler is None:
        # Solo and eager workers never fire worker_process_init.
        _database.open()
        redis_client = get_redis_client() if settings.scheduler_single_flight else None
        _scheduler = build_delivery_scheduler(_database, redis_client=redis_client)
    return _scheduler


@celery_app.task(name="workers.tasks.deliver_due_messages")
def deliver_due_messages() -> dict:
    started_at = perf_counter()
    result = asyncio.run(_get_scheduler().run_cycle())

    increment_background_counter("messages_claimed_total", result.claimed)
    increment_background_counter("messages_sent_total", result.sent)
    increment_background_counter("messages_failed_total", result.failed)

    summary = result.as_dict()
    summary["duration_ms"] = int((perf_counter() - started_at) * 1000)
    if result.claimed or result.skipped:
        logger.info(
            "deliver_due_messages_completed status=%s claimed=%s sent=%s failed=%s duration_ms=%s",
            summary["status"],
            result.claimed,
            result.sent,
            result.failed,
            summary["duration_ms"],
        )
    return summary


@celery_app.task(name="workers.tasks.worker_heartbeat")
def worker_heartbeat() -> dict:
    redis_client = get_redis_client()
    now = datetime.now(UTC).isoformat()
    with measure_redis("worker_heartbeat_set"):
        redis_client.set(
            settings.worker_heartbeat_key,
            now,
            ex=max(15, settings.worker_heartbeat_ttl_seconds),
        )
    return {"heartbeat_at": now}
