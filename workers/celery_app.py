from celery import Celery
from celery.schedules import schedule
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "message_scheduler",
    broker=settings.cache_redis_url,
    backend=settings.cache_redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue="scheduler",
    task_queues=(Queue("scheduler"),),
    task_routes={
        "workers.tasks.deliver_due_messages": {"queue": "scheduler"},
        "workers.tasks.worker_heartbeat": {"queue": "scheduler"},
    },
    beat_schedule={
        "deliver-due-messages": {
            "task": "workers.tasks.deliver_due_messages",
            "schedule": schedule(settings.delivery_interval_seconds),
            # A trigger that waited a full interval is superseded by the next one.
            "options": {"queue": "scheduler", "expires": settings.delivery_interval_seconds},
        },
        "worker-heartbeat-every-15s": {
            "task": "workers.tasks.worker_heartbeat",
            "schedule": schedule(15.0),
            "options": {"queue": "scheduler"},
        },
    },
)

celery_app.autodiscover_tasks(["workers"])
