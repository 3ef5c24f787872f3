"""
Celery application configuration for scheduled tasks.
"""
import os
from celery import Celery
from celery.schedules import crontab

# Redis URL for broker and backend
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Create Celery app
celery_app = Celery(
    "subsentry_tasks",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["tasks.notification_tasks"],
)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _build_beat_schedule() -> dict:
    schedule = {}
    if not _env_bool("DAILY_NOTIFICATIONS_ENABLED", default=True):
        return schedule

    try:
        notifications_hour_utc = int(os.getenv("DAILY_NOTIFICATIONS_HOUR_UTC", "9"))
    except ValueError:
        notifications_hour_utc = 9

    # Keep the hour in a safe UTC range.
    notifications_hour_utc = max(0, min(23, notifications_hour_utc))
    schedule["daily-notification-checks"] = {
        "task": "tasks.notification_tasks.run_daily_notification_checks",
        "schedule": crontab(minute=0, hour=notifications_hour_utc),
    }
    return schedule

# Celery configuration
celery_app.conf.update(
    # Task result settings
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    task_soft_time_limit=3300,  # Soft limit at 55 minutes

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Beat schedule for periodic tasks
    beat_schedule=_build_beat_schedule(),
)

celery_app.autodiscover_tasks(["tasks"])


if __name__ == "__main__":
    celery_app.start()
