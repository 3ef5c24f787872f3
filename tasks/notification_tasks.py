"""Celery tasks for the daily notification sweep."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Optional

import redis

from celery_app import celery_app
from app.database import SessionLocal
from app.services.notification_checker import run_all_notification_checks

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "subsentry:daily-notifications"
LOCK_TTL_SECONDS = 26 * 60 * 60


def _redis_client() -> redis.Redis:
    return redis.from_url(os.getenv("REDIS_URL", "redis://localhost:6379/0"), decode_responses=True)


def claim_daily_run(client: redis.Redis, day: str) -> bool:
    """Claim the sweep for a calendar day. Only the first caller gets True."""
    return bool(client.set(f"{LOCK_KEY_PREFIX}:{day}", datetime.utcnow().isoformat(), nx=True, ex=LOCK_TTL_SECONDS))


@celery_app.task(bind=True, max_retries=2, name="tasks.notification_tasks.run_daily_notification_checks")
def run_daily_notification_checks(self, day: Optional[str] = None) -> dict:
    """Send upcoming-bill and price-change emails once per UTC day."""
    day = day or datetime.utcnow().strftime("%Y-%m-%d")

    client = _redis_client()
    if not claim_daily_run(client, day):
        logger.info("[NOTIFICATION_TASKS] Skipped: sweep for %s already ran", day)
        return {"skipped": True, "reason": "ALREADY_RAN", "day": day}

    session = SessionLocal()
    try:
        results = run_all_notification_checks(session)
        logger.info(
            "[NOTIFICATION_TASKS] Completed sweep for %s upcoming_bills=%s price_changes=%s",
            day,
            results["upcoming_bills"],
            results["price_changes"],
        )
        return {"skipped": False, "day": day, **results}
    except Exception as exc:  # noqa: BLE001
        logger.exception("[NOTIFICATION_TASKS] Failed daily sweep: %s", exc)
        # Release the claim so a retry can run the same day.
        client.delete(f"{LOCK_KEY_PREFIX}:{day}")
        raise
    finally:
        session.close()
