"""
Scheduler entry point for hosted cron services.

Protected by `Authorization: Bearer <CRON_SECRET>` instead of the signed
request headers used by the frontend.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import verify_cron_authorization
from app.services.notification_checker import run_all_notification_checks

logger = logging.getLogger(__name__)

router = APIRouter()


@router.api_route("/daily-notifications", methods=["GET", "POST"])
def daily_notifications(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Run the daily upcoming-bill and price-change email sweep."""
    verify_cron_authorization(authorization)

    logger.info("[CRON] Running daily notification checks")
    results = run_all_notification_checks(db)

    return {
        "success": True,
        "timestamp": datetime.utcnow().isoformat(),
        "results": {
            "upcoming_bills_sent": results["upcoming_bills"],
            "price_changes_sent": results["price_changes"],
        },
    }
