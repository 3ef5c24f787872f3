"""
Notification checker.

Scans subscriptions for upcoming renewals and price changes and emails the
owners. Run once a day by the scheduler (Celery beat or the cron endpoint).
"""
import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import NotificationPreference, Subscription, Transaction, User
from app.services.email_service import (
    send_new_subscription_detected_email,
    send_price_change_email,
    send_upcoming_bill_email,
)

logger = logging.getLogger(__name__)

RENEWAL_REMINDER_DAYS = 3
RENEWAL_RENOTIFY_HOURS = 24
PRICE_CHANGE_THRESHOLD = 0.05
PRICE_CHANGE_LOOKBACK_DAYS = 90
PRICE_CHANGE_RENOTIFY_DAYS = 7
PRICE_CHANGE_SAMPLE_SIZE = 3


def _email_allowed(db: Session, user: User, flag: Optional[str] = None) -> bool:
    """True if the user has an address and has not switched these emails off."""
    if not user or not user.email:
        return False
    preference = db.query(NotificationPreference).filter(
        NotificationPreference.user_id == user.id,
    ).first()
    if preference is None:
        return True
    if not preference.email_notifications:
        return False
    return bool(getattr(preference, flag)) if flag else True


def check_upcoming_bills(db: Session, now: Optional[datetime] = None, user_id: Optional[str] = None) -> int:
    """
    Email owners of active subscriptions renewing within RENEWAL_REMINDER_DAYS.

    Returns:
        Number of reminders sent
    """
    now = now or datetime.utcnow()
    window_end = now + timedelta(days=RENEWAL_REMINDER_DAYS)
    renotify_before = now - timedelta(hours=RENEWAL_RENOTIFY_HOURS)

    query = db.query(Subscription).filter(
        Subscription.status == "active",
        Subscription.renewal_date >= now,
        Subscription.renewal_date <= window_end,
        or_(
            Subscription.last_notified_at.is_(None),
            Subscription.last_notified_at < renotify_before,
        ),
    )
    if user_id:
        query = query.filter(Subscription.user_id == user_id)

    sent = 0
    for subscription in query.all():
        days_until = math.ceil((subscription.renewal_date - now).total_seconds() / 86400)
        if not (0 < days_until <= RENEWAL_REMINDER_DAYS):
            continue

        user = subscription.user
        if not _email_allowed(db, user, "renewal_reminders"):
            continue

        try:
            delivered = send_upcoming_bill_email(
                to=user.email,
                subscription_name=subscription.name,
                amount=float(subscription.amount),
                currency=subscription.currency or "USD",
                renewal_date=subscription.renewal_date,
                days_until_renewal=days_until,
                user_name=user.name,
            )
            if not delivered:
                continue
            subscription.last_notified_at = now
            db.commit()
            sent += 1
        except Exception:
            db.rollback()
            logger.exception(
                f"[NOTIFICATION_CHECKER] Failed to send upcoming bill email for subscription {subscription.id}"
            )

    logger.info(f"[NOTIFICATION_CHECKER] Sent {sent} upcoming bill reminders")
    return sent


def check_price_changes(db: Session, now: Optional[datetime] = None, user_id: Optional[str] = None) -> int:
    """
    Compare recent linked charges with the stored amount of auto-detected
    subscriptions; a change of 5% or more updates the amount and emails the owner.

    Returns:
        Number of price change emails sent
    """
    now = now or datetime.utcnow()
    since = now - timedelta(days=PRICE_CHANGE_LOOKBACK_DAYS)
    renotify_before = now - timedelta(days=PRICE_CHANGE_RENOTIFY_DAYS)

    query = db.query(Subscription).filter(
        Subscription.status == "active",
        Subscription.is_auto_detected.is_(True),
    )
    if user_id:
        query = query.filter(Subscription.user_id == user_id)

    sent = 0
    for subscription in query.all():
        recent = db.query(Transaction).filter(
            Transaction.subscription_id == subscription.id,
            Transaction.date >= since,
        ).order_by(Transaction.date.desc()).limit(PRICE_CHANGE_SAMPLE_SIZE).all()

        if len(recent) < 2:
            continue

        stored_amount = float(subscription.amount)
        if stored_amount <= 0:
            continue
        average_recent = sum(abs(float(t.amount)) for t in recent) / len(recent)
        if abs(average_recent - stored_amount) / stored_amount < PRICE_CHANGE_THRESHOLD:
            continue

        if subscription.last_notified_at and subscription.last_notified_at >= renotify_before:
            continue

        user = subscription.user
        new_amount = Decimal(str(round(average_recent, 2)))
        try:
            subscription.price_history = list(subscription.price_history or []) + [
                {
                    "date": recent[0].date.isoformat(),
                    "amount": float(new_amount),
                    "change": round(float(new_amount) - stored_amount, 2),
                }
            ]
            subscription.amount = new_amount

            delivered = False
            if _email_allowed(db, user, "price_increase_alerts"):
                delivered = send_price_change_email(
                    to=user.email,
                    subscription_name=subscription.name,
                    old_amount=stored_amount,
                    new_amount=float(new_amount),
                    currency=subscription.currency or "USD",
                    change_date=recent[0].date,
                    user_name=user.name,
                )
            if delivered:
                subscription.last_notified_at = now
                sent += 1
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                f"[NOTIFICATION_CHECKER] Failed to process price change for subscription {subscription.id}"
            )

    logger.info(f"[NOTIFICATION_CHECKER] Sent {sent} price change alerts")
    return sent


def notify_new_subscriptions(db: Session, user: User, subscriptions: List[Subscription]) -> int:
    """Email the user about newly detected subscriptions. Never raises."""
    try:
        if not subscriptions or not _email_allowed(db, user):
            return 0

        sent = 0
        for subscription in subscriptions:
            if not subscription.is_auto_detected or subscription.status != "active":
                continue
            try:
                if send_new_subscription_detected_email(
                    to=user.email,
                    subscription_name=subscription.name,
                    amount=float(subscription.amount),
                    currency=subscription.currency or "USD",
                    interval=subscription.interval or "monthly",
                    confidence_score=subscription.confidence_score,
                    user_name=user.name,
                ):
                    sent += 1
            except Exception:
                logger.exception(
                    f"[NOTIFICATION_CHECKER] Failed to send new subscription email for {subscription.id}"
                )
        return sent
    except Exception:
        logger.exception("[NOTIFICATION_CHECKER] Error notifying new subscriptions")
        return 0


def run_all_notification_checks(
    db: Session,
    now: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> Dict[str, int]:
    """Run every daily check and report how many emails each sent."""
    now = now or datetime.utcnow()
    upcoming_bills = check_upcoming_bills(db, now=now, user_id=user_id)
    price_changes = check_price_changes(db, now=now, user_id=user_id)
    return {
        "upcoming_bills": upcoming_bills,
        "price_changes": price_changes,
    }
