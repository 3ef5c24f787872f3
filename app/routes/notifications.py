import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import get_user_id, get_user_or_404
from app.models import NotificationPreference, NotificationState, Subscription
from app.schemas import (
    NotificationAction,
    NotificationActionResponse,
    NotificationListResponse,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    SendRenewalRequest,
    SendRenewalResponse,
)
from app.services.email_service import send_renewal_reminder_email
from app.services.notifications import (
    Notification,
    NotificationPreferences,
    SubscriptionSnapshot,
    generate_all_notifications,
    generate_renewal_reminders,
    get_notification_counts,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _load_preference_row(db: Session, user_id: str) -> Optional[NotificationPreference]:
    return db.query(NotificationPreference).filter(
        NotificationPreference.user_id == user_id,
    ).first()


def _current_notifications(db: Session, user_id: str) -> List[Notification]:
    """Generate the user's notifications and apply stored read/dismissed state."""
    subscriptions = db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status == "active",
    ).order_by(Subscription.renewal_date.asc()).all()

    preferences = NotificationPreferences.from_model(_load_preference_row(db, user_id))
    notifications = generate_all_notifications(
        [SubscriptionSnapshot.from_model(s) for s in subscriptions],
        user_id,
        preferences,
    )

    states = {
        state.notification_id: state
        for state in db.query(NotificationState).filter(NotificationState.user_id == user_id).all()
    }

    visible = []
    for notification in notifications:
        state = states.get(notification.id)
        if state and state.is_dismissed:
            continue
        if state and state.is_read:
            notification.is_read = True
        visible.append(notification)
    return visible


@router.get("/", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = False,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Notifications generated from the user's active subscriptions, most severe first."""
    user_id = get_user_id(user_id)
    notifications = _current_notifications(db, user_id)
    counts = get_notification_counts(notifications)

    if unread_only:
        notifications = [n for n in notifications if not n.is_read]

    return {"notifications": notifications, "counts": counts}


@router.get("/preferences", response_model=NotificationPreferencesResponse)
def get_preferences(
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Stored preferences, or the defaults when the user never saved any."""
    user_id = get_user_id(user_id)
    preference = _load_preference_row(db, user_id)
    if preference is None:
        return NotificationPreferencesResponse()
    return preference


@router.put("/preferences", response_model=NotificationPreferencesResponse)
def update_preferences(
    updates: NotificationPreferencesUpdate,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    user_id = get_user_id(user_id)
    get_user_or_404(db, user_id)

    preference = _load_preference_row(db, user_id)
    if preference is None:
        preference = NotificationPreference(user_id=user_id)
        db.add(preference)

    for field, value in updates.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(preference, field, value)

    db.commit()
    db.refresh(preference)
    return preference


@router.post("/send-renewal", response_model=SendRenewalResponse)
def send_renewal_reminder(
    request: SendRenewalRequest,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Email a renewal reminder for one subscription if it renews within the reminder window."""
    user_id = get_user_id(user_id)
    user = get_user_or_404(db, user_id)

    subscription = db.query(Subscription).filter(
        Subscription.id == request.subscription_id,
        Subscription.user_id == user_id,
    ).first()
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    if not user.email:
        raise HTTPException(status_code=400, detail="User has no email address")

    preferences = NotificationPreferences.from_model(_load_preference_row(db, user_id))
    reminders = generate_renewal_reminders(
        [SubscriptionSnapshot.from_model(subscription)],
        user_id,
        preferences.reminder_days,
    )
    if not reminders:
        return {"message": "No renewal reminders to send", "sent": False}

    urgent = [r for r in reminders if r.severity == "high"]
    sent = send_renewal_reminder_email(user.email, reminders)
    if not sent:
        logger.warning(f"[NOTIFICATIONS] Renewal reminder email for subscription {subscription.id} was not sent")

    return {
        "message": "Renewal reminders sent successfully" if sent else "Renewal reminder email could not be sent",
        "sent": sent,
        "sent_count": len(reminders) if sent else 0,
        "urgent_count": len(urgent),
        "regular_count": len(reminders) - len(urgent),
    }


@router.patch("/{notification_id}", response_model=NotificationActionResponse)
def update_notification(
    notification_id: str,
    request: NotificationAction,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Mark a notification as read or dismiss it."""
    user_id = get_user_id(user_id)

    known_ids = {n.id for n in _current_notifications(db, user_id)}
    state = db.query(NotificationState).filter(
        NotificationState.user_id == user_id,
        NotificationState.notification_id == notification_id,
    ).first()
    if notification_id not in known_ids and state is None:
        raise HTTPException(status_code=404, detail="Notification not found")

    if state is None:
        state = NotificationState(user_id=user_id, notification_id=notification_id)
        db.add(state)

    if request.action == "read":
        state.is_read = True
        message = "Notification marked as read"
    else:
        state.is_dismissed = True
        message = "Notification dismissed"

    db.commit()
    return {"success": True, "message": message}
