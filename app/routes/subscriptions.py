import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import get_user_id, get_user_or_404
from app.models import Subscription
from app.schemas import (
    DetectSubscriptionsRequest,
    DetectSubscriptionsResponse,
    SubscriptionCreate,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionStatus,
    SubscriptionUpdate,
)
from app.services.notification_checker import notify_new_subscriptions
from app.services.spending_analytics import calculate_subscription_stats
from app.services.subscription_detector import SubscriptionDetector

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_owned_subscription(db: Session, subscription_id: UUID, user_id: str) -> Subscription:
    subscription = db.query(Subscription).filter(
        Subscription.id == subscription_id,
        Subscription.user_id == user_id,
    ).first()
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


@router.get("/", response_model=SubscriptionListResponse)
def list_subscriptions(
    status: Optional[SubscriptionStatus] = None,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """List subscriptions ordered by next renewal, with spend totals."""
    user_id = get_user_id(user_id)
    query = db.query(Subscription).filter(Subscription.user_id == user_id)
    if status:
        query = query.filter(Subscription.status == status)

    subscriptions = query.order_by(Subscription.renewal_date.asc()).all()
    return {
        "subscriptions": subscriptions,
        "stats": calculate_subscription_stats(subscriptions),
    }


@router.post("/", response_model=SubscriptionResponse, status_code=201)
def create_subscription(
    subscription: SubscriptionCreate,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Create a subscription by hand."""
    user_id = get_user_id(user_id)
    get_user_or_404(db, user_id)

    db_subscription = Subscription(
        **subscription.model_dump(),
        user_id=user_id,
        is_auto_detected=False,
        transaction_ids=[],
        price_history=[],
    )
    db.add(db_subscription)
    db.commit()
    db.refresh(db_subscription)
    return db_subscription


@router.post("/detect", response_model=DetectSubscriptionsResponse)
def detect_subscriptions(
    request: Optional[DetectSubscriptionsRequest] = None,
    db: Session = Depends(get_db),
):
    """
    Scan the user's transactions for recurring charges and upsert subscriptions.

    Newly created subscriptions are announced by email when the user allows it.
    """
    request = request or DetectSubscriptionsRequest()
    user_id = get_user_id(request.user_id)
    user = get_user_or_404(db, user_id)

    detector = SubscriptionDetector(db, user_id=user_id)
    try:
        result = detector.detect_and_apply(months_back=request.months_back)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    notify_new_subscriptions(db, user, result["created"])

    return {
        "detected_count": result["detected_count"],
        "created_count": result["created_count"],
        "updated_count": result["updated_count"],
        "linked_count": result["linked_count"],
        "subscriptions": result["created"] + result["updated"],
    }


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: UUID,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    user_id = get_user_id(user_id)
    return _get_owned_subscription(db, subscription_id, user_id)


@router.put("/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(
    subscription_id: UUID,
    updates: SubscriptionUpdate,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Update a subscription. Amount changes are appended to its price history."""
    user_id = get_user_id(user_id)
    subscription = _get_owned_subscription(db, subscription_id, user_id)

    update_data = updates.model_dump(exclude_unset=True)
    new_amount = update_data.get("amount")
    if new_amount is not None:
        old_amount = Decimal(str(subscription.amount))
        if new_amount != old_amount:
            subscription.price_history = list(subscription.price_history or []) + [
                {
                    "date": datetime.utcnow().isoformat(),
                    "amount": float(new_amount),
                    "change": float(new_amount - old_amount),
                }
            ]

    for field, value in update_data.items():
        setattr(subscription, field, value)

    db.commit()
    db.refresh(subscription)
    return subscription


@router.delete("/{subscription_id}", status_code=204)
def delete_subscription(
    subscription_id: UUID,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Delete a subscription. Linked transactions are kept and unlinked."""
    user_id = get_user_id(user_id)
    subscription = _get_owned_subscription(db, subscription_id, user_id)

    for transaction in subscription.linked_transactions:
        transaction.subscription_id = None
    db.delete(subscription)
    db.commit()
    logger.info(f"Deleted subscription {subscription_id} for user {user_id}")
    return None
