from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import get_user_id
from app.models import Subscription, Transaction
from app.services.spending_analytics import BREAKDOWN_MONTHS, build_analytics, get_spending_summary
from app.services.subscription_detector import add_months

router = APIRouter()


def _load(db: Session, user_id: str):
    subscriptions = db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status == "active",
    ).all()
    since = add_months(datetime.utcnow(), -BREAKDOWN_MONTHS)
    expenses = db.query(Transaction).filter(
        Transaction.user_id == user_id,
        Transaction.date >= since,
        Transaction.amount < 0,
    ).order_by(Transaction.date.asc()).all()
    return subscriptions, expenses


@router.get("/")
def get_analytics(
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Monthly spend, category split, totals and top merchants over the last 6 months."""
    user_id = get_user_id(user_id)
    subscriptions, expenses = _load(db, user_id)
    return build_analytics(subscriptions, expenses)


@router.get("/summary")
def get_summary(
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Month-over-month trend, insights, breakdown and next-month prediction."""
    user_id = get_user_id(user_id)
    subscriptions, expenses = _load(db, user_id)
    summary = get_spending_summary(expenses, subscriptions)

    return {
        "current_month": round(summary["current_month"], 2),
        "previous_month": round(summary["previous_month"], 2),
        "trend": asdict(summary["trend"]),
        "insights": [asdict(insight) for insight in summary["insights"]],
        "monthly_breakdown": [asdict(month) for month in summary["monthly_breakdown"]],
        "velocity": summary["velocity"],
        "prediction": summary["prediction"],
    }
