"""
AI guidance endpoints: spending insights, cancellation guides, support
email templates and the chat assistant.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import get_user_id
from app.models import Subscription, Transaction
from app.schemas import (
    CancellationGuideRequest,
    CancellationGuideResponse,
    ChatRequest,
    ChatResponse,
    SupportTemplateRequest,
    SupportTemplateResponse,
)
from app.services.ai_assistant import SubscriptionAssistant
from app.services.subscription_detector import add_months

router = APIRouter()
chat_router = APIRouter()

INSIGHTS_MONTHS = 12
CHAT_CONTEXT_MONTHS = 3
CHAT_CONTEXT_TRANSACTIONS = 50
PREDICTION_CONFIDENCE = 85


def get_assistant() -> SubscriptionAssistant:
    return SubscriptionAssistant()


def _active_subscriptions(db: Session, user_id: str):
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status == "active",
    ).all()


def _recent_transactions(db: Session, user_id: str, months: int, limit: Optional[int] = None):
    query = db.query(Transaction).filter(
        Transaction.user_id == user_id,
        Transaction.date >= add_months(datetime.utcnow(), -months),
    ).order_by(Transaction.date.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def _owned_subscription(db: Session, subscription_id, user_id: str) -> Subscription:
    subscription = db.query(Subscription).filter(
        Subscription.id == subscription_id,
        Subscription.user_id == user_id,
    ).first()
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


@router.get("/")
def get_ai_insights(
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
    assistant: SubscriptionAssistant = Depends(get_assistant),
):
    """Spending analysis, recommendations and a spending outlook for the user."""
    user_id = get_user_id(user_id)
    subscriptions = _active_subscriptions(db, user_id)
    transactions = _recent_transactions(db, user_id, INSIGHTS_MONTHS)

    analysis = assistant.analyze_spending_patterns(subscriptions, transactions)
    recommendations = assistant.generate_smart_recommendations(subscriptions, analysis)

    pattern = analysis.get("spending_pattern", {})
    unused = analysis.get("unused_subscriptions", [])
    duplicates = analysis.get("duplicate_services", [])

    spending_prediction = {
        "current_monthly": pattern.get("total_monthly", 0),
        "predicted_monthly": pattern.get("total_monthly", 0),
        "predicted_yearly": pattern.get("total_yearly", 0),
        "trend": pattern.get("trend", "stable"),
        "confidence": PREDICTION_CONFIDENCE,
        "factors": pattern.get("insights", []),
        "recommendations": [r.get("title") for r in recommendations[:3] if isinstance(r, dict)],
    }

    insights = list(pattern.get("insights", []))
    if unused:
        insights.append(
            f"You have {len(unused)} unused {_plural(len(unused), 'subscription')} that could be canceled"
        )
    if duplicates:
        insights.append(
            f"Found {len(duplicates)} duplicate {_plural(len(duplicates), 'service')} - potential savings available"
        )

    return {
        "analysis": analysis,
        "recommendations": recommendations,
        "spending_prediction": spending_prediction,
        "insights": insights,
        "unused_subscriptions": unused,
        "duplicate_services": duplicates,
        "downgrade_opportunities": analysis.get("downgrade_opportunities", []),
        "annual_vs_monthly_savings": analysis.get("annual_vs_monthly_savings", []),
    }


@router.post("/cancellation-guide", response_model=CancellationGuideResponse)
def get_cancellation_guide(
    request: CancellationGuideRequest,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
    assistant: SubscriptionAssistant = Depends(get_assistant),
):
    user_id = get_user_id(user_id)
    subscription = _owned_subscription(db, request.subscription_id, user_id)
    return {
        "subscription_id": subscription.id,
        "name": subscription.name,
        "steps": assistant.generate_cancellation_guide(subscription),
    }


@router.post("/support-template", response_model=SupportTemplateResponse)
def get_support_template(
    request: SupportTemplateRequest,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
    assistant: SubscriptionAssistant = Depends(get_assistant),
):
    user_id = get_user_id(user_id)
    subscription = _owned_subscription(db, request.subscription_id, user_id)
    return {
        "subscription_id": subscription.id,
        "template": assistant.generate_support_template(subscription, request.reason),
    }


@chat_router.post("/", response_model=ChatResponse)
def chat(
    request: ChatRequest,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
    assistant: SubscriptionAssistant = Depends(get_assistant),
):
    """Answer a question about the user's subscriptions with the last 3 months as context."""
    user_id = get_user_id(user_id)
    subscriptions = _active_subscriptions(db, user_id)
    transactions = _recent_transactions(db, user_id, CHAT_CONTEXT_MONTHS, limit=CHAT_CONTEXT_TRANSACTIONS)

    reply = assistant.chat(
        request.message,
        [turn.model_dump() for turn in request.conversation_history],
        subscriptions,
        transactions,
    )
    return {"response": reply}
