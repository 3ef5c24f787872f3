from fastapi import APIRouter
from app.routes import subscriptions, transactions, notifications, plaid, analytics, ai_insights, cron

api_router = APIRouter()

api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(plaid.router, prefix="/plaid", tags=["plaid"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
api_router.include_router(ai_insights.router, prefix="/ai-insights", tags=["ai"])
api_router.include_router(ai_insights.chat_router, prefix="/ai-chat", tags=["ai"])
api_router.include_router(cron.router, prefix="/cron", tags=["cron"])


@api_router.get("/health", tags=["health"])
def api_health():
    return {"status": "healthy"}
