"""
Spending analytics over subscriptions and transactions.

Functions accept ORM rows or any objects with the same attributes
(amount, date, category for transactions; amount, interval, status,
renewal_date, last_payment_date, name, merchant for subscriptions).
"""
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from app.services.merchant_matcher import categorize_merchant

STABLE_THRESHOLD_PERCENT = 5
BREAKDOWN_MONTHS = 6


@dataclass
class SpendingTrend:
    current_month: float
    previous_month: float
    change: float
    change_percentage: float
    trend: str  # increasing, decreasing, stable
    trend_direction: str  # up, down, stable


@dataclass
class MonthlySpending:
    month: str  # YYYY-MM
    amount: float = 0.0
    transaction_count: int = 0
    categories: Dict[str, float] = field(default_factory=dict)


@dataclass
class SpendingInsight:
    type: str
    message: str
    impact: float
    severity: str
    actionable: bool
    action_url: Optional[str] = None
    action_text: Optional[str] = None


def to_monthly_amount(amount, interval: Optional[str]) -> float:
    """Normalize a charge to its monthly equivalent."""
    value = float(amount)
    if interval == "weekly":
        return value * 52 / 12
    if interval == "bi-weekly":
        return value * 26 / 12
    if interval == "quarterly":
        return value / 3
    if interval == "yearly":
        return value / 12
    return value


def _month_key(value: datetime) -> str:
    return f"{value.year}-{value.month:02d}"


def _shift_month(year: int, month: int, delta: int) -> tuple:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def calculate_subscription_stats(subscriptions: Sequence, now: Optional[datetime] = None) -> dict:
    """Totals and highlights for the subscriptions list."""
    now = now or datetime.utcnow()
    active = [s for s in subscriptions if s.status == "active"]

    monthly_total = sum(to_monthly_amount(s.amount, s.interval) for s in active)
    week_ahead = now + timedelta(days=7)
    upcoming = sum(1 for s in active if s.renewal_date and now <= s.renewal_date <= week_ahead)

    most_expensive = None
    if active:
        top = max(active, key=lambda s: to_monthly_amount(s.amount, s.interval))
        most_expensive = {
            "id": str(top.id),
            "name": top.name,
            "merchant": top.merchant,
            "amount": float(top.amount),
            "interval": top.interval,
            "monthly_amount": round(to_monthly_amount(top.amount, top.interval), 2),
        }

    return {
        "total_monthly_spend": round(monthly_total, 2),
        "total_yearly_spend": round(monthly_total * 12, 2),
        "active_count": len(active),
        "upcoming_renewals": upcoming,
        "most_expensive_subscription": most_expensive,
    }


def categorize_subscription(subscription) -> str:
    """Stored category if present, otherwise a keyword category from the name."""
    if getattr(subscription, "category", None):
        return subscription.category
    return categorize_merchant(subscription.merchant or subscription.name)


def calculate_spending_trends(transactions: Sequence, now: Optional[datetime] = None) -> SpendingTrend:
    """Month-over-month change in spend; within +/-5% counts as stable."""
    now = now or datetime.utcnow()
    current_key = _month_key(now)
    prev_year, prev_month = _shift_month(now.year, now.month, -1)
    previous_key = f"{prev_year}-{prev_month:02d}"

    current = abs(sum(float(t.amount) for t in transactions if _month_key(t.date) == current_key))
    previous = abs(sum(float(t.amount) for t in transactions if _month_key(t.date) == previous_key))

    change = current - previous
    change_percentage = (change / previous) * 100 if previous > 0 else 0.0

    if abs(change_percentage) < STABLE_THRESHOLD_PERCENT:
        trend, direction = "stable", "stable"
    elif change_percentage > 0:
        trend, direction = "increasing", "up"
    else:
        trend, direction = "decreasing", "down"

    return SpendingTrend(
        current_month=round(current, 2),
        previous_month=round(previous, 2),
        change=round(change, 2),
        change_percentage=round(change_percentage, 2),
        trend=trend,
        trend_direction=direction,
    )


def get_monthly_spending_breakdown(
    transactions: Sequence,
    months: int = BREAKDOWN_MONTHS,
    now: Optional[datetime] = None,
) -> List[MonthlySpending]:
    """Spend per month for the last `months` months, newest first."""
    now = now or datetime.utcnow()
    buckets: Dict[str, MonthlySpending] = {}
    for offset in range(months):
        year, month = _shift_month(now.year, now.month, -offset)
        key = f"{year}-{month:02d}"
        buckets[key] = MonthlySpending(month=key)

    for txn in transactions:
        bucket = buckets.get(_month_key(txn.date))
        if bucket is None:
            continue
        amount = abs(float(txn.amount))
        bucket.amount += amount
        bucket.transaction_count += 1
        category = getattr(txn, "category", None) or "unknown"
        bucket.categories[category] = bucket.categories.get(category, 0.0) + amount

    for bucket in buckets.values():
        bucket.amount = round(bucket.amount, 2)
        bucket.categories = {k: round(v, 2) for k, v in bucket.categories.items()}

    return sorted(buckets.values(), key=lambda b: b.month, reverse=True)


def generate_spending_insights(
    trend: SpendingTrend,
    subscriptions: Sequence,
    breakdown: List[MonthlySpending],
    now: Optional[datetime] = None,
) -> List[SpendingInsight]:
    now = now or datetime.utcnow()
    insights = []

    if trend.trend == "increasing" and trend.change_percentage > 10:
        insights.append(
            SpendingInsight(
                type="increase",
                message=f"Your spending increased by {trend.change_percentage:.1f}% from last month",
                impact=trend.change,
                severity="high" if trend.change_percentage > 20 else "medium",
                actionable=True,
                action_url="/dashboard/subscriptions",
                action_text="Review Subscriptions",
            )
        )
    elif trend.trend == "decreasing" and trend.change_percentage < -10:
        insights.append(
            SpendingInsight(
                type="decrease",
                message=f"Great! Your spending decreased by {abs(trend.change_percentage):.1f}% from last month",
                impact=abs(trend.change),
                severity="low",
                actionable=False,
            )
        )

    this_month = _month_key(now)
    new_subs = []
    for sub in subscriptions:
        added_at = getattr(sub, "created_at", None) or sub.last_payment_date
        if added_at and _month_key(added_at) == this_month:
            new_subs.append(sub)
    if new_subs:
        count = len(new_subs)
        insights.append(
            SpendingInsight(
                type="new_subscription",
                message=f"You added {count} new subscription{'s' if count > 1 else ''} this month",
                impact=round(sum(float(s.amount) for s in new_subs), 2),
                severity="medium",
                actionable=True,
                action_url="/dashboard/subscriptions",
                action_text="View New Subscriptions",
            )
        )

    if breakdown:
        current = breakdown[0]
        if current.categories and current.amount > 0:
            category, amount = max(current.categories.items(), key=lambda item: item[1])
            if amount > current.amount * 0.5:
                insights.append(
                    SpendingInsight(
                        type="category_concentration",
                        message=f"{category} accounts for {amount / current.amount * 100:.1f}% of your spending",
                        impact=amount,
                        severity="medium",
                        actionable=True,
                        action_url="/dashboard/ai-insights",
                        action_text="Get Optimization Tips",
                    )
                )

    return insights


def calculate_spending_velocity(breakdown: List[MonthlySpending]) -> float:
    """Average month-over-month change across the three most recent months (newer minus older)."""
    if len(breakdown) < 2:
        return 0.0
    recent = breakdown[:3]
    total_change = sum(recent[i - 1].amount - recent[i].amount for i in range(1, len(recent)))
    return total_change / (len(recent) - 1)


def predict_next_month_spending(breakdown: List[MonthlySpending], subscriptions: Sequence) -> float:
    if not breakdown:
        return 0.0
    base = sum(
        to_monthly_amount(s.amount, s.interval)
        for s in subscriptions
        if getattr(s, "status", "active") == "active"
    )
    return round(max(0.0, base + calculate_spending_velocity(breakdown) * 0.5), 2)


def get_spending_summary(
    transactions: Sequence,
    subscriptions: Sequence,
    now: Optional[datetime] = None,
) -> dict:
    trend = calculate_spending_trends(transactions, now)
    breakdown = get_monthly_spending_breakdown(transactions, now=now)
    insights = generate_spending_insights(trend, subscriptions, breakdown, now)

    return {
        "current_month": trend.current_month,
        "previous_month": trend.previous_month,
        "trend": trend,
        "insights": insights,
        "monthly_breakdown": breakdown,
        "velocity": round(calculate_spending_velocity(breakdown), 2),
        "prediction": predict_next_month_spending(breakdown, subscriptions),
    }


def build_analytics(subscriptions: Sequence, transactions: Sequence) -> dict:
    """Dashboard analytics: monthly spend, category split, totals and top merchants."""
    active = [s for s in subscriptions if s.status == "active"]

    monthly: Dict[str, float] = defaultdict(float)
    for txn in transactions:
        monthly[_month_key(txn.date)] += abs(float(txn.amount))

    categories: Dict[str, float] = defaultdict(float)
    for sub in active:
        categories[categorize_subscription(sub)] += to_monthly_amount(sub.amount, sub.interval)

    merchant_counts = Counter(
        txn.merchant or (txn.subscription.merchant if getattr(txn, "subscription", None) else None) or "Unknown"
        for txn in transactions
    )

    total_monthly = sum(to_monthly_amount(s.amount, s.interval) for s in active)

    return {
        "monthly_spending": [
            {"month": month, "spending": round(amount, 2)}
            for month, amount in sorted(monthly.items())
        ],
        "category_spending": [
            {"name": name, "value": round(value, 2)}
            for name, value in sorted(categories.items(), key=lambda item: item[1], reverse=True)
        ],
        "total_monthly_spending": round(total_monthly, 2),
        "total_yearly_spending": round(total_monthly * 12, 2),
        "total_subscriptions": len(active),
        "top_merchants": [
            {"name": name, "count": count}
            for name, count in merchant_counts.most_common(5)
        ],
    }
