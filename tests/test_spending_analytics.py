"""
Unit tests for spending analytics.
"""
import os
import sys
from datetime import datetime
from types import SimpleNamespace

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.spending_analytics import (  # noqa: E402
    build_analytics,
    calculate_spending_trends,
    calculate_spending_velocity,
    calculate_subscription_stats,
    get_monthly_spending_breakdown,
    get_spending_summary,
    to_monthly_amount,
)

NOW = datetime(2026, 3, 20)


def _txn(amount: float, date: datetime, merchant: str = "Netflix", category: str = "Streaming"):
    return SimpleNamespace(amount=amount, date=date, merchant=merchant, category=category, subscription=None)


def _sub(name: str, amount: float, interval: str = "monthly", status: str = "active", **extra):
    values = {
        "id": name.lower(),
        "name": name,
        "merchant": name.lower(),
        "amount": amount,
        "interval": interval,
        "status": status,
        "category": None,
        "renewal_date": None,
        "last_payment_date": None,
        "created_at": datetime(2025, 1, 1),
    }
    values.update(extra)
    return SimpleNamespace(**values)


def test_to_monthly_amount() -> None:
    assert to_monthly_amount(12, "monthly") == 12
    assert to_monthly_amount(120, "yearly") == 10
    assert to_monthly_amount(30, "quarterly") == 10
    assert to_monthly_amount(12, "weekly") == pytest.approx(52.0)
    assert to_monthly_amount(12, "bi-weekly") == pytest.approx(26.0)
    print("✓ monthly normalization")


def test_subscription_stats() -> None:
    subs = [
        _sub("Netflix", 15.49, renewal_date=datetime(2026, 3, 22)),
        _sub("Adobe", 600.0, interval="yearly"),
        _sub("Old", 99.0, status="cancelled"),
    ]

    stats = calculate_subscription_stats(subs, now=NOW)

    assert stats["active_count"] == 2
    assert stats["total_monthly_spend"] == 65.49
    assert stats["total_yearly_spend"] == round(65.49 * 12, 2)
    assert stats["upcoming_renewals"] == 1
    assert stats["most_expensive_subscription"]["name"] == "Adobe"
    assert stats["most_expensive_subscription"]["monthly_amount"] == 50.0
    print("✓ subscription stats")


def test_trend_stable_within_five_percent() -> None:
    transactions = [
        _txn(-100.0, datetime(2026, 2, 5)),
        _txn(-103.0, datetime(2026, 3, 5)),
    ]
    trend = calculate_spending_trends(transactions, now=NOW)
    assert trend.trend == "stable"
    assert trend.trend_direction == "stable"

    rising = calculate_spending_trends(
        [_txn(-100.0, datetime(2026, 2, 5)), _txn(-150.0, datetime(2026, 3, 5))],
        now=NOW,
    )
    assert rising.trend == "increasing"
    assert rising.change_percentage == 50.0
    print("✓ spending trend")


def test_trend_with_no_previous_month() -> None:
    trend = calculate_spending_trends([_txn(-40.0, datetime(2026, 3, 1))], now=NOW)
    assert trend.previous_month == 0
    assert trend.change_percentage == 0.0
    assert trend.trend == "stable"
    print("✓ trend without history")


def test_monthly_breakdown_and_velocity() -> None:
    transactions = [
        _txn(-10.0, datetime(2026, 1, 3)),
        _txn(-20.0, datetime(2026, 2, 3)),
        _txn(-30.0, datetime(2026, 3, 3)),
        _txn(-5.0, datetime(2026, 3, 10), category="Food"),
        _txn(-99.0, datetime(2024, 1, 1)),
    ]

    breakdown = get_monthly_spending_breakdown(transactions, now=NOW)

    assert len(breakdown) == 6
    assert breakdown[0].month == "2026-03"
    assert breakdown[0].amount == 35.0
    assert breakdown[0].transaction_count == 2
    assert breakdown[0].categories == {"Streaming": 30.0, "Food": 5.0}
    # newer minus older: (35 - 20) and (20 - 10)
    assert calculate_spending_velocity(breakdown) == pytest.approx(12.5)
    print("✓ monthly breakdown and velocity")


def test_spending_summary_insights() -> None:
    transactions = [
        _txn(-100.0, datetime(2026, 2, 5)),
        _txn(-130.0, datetime(2026, 3, 5)),
    ]
    subs = [_sub("Netflix", 15.49, created_at=datetime(2026, 3, 2))]

    summary = get_spending_summary(transactions, subs, now=NOW)

    types = {insight.type for insight in summary["insights"]}
    assert "increase" in types
    assert "new_subscription" in types
    assert "category_concentration" in types
    assert summary["current_month"] == 130.0
    assert summary["prediction"] >= 0
    print("✓ spending summary")


def test_build_analytics() -> None:
    subs = [
        _sub("Netflix", 15.49, category="Streaming"),
        _sub("Gym", 40.0),
        _sub("Gone", 10.0, status="cancelled"),
    ]
    transactions = [
        _txn(-15.49, datetime(2026, 2, 1)),
        _txn(-15.49, datetime(2026, 3, 1)),
        _txn(-40.0, datetime(2026, 3, 2), merchant=None),
    ]

    analytics = build_analytics(subs, transactions)

    assert analytics["total_subscriptions"] == 2
    assert analytics["total_monthly_spending"] == 55.49
    assert analytics["monthly_spending"] == [
        {"month": "2026-02", "spending": 15.49},
        {"month": "2026-03", "spending": 55.49},
    ]
    assert analytics["category_spending"][0] == {"name": "Fitness", "value": 40.0}
    assert analytics["top_merchants"][0] == {"name": "Netflix", "count": 2}
    assert {"name": "Unknown", "count": 1} in analytics["top_merchants"]
    print("✓ dashboard analytics")


if __name__ == "__main__":
    test_to_monthly_amount()
    test_subscription_stats()
    test_trend_stable_within_five_percent()
    test_trend_with_no_previous_month()
    test_monthly_breakdown_and_velocity()
    test_spending_summary_insights()
    test_build_analytics()
    print("All spending analytics tests passed.")
