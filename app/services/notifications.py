"""
In-app notification generation.

Everything here is a pure function over subscription snapshots and user
preferences: no database access, no email, no clock reads beyond the
injectable `now`. Notification ids are derived from the notification type,
the subscription and a date key so read/dismiss state can be persisted
against them across requests.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from app.services.merchant_matcher import find_known_merchant, string_similarity
from app.services.merchant_normalizer import normalize_merchant_name
from app.services.spending_analytics import to_monthly_amount

SEVERITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}

DUPLICATE_SIMILARITY_THRESHOLD = 0.7
UNUSED_HEALTH_THRESHOLD = 60


@dataclass
class SubscriptionSnapshot:
    """Read-only view of a subscription used by the generators."""
    id: str
    name: str
    amount: float
    renewal_date: datetime
    merchant: Optional[str] = None
    currency: str = "USD"
    interval: str = "monthly"
    status: str = "active"
    category: Optional[str] = None
    last_payment_date: Optional[datetime] = None
    usage_frequency: Optional[str] = None
    price_history: List[dict] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.name or self.merchant or "Subscription"

    @classmethod
    def from_model(cls, subscription) -> "SubscriptionSnapshot":
        return cls(
            id=str(subscription.id),
            name=subscription.name,
            merchant=subscription.merchant,
            amount=float(subscription.amount),
            currency=subscription.currency or "USD",
            interval=subscription.interval or "monthly",
            renewal_date=subscription.renewal_date,
            status=subscription.status or "active",
            category=subscription.category,
            last_payment_date=subscription.last_payment_date,
            usage_frequency=subscription.usage_frequency,
            price_history=list(subscription.price_history or []),
        )


@dataclass
class NotificationPreferences:
    renewal_reminders: bool = True
    price_increase_alerts: bool = True
    spending_limit_alerts: bool = True
    unused_subscription_warnings: bool = True
    duplicate_detection: bool = True
    savings_opportunities: bool = True
    email_notifications: bool = True
    reminder_days: int = 7
    spending_limit: float = 100.0

    @classmethod
    def from_model(cls, preference) -> "NotificationPreferences":
        if preference is None:
            return cls()
        return cls(
            renewal_reminders=bool(preference.renewal_reminders),
            price_increase_alerts=bool(preference.price_increase_alerts),
            spending_limit_alerts=bool(preference.spending_limit_alerts),
            unused_subscription_warnings=bool(preference.unused_subscription_warnings),
            duplicate_detection=bool(preference.duplicate_detection),
            savings_opportunities=bool(preference.savings_opportunities),
            email_notifications=bool(preference.email_notifications),
            reminder_days=int(preference.reminder_days if preference.reminder_days is not None else 7),
            spending_limit=float(preference.spending_limit if preference.spending_limit is not None else 100),
        )


@dataclass
class Notification:
    id: str
    user_id: str
    type: str
    title: str
    message: str
    severity: str
    created_at: datetime
    subscription_id: Optional[str] = None
    merchant: Optional[str] = None
    amount: Optional[float] = None
    due_date: Optional[datetime] = None
    is_read: bool = False
    expires_at: Optional[datetime] = None
    action_url: Optional[str] = None
    action_text: Optional[str] = None


@dataclass
class DuplicateGroup:
    subscriptions: List[SubscriptionSnapshot]
    similarity_score: float
    potential_savings: float


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.utcnow()


def _subscription_url(subscription: SubscriptionSnapshot) -> str:
    return f"/dashboard/subscriptions/{subscription.id}"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def generate_renewal_reminders(
    subscriptions: List[SubscriptionSnapshot],
    user_id: str,
    reminder_days: int = 7,
    now: Optional[datetime] = None,
) -> List[Notification]:
    """
    Reminders for subscriptions renewing within `reminder_days`.

    Severity: high within 3 days, medium within 7, low beyond that.
    """
    now = _now(now)
    notifications = []

    for sub in subscriptions:
        if not sub.renewal_date:
            continue
        days_until = math.ceil((sub.renewal_date - now).total_seconds() / 86400)
        if not (0 < days_until <= reminder_days):
            continue

        severity = "high" if days_until <= 3 else "medium" if days_until <= 7 else "low"
        notifications.append(
            Notification(
                id=f"renewal-{sub.id}-{sub.renewal_date:%Y-%m-%d}",
                user_id=user_id,
                type="renewal_reminder",
                title=f"Renewal Reminder: {sub.label}",
                message=(
                    f"Your {sub.label} subscription will renew in {_plural(days_until, 'day')} "
                    f"for {sub.amount:.2f} {sub.currency}."
                ),
                severity=severity,
                created_at=now,
                subscription_id=sub.id,
                merchant=sub.merchant or sub.name,
                amount=sub.amount,
                due_date=sub.renewal_date,
                expires_at=sub.renewal_date + timedelta(days=1),
                action_url=_subscription_url(sub),
                action_text="View Subscription",
            )
        )

    return notifications


def generate_price_increase_alerts(
    subscriptions: List[SubscriptionSnapshot],
    user_id: str,
    now: Optional[datetime] = None,
) -> List[Notification]:
    """Alerts for subscriptions whose last three price changes include increases."""
    now = _now(now)
    notifications = []

    for sub in subscriptions:
        recent = (sub.price_history or [])[-3:]
        increases = [entry for entry in recent if (entry.get("change") or 0) > 0]
        if not increases:
            continue

        total_increase = sum(float(entry["change"]) for entry in increases)
        severity = "high" if total_increase > 10 else "medium" if total_increase > 5 else "low"
        date_key = str(increases[-1].get("date", ""))[:10] or f"{now:%Y-%m-%d}"

        notifications.append(
            Notification(
                id=f"price-increase-{sub.id}-{date_key}",
                user_id=user_id,
                type="price_increase",
                title=f"Price Increase Alert: {sub.label}",
                message=(
                    f"Your {sub.label} subscription price has increased by "
                    f"{total_increase:.2f} {sub.currency} across its recent charges."
                ),
                severity=severity,
                created_at=now,
                subscription_id=sub.id,
                merchant=sub.merchant or sub.name,
                amount=round(total_increase, 2),
                action_url=_subscription_url(sub),
                action_text="Review Changes",
            )
        )

    return notifications


def generate_spending_limit_alerts(
    subscriptions: List[SubscriptionSnapshot],
    user_id: str,
    spending_limit: float,
    now: Optional[datetime] = None,
) -> List[Notification]:
    """Alert when monthly-normalized spend exceeds, or approaches, the user's limit."""
    now = _now(now)
    if spending_limit is None or spending_limit <= 0:
        return []

    total = sum(
        to_monthly_amount(sub.amount, sub.interval)
        for sub in subscriptions
        if sub.status == "active"
    )

    if total > spending_limit:
        overage = total - spending_limit
        if overage > spending_limit * 0.5:
            severity = "critical"
        elif overage > spending_limit * 0.25:
            severity = "high"
        else:
            severity = "medium"
        return [
            Notification(
                id=f"spending-limit-{now:%Y-%m}",
                user_id=user_id,
                type="spending_limit",
                title="Monthly Spending Limit Exceeded",
                message=(
                    f"Your monthly subscription spending of {total:.2f} exceeds your limit of "
                    f"{spending_limit:.2f} by {overage:.2f}."
                ),
                severity=severity,
                created_at=now,
                amount=round(overage, 2),
                action_url="/dashboard/subscriptions",
                action_text="Review Subscriptions",
            )
        ]

    if total > spending_limit * 0.8:
        remaining = spending_limit - total
        return [
            Notification(
                id=f"spending-warning-{now:%Y-%m}",
                user_id=user_id,
                type="spending_limit",
                title="Approaching Spending Limit",
                message=(
                    f"You're approaching your monthly spending limit. You have {remaining:.2f} "
                    f"remaining out of {spending_limit:.2f}."
                ),
                severity="low",
                created_at=now,
                amount=round(remaining, 2),
                action_url="/dashboard/subscriptions",
                action_text="Review Subscriptions",
            )
        ]

    return []


def calculate_health_score(subscription: SubscriptionSnapshot, now: Optional[datetime] = None) -> int:
    """
    0-100 score of how worthwhile a subscription looks.

    Penalises low or medium usage, recent price increases, a paused status
    and a missing payment in the last 60 days.
    """
    now = _now(now)
    score = 100

    if subscription.usage_frequency == "low":
        score -= 40
    elif subscription.usage_frequency == "medium":
        score -= 15

    increases = [e for e in (subscription.price_history or [])[-3:] if (e.get("change") or 0) > 0]
    score -= min(20, 10 * len(increases))

    if subscription.status == "paused":
        score -= 10

    if subscription.last_payment_date and (now - subscription.last_payment_date).days > 60:
        score -= 20

    return max(0, min(100, score))


def generate_unused_subscription_warnings(
    subscriptions: List[SubscriptionSnapshot],
    user_id: str,
    now: Optional[datetime] = None,
) -> List[Notification]:
    """Warnings for low-usage subscriptions with a poor health score."""
    now = _now(now)
    notifications = []

    for sub in subscriptions:
        if sub.usage_frequency != "low":
            continue
        if calculate_health_score(sub, now) >= UNUSED_HEALTH_THRESHOLD:
            continue

        annual_cost = to_monthly_amount(sub.amount, sub.interval) * 12
        severity = "high" if annual_cost > 100 else "medium" if annual_cost > 50 else "low"
        notifications.append(
            Notification(
                id=f"unused-{sub.id}-{now:%Y-%m}",
                user_id=user_id,
                type="unused_subscription",
                title=f"Unused Subscription: {sub.label}",
                message=(
                    f"Your {sub.label} subscription appears to be unused. You could save "
                    f"{annual_cost:.2f} {sub.currency}/year by canceling it."
                ),
                severity=severity,
                created_at=now,
                subscription_id=sub.id,
                merchant=sub.merchant or sub.name,
                amount=round(annual_cost, 2),
                action_url=_subscription_url(sub),
                action_text="Cancel Subscription",
            )
        )

    return notifications


def subscription_similarity(first: SubscriptionSnapshot, second: SubscriptionSnapshot) -> float:
    """Weighted similarity: name 40%, category 20%, price 20%, interval 10%, usage 10%."""
    first_name = normalize_merchant_name(first.merchant or first.name)
    second_name = normalize_merchant_name(second.merchant or second.name)
    score = string_similarity(first_name, second_name) * 0.4

    if first.category == second.category:
        score += 0.2

    max_amount = max(first.amount, second.amount)
    if max_amount > 0:
        score += max(0.0, 1 - abs(first.amount - second.amount) / max_amount) * 0.2
    else:
        score += 0.2

    if first.interval == second.interval:
        score += 0.1

    if first.usage_frequency == second.usage_frequency:
        score += 0.1

    return score


def find_duplicate_subscriptions(
    subscriptions: List[SubscriptionSnapshot],
    threshold: float = DUPLICATE_SIMILARITY_THRESHOLD,
) -> List[DuplicateGroup]:
    """Group subscriptions that look like the same service, most similar first."""
    groups = []
    processed = set()

    for i, anchor in enumerate(subscriptions):
        if anchor.id in processed:
            continue
        members = [anchor]
        processed.add(anchor.id)

        for other in subscriptions[i + 1:]:
            if other.id in processed:
                continue
            if subscription_similarity(anchor, other) > threshold:
                members.append(other)
                processed.add(other.id)

        if len(members) > 1:
            similarity = sum(subscription_similarity(anchor, m) for m in members[1:]) / (len(members) - 1)
            groups.append(
                DuplicateGroup(
                    subscriptions=members,
                    similarity_score=round(similarity, 3),
                    potential_savings=round(sum(m.amount for m in members[1:]), 2),
                )
            )

    groups.sort(key=lambda g: g.similarity_score, reverse=True)
    return groups


def generate_duplicate_alerts(
    subscriptions: List[SubscriptionSnapshot],
    user_id: str,
    now: Optional[datetime] = None,
) -> List[Notification]:
    now = _now(now)
    active = [s for s in subscriptions if s.status == "active"]
    notifications = []

    for group in find_duplicate_subscriptions(active):
        original = group.subscriptions[0]
        for duplicate in group.subscriptions[1:]:
            annual_cost = to_monthly_amount(duplicate.amount, duplicate.interval) * 12
            notifications.append(
                Notification(
                    id=f"duplicate-{duplicate.id}-{original.id}",
                    user_id=user_id,
                    type="duplicate_detected",
                    title=f"Duplicate Subscription Detected: {duplicate.label}",
                    message=(
                        f"You have duplicate subscriptions for {duplicate.label} and {original.label}. "
                        f"You could save {annual_cost:.2f} {duplicate.currency}/year by canceling one."
                    ),
                    severity="medium",
                    created_at=now,
                    subscription_id=duplicate.id,
                    merchant=duplicate.merchant or duplicate.name,
                    amount=round(annual_cost, 2),
                    action_url=_subscription_url(duplicate),
                    action_text="Review Duplicates",
                )
            )

    return notifications


def generate_savings_opportunities(
    subscriptions: List[SubscriptionSnapshot],
    user_id: str,
    now: Optional[datetime] = None,
) -> List[Notification]:
    """Suggest annual billing where the catalog lists a cheaper annual price."""
    now = _now(now)
    notifications = []

    for sub in subscriptions:
        if sub.interval != "monthly" or sub.status != "active":
            continue

        match = find_known_merchant(normalize_merchant_name(sub.merchant or sub.name), sub.amount)
        if not match or not match.merchant:
            continue
        annual_price = match.merchant.annual_amounts.get(sub.currency)
        if not annual_price:
            continue

        savings = sub.amount * 12 - annual_price
        if savings <= 0:
            continue

        severity = "high" if savings > 100 else "medium" if savings > 50 else "low"
        notifications.append(
            Notification(
                id=f"savings-{sub.id}-{now:%Y}",
                user_id=user_id,
                type="savings_opportunity",
                title=f"Savings Opportunity: {sub.label}",
                message=(
                    f"Switching {sub.label} to annual billing ({annual_price:.2f} {sub.currency}/year) "
                    f"could save you {savings:.2f} {sub.currency} a year."
                ),
                severity=severity,
                created_at=now,
                subscription_id=sub.id,
                merchant=sub.merchant or sub.name,
                amount=round(savings, 2),
                action_url=_subscription_url(sub),
                action_text="View Opportunity",
            )
        )

    return notifications


def sort_notifications(notifications: List[Notification]) -> List[Notification]:
    """Severity first (critical > high > medium > low), then newest first."""
    return sorted(
        notifications,
        key=lambda n: (SEVERITY_ORDER.get(n.severity, 0), n.created_at),
        reverse=True,
    )


def generate_all_notifications(
    subscriptions: List[SubscriptionSnapshot],
    user_id: str,
    preferences: Optional[NotificationPreferences] = None,
    now: Optional[datetime] = None,
) -> List[Notification]:
    """Run every generator the user has enabled and sort the result."""
    preferences = preferences or NotificationPreferences()
    now = _now(now)
    notifications: List[Notification] = []

    if preferences.renewal_reminders:
        notifications.extend(generate_renewal_reminders(subscriptions, user_id, preferences.reminder_days, now))
    if preferences.price_increase_alerts:
        notifications.extend(generate_price_increase_alerts(subscriptions, user_id, now))
    if preferences.spending_limit_alerts:
        notifications.extend(generate_spending_limit_alerts(subscriptions, user_id, preferences.spending_limit, now))
    if preferences.unused_subscription_warnings:
        notifications.extend(generate_unused_subscription_warnings(subscriptions, user_id, now))
    if preferences.duplicate_detection:
        notifications.extend(generate_duplicate_alerts(subscriptions, user_id, now))
    if preferences.savings_opportunities:
        notifications.extend(generate_savings_opportunities(subscriptions, user_id, now))

    return sort_notifications(notifications)


_PREFERENCE_BY_TYPE = {
    "renewal_reminder": "renewal_reminders",
    "price_increase": "price_increase_alerts",
    "spending_limit": "spending_limit_alerts",
    "unused_subscription": "unused_subscription_warnings",
    "duplicate_detected": "duplicate_detection",
    "savings_opportunity": "savings_opportunities",
}


def filter_notifications(
    notifications: List[Notification],
    preferences: NotificationPreferences,
) -> List[Notification]:
    """Drop notifications whose type the user has switched off."""
    result = []
    for notification in notifications:
        flag = _PREFERENCE_BY_TYPE.get(notification.type)
        if flag is None or getattr(preferences, flag):
            result.append(notification)
    return result


def get_notification_counts(notifications: List[Notification]) -> Dict[str, int]:
    unread = [n for n in notifications if not n.is_read]
    counts = {"total": len(notifications), "unread": len(unread)}
    for severity in ("critical", "high", "medium", "low"):
        counts[severity] = sum(1 for n in unread if n.severity == severity)
    return counts
