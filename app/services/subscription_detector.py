"""
Subscription pattern detection service for discovering recurring charges.

Core approach: group expense transactions by normalized merchant, collapse
charges that land within a few days of each other into one occurrence, then
match the gaps between occurrences against billing-interval bands.

Usage:
    detector = SubscriptionDetector(db, user_id)
    result = detector.detect_and_apply(months_back=24)
    # creates/updates subscriptions and links the matched transactions
"""
import calendar
import math
import os
import re
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import BankAccount, Subscription, Transaction
from app.services.merchant_matcher import MerchantMatch, categorize_merchant, find_known_merchant
from app.services.merchant_normalizer import merchant_key, normalize_merchant_name

logger = logging.getLogger(__name__)


# Configuration
MIN_CONFIDENCE = float(os.getenv("SUBSCRIPTION_MIN_CONFIDENCE", "0.4"))
MIN_TRANSACTIONS = 2
MIN_MONTHS_BACK = 1
MAX_MONTHS_BACK = 60

# Amounts may drift by up to 20% from the mean and still count as consistent
AMOUNT_TOLERANCE = 0.20

# Charges closer together than this are treated as a single occurrence
OCCURRENCE_WINDOW_DAYS = 5


@dataclass(frozen=True)
class IntervalPattern:
    """Tolerance band for a billing interval, in days."""
    name: str
    min_days: int
    max_days: int
    ideal_days: int
    min_occurrences: int


INTERVAL_PATTERNS = [
    IntervalPattern("weekly", 6, 10, 7, 4),
    IntervalPattern("bi-weekly", 13, 15, 14, 2),
    IntervalPattern("monthly", 22, 38, 30, 2),
    IntervalPattern("quarterly", 85, 95, 90, 2),
    IntervalPattern("yearly", 350, 380, 365, 2),
]

# Bank interest, card repayments, transfers and similar non-subscription debits
EXCLUDED_MERCHANT_PATTERNS = [
    re.compile(r"\binterest\b", re.IGNORECASE),
    re.compile(r"\bcard payment\b", re.IGNORECASE),
    re.compile(r"\bpayment to\b", re.IGNORECASE),
    re.compile(r"\bpayment -", re.IGNORECASE),
    re.compile(r"\bautopay\b", re.IGNORECASE),
    re.compile(r"\bbill pay\b", re.IGNORECASE),
    re.compile(r"\btransfers?\b", re.IGNORECASE),
    re.compile(r"\bfees?\b", re.IGNORECASE),
    re.compile(r"\boverdraft\b", re.IGNORECASE),
    re.compile(r"\batm\b", re.IGNORECASE),
    re.compile(r"\bwithdrawals?\b", re.IGNORECASE),
]


@dataclass
class TransactionRecord:
    """Minimal transaction view the detector works on."""
    id: str
    amount: float
    date: datetime
    merchant: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = "USD"


@dataclass
class DetectedPattern:
    """A detected recurring payment pattern."""
    merchant: str
    normalized_merchant: str
    amount: float
    currency: str
    interval: str
    next_billing_date: datetime
    confidence_score: float
    interval_confidence: float
    category: str
    known_merchant: Optional[MerchantMatch] = None
    transaction_ids: List[str] = field(default_factory=list)
    first_transaction_date: Optional[datetime] = None
    last_transaction_date: Optional[datetime] = None
    transaction_count: int = 0
    average_interval: float = 0.0
    amount_variance: float = 0.0  # percentage

    @property
    def display_name(self) -> str:
        if self.known_merchant:
            return self.known_merchant.display_name
        return self.merchant


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping to the last day of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_interval(value: datetime, interval: Optional[str]) -> datetime:
    """Next billing date after `value` for a billing interval."""
    if interval == "weekly":
        return value + timedelta(days=7)
    if interval == "bi-weekly":
        return value + timedelta(days=14)
    if interval == "quarterly":
        return add_months(value, 3)
    if interval == "yearly":
        return add_months(value, 12)
    return add_months(value, 1)


def days_between(first: datetime, second: datetime) -> int:
    """Whole days between two datetimes, rounded up."""
    return math.ceil(abs((second - first).total_seconds()) / 86400)


def is_excluded_merchant(raw_merchant: Optional[str], normalized: Optional[str]) -> bool:
    check = f"{raw_merchant or ''} {normalized or ''}".strip()
    if not check:
        return False
    return any(pattern.search(check) for pattern in EXCLUDED_MERCHANT_PATTERNS)


def collapse_occurrences(records: List[TransactionRecord]) -> List[TransactionRecord]:
    """
    Collapse charges within OCCURRENCE_WINDOW_DAYS of each other into one
    occurrence, represented by the charge with the median absolute amount.
    """
    ordered = sorted(records, key=lambda r: r.date)
    clusters: List[List[TransactionRecord]] = []

    for record in ordered:
        if clusters and days_between(clusters[-1][0].date, record.date) <= OCCURRENCE_WINDOW_DAYS:
            clusters[-1].append(record)
        else:
            clusters.append([record])

    occurrences = []
    for cluster in clusters:
        by_amount = sorted(cluster, key=lambda r: abs(r.amount))
        occurrences.append(by_amount[len(by_amount) // 2])

    return sorted(occurrences, key=lambda r: r.date)


def detect_interval_type(
    intervals: List[int],
    occurrence_count: int,
) -> Optional[Tuple[IntervalPattern, float, float]]:
    """
    Pick the interval band that best explains the gaps between occurrences.

    Returns:
        (band, interval_confidence, average_interval) or None
    """
    if not intervals:
        return None

    avg_interval = sum(intervals) / len(intervals)
    best: Optional[Tuple[IntervalPattern, float, float]] = None
    best_score = 0.0

    for band in INTERVAL_PATTERNS:
        if occurrence_count < band.min_occurrences:
            continue
        if not (band.min_days <= avg_interval <= band.max_days):
            continue

        half_range = (band.max_days - band.min_days) / 2
        closeness = max(0.0, 1 - abs(avg_interval - band.ideal_days) / half_range)
        in_band = sum(1 for days in intervals if band.min_days <= days <= band.max_days)
        consistency_ratio = in_band / len(intervals)

        confidence = closeness * 0.6 + consistency_ratio * 0.4
        if confidence > best_score:
            best_score = confidence
            best = (band, confidence, avg_interval)

    return best


def calculate_amount_variance(amounts: List[float]) -> float:
    """Mean relative deviation of amounts from their average."""
    if len(amounts) < 2:
        return 0.0
    avg = sum(abs(a) for a in amounts) / len(amounts)
    if avg == 0:
        return 0.0
    return sum(abs(abs(a) - avg) / avg for a in amounts) / len(amounts)


def is_amount_consistent(amounts: List[float], tolerance: float = AMOUNT_TOLERANCE) -> bool:
    if len(amounts) < 2:
        return True
    avg = sum(abs(a) for a in amounts) / len(amounts)
    if avg == 0:
        return False
    return all(abs(abs(a) - avg) / avg <= tolerance for a in amounts)


def score_pattern(
    interval_confidence: float,
    amount_consistent: bool,
    amount_variance: float,
    has_known_merchant: bool,
    occurrence_count: int,
) -> Optional[float]:
    """
    Confidence score for a candidate, or None when it is too weak to report.

    Raw score = interval (50%) + amount consistency + known merchant + count
    bonus, then remapped into tiers: 0.6+ for consistent matches, 0.5-0.59
    for regular intervals with drifting amounts, 0.4 for possible patterns.
    """
    score = interval_confidence * 0.5

    if amount_consistent:
        score += 0.3
    elif amount_variance < 0.3:
        score += 0.15

    if has_known_merchant:
        score += 0.1

    score += min(0.1, (occurrence_count - MIN_TRANSACTIONS) * 0.02)
    score = min(1.0, score)

    if score >= 0.5 and amount_consistent:
        return max(0.6, score)
    if score >= 0.35 and interval_confidence > 0.6:
        return max(0.5, min(score, 0.59))
    if score >= 0.25:
        return 0.4
    return None


def detect_recurring_patterns(
    records: List[TransactionRecord],
    country: Optional[str] = None,
) -> List[DetectedPattern]:
    """
    Detect recurring subscription patterns from transactions.

    Args:
        records: Transactions to analyze; only expenses (amount < 0) are used
        country: Country code for known-merchant matching

    Returns:
        Detected patterns sorted by confidence, highest first
    """
    expenses = [
        r for r in records
        if r.amount < 0 and ((r.merchant and r.merchant.strip()) or (r.description and r.description.strip()))
    ]
    if len(expenses) < MIN_TRANSACTIONS:
        return []

    groups: Dict[str, List[TransactionRecord]] = defaultdict(list)
    for record in expenses:
        normalized = merchant_key(record.merchant, record.description)
        if not normalized or len(normalized) < 2:
            continue
        if is_excluded_merchant(record.merchant or record.description, normalized):
            logger.debug(f"[SUBSCRIPTION_DETECTOR] Excluding non-subscription merchant: {normalized}")
            continue
        groups[normalized].append(record)

    detected: List[DetectedPattern] = []

    for normalized, group in groups.items():
        if len(group) < MIN_TRANSACTIONS:
            continue

        occurrences = collapse_occurrences(group)
        if len(occurrences) < MIN_TRANSACTIONS:
            continue

        intervals = [
            days_between(occurrences[i - 1].date, occurrences[i].date)
            for i in range(1, len(occurrences))
        ]
        interval_match = detect_interval_type(intervals, len(occurrences))
        if not interval_match:
            logger.debug(
                f"[SUBSCRIPTION_DETECTOR] {normalized}: no interval pattern (intervals: {intervals})"
            )
            continue
        band, interval_confidence, avg_interval = interval_match

        amounts = [r.amount for r in occurrences]
        consistent = is_amount_consistent(amounts)
        variance = calculate_amount_variance(amounts)
        avg_amount = sum(abs(a) for a in amounts) / len(amounts)

        currency = Counter(r.currency or "USD" for r in group).most_common(1)[0][0]
        known = find_known_merchant(normalized, avg_amount, country, currency)
        category = known.category if known else categorize_merchant(normalized)

        confidence = score_pattern(
            interval_confidence,
            consistent,
            variance,
            known is not None,
            len(occurrences),
        )
        if confidence is None:
            logger.debug(f"[SUBSCRIPTION_DETECTOR] {normalized}: confidence too low")
            continue

        ordered = sorted(group, key=lambda r: r.date)
        first, last = ordered[0], ordered[-1]

        detected.append(
            DetectedPattern(
                merchant=(first.merchant or normalized).strip(),
                normalized_merchant=normalized,
                amount=round(avg_amount, 2),
                currency=currency,
                interval=band.name,
                next_billing_date=add_interval(last.date, band.name),
                confidence_score=round(confidence, 2),
                interval_confidence=round(interval_confidence, 3),
                category=category,
                known_merchant=known,
                transaction_ids=[r.id for r in ordered],
                first_transaction_date=first.date,
                last_transaction_date=last.date,
                transaction_count=len(occurrences),
                average_interval=round(avg_interval, 1),
                amount_variance=round(variance * 100, 1),
            )
        )

    detected.sort(key=lambda p: p.confidence_score, reverse=True)
    return detected


class SubscriptionDetector:
    """
    Detects recurring payment patterns from a user's stored transactions and
    turns them into Subscription rows.
    """

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    @staticmethod
    def _to_uuid(value: Optional[str]) -> Optional[UUID]:
        """Safely parse a UUID-like string."""
        if not value:
            return None
        try:
            return UUID(str(value))
        except (ValueError, TypeError):
            return None

    def _user_country(self) -> Optional[str]:
        account = self.db.query(BankAccount).filter(
            BankAccount.user_id == self.user_id,
        ).order_by(BankAccount.created_at).first()
        return account.country if account else None

    def detect_patterns(self, months_back: int = 24) -> List[DetectedPattern]:
        """
        Run detection over the user's expenses from the last `months_back` months.

        Raises:
            ValueError: if months_back is outside 1-60
        """
        if not isinstance(months_back, int) or not (MIN_MONTHS_BACK <= months_back <= MAX_MONTHS_BACK):
            raise ValueError(f"months_back must be between {MIN_MONTHS_BACK} and {MAX_MONTHS_BACK}")

        start_date = add_months(datetime.utcnow(), -months_back)
        logger.info(
            f"[SUBSCRIPTION_DETECTOR] Analyzing transactions for user {self.user_id} "
            f"since {start_date.date()}"
        )

        transactions = self.db.query(Transaction).filter(
            Transaction.user_id == self.user_id,
            Transaction.date >= start_date,
            Transaction.amount < 0,
        ).order_by(Transaction.date.asc()).all()

        if not transactions:
            logger.info("[SUBSCRIPTION_DETECTOR] No expense transactions found")
            return []

        records = [
            TransactionRecord(
                id=str(txn.id),
                amount=float(txn.amount),
                date=txn.date,
                merchant=txn.merchant,
                description=txn.description,
                currency=txn.currency,
            )
            for txn in transactions
        ]

        patterns = [
            p for p in detect_recurring_patterns(records, self._user_country())
            if p.confidence_score >= MIN_CONFIDENCE
        ]
        logger.info(
            f"[SUBSCRIPTION_DETECTOR] Found {len(patterns)} recurring patterns "
            f"in {len(records)} expense transactions"
        )
        return patterns

    def _match_keys(self, pattern: DetectedPattern) -> set:
        keys = {pattern.normalized_merchant, pattern.merchant.lower()}
        if pattern.known_merchant:
            keys.add(pattern.known_merchant.name)
            keys.add(pattern.known_merchant.display_name.lower())
        return keys

    def _find_existing_subscription(self, pattern: DetectedPattern) -> Optional[Subscription]:
        """Active or paused subscription for the same merchant, if any."""
        keys = self._match_keys(pattern)
        candidates = self.db.query(Subscription).filter(
            Subscription.user_id == self.user_id,
            Subscription.status.in_(["active", "paused"]),
        ).all()

        for sub in candidates:
            values = {
                (sub.merchant or "").lower(),
                normalize_merchant_name(sub.merchant or ""),
                (sub.name or "").lower(),
            }
            if keys & (values - {""}):
                return sub
        return None

    def _upsert_subscription_from_pattern(self, pattern: DetectedPattern) -> Tuple[Subscription, bool]:
        """
        Create or update a subscription from a detected pattern.

        Returns:
            (subscription, created_new)
        """
        existing = self._find_existing_subscription(pattern)
        new_amount = Decimal(str(pattern.amount))
        merchant = pattern.known_merchant.name if pattern.known_merchant else pattern.normalized_merchant

        if existing:
            old_amount = Decimal(str(existing.amount))
            if abs(old_amount - new_amount) >= Decimal("0.01"):
                existing.price_history = list(existing.price_history or []) + [
                    {
                        "date": datetime.utcnow().isoformat(),
                        "amount": float(new_amount),
                        "change": float(new_amount - old_amount),
                    }
                ]
                existing.amount = new_amount

            existing.name = pattern.display_name
            existing.merchant = merchant
            existing.currency = pattern.currency
            existing.interval = pattern.interval
            existing.confidence_score = pattern.confidence_score
            existing.is_auto_detected = True
            existing.category = pattern.category or existing.category

            # Renewal dates only move forward
            if not existing.renewal_date or pattern.next_billing_date > existing.renewal_date:
                existing.renewal_date = pattern.next_billing_date
            if not existing.last_payment_date or pattern.last_transaction_date > existing.last_payment_date:
                existing.last_payment_date = pattern.last_transaction_date

            if existing.status == "paused":
                existing.status = "active"

            existing.transaction_ids = list(
                dict.fromkeys(list(existing.transaction_ids or []) + pattern.transaction_ids)
            )
            self.db.flush()
            return existing, False

        subscription = Subscription(
            user_id=self.user_id,
            name=pattern.display_name,
            merchant=merchant,
            amount=new_amount,
            currency=pattern.currency,
            interval=pattern.interval,
            renewal_date=pattern.next_billing_date,
            last_payment_date=pattern.last_transaction_date,
            status="active",
            category=pattern.category,
            confidence_score=pattern.confidence_score,
            is_auto_detected=True,
            transaction_ids=list(pattern.transaction_ids),
            price_history=[],
        )
        self.db.add(subscription)
        self.db.flush()
        return subscription, True

    def _link_transactions_to_subscription(
        self,
        subscription: Subscription,
        transaction_ids: List[str],
    ) -> int:
        """Link matched transactions that are not yet attached to any subscription."""
        ids = [uid for uid in (self._to_uuid(t) for t in transaction_ids) if uid]
        if not ids:
            return 0

        transactions = self.db.query(Transaction).filter(
            Transaction.user_id == self.user_id,
            Transaction.id.in_(ids),
            Transaction.subscription_id.is_(None),
        ).all()

        for txn in transactions:
            txn.subscription_id = subscription.id
        return len(transactions)

    def detect_and_apply(self, months_back: int = 24) -> Dict[str, object]:
        """
        Detect subscriptions and apply them automatically.

        Creates or updates one subscription per pattern, records price
        changes, re-activates paused subscriptions and links transactions.
        """
        patterns = self.detect_patterns(months_back=months_back)

        created: List[Subscription] = []
        updated: List[Subscription] = []
        linked_count = 0

        for pattern in patterns:
            subscription, was_created = self._upsert_subscription_from_pattern(pattern)
            if was_created:
                created.append(subscription)
            else:
                updated.append(subscription)

            linked_count += self._link_transactions_to_subscription(
                subscription=subscription,
                transaction_ids=pattern.transaction_ids,
            )

        self.db.commit()

        logger.info(
            f"[SUBSCRIPTION_DETECTOR] Applied {len(patterns)} patterns for user {self.user_id}: "
            f"{len(created)} created, {len(updated)} updated, {linked_count} transactions linked"
        )

        return {
            "detected_count": len(patterns),
            "created_count": len(created),
            "updated_count": len(updated),
            "linked_count": linked_count,
            "created": created,
            "updated": updated,
        }
