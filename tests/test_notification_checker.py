"""
Tests for the daily notification checks (upcoming bills, price changes,
newly detected subscriptions). Email sending is replaced by recorders.
"""
import os
import sys
from datetime import datetime
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import make_subscription, make_transaction  # noqa: E402
from app.models import NotificationPreference  # noqa: E402
from app.services import notification_checker  # noqa: E402

NOW = datetime(2026, 1, 10, 9, 0)


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def _recorder(kind):
        def _send(**kwargs):
            sent.append((kind, kwargs))
            return True
        return _send

    monkeypatch.setattr(notification_checker, "send_upcoming_bill_email", _recorder("upcoming"))
    monkeypatch.setattr(notification_checker, "send_price_change_email", _recorder("price"))
    monkeypatch.setattr(notification_checker, "send_new_subscription_detected_email", _recorder("new"))
    return sent


def test_upcoming_bill_reminder_sent_once(db, user, outbox) -> None:
    subscription = make_subscription(db, renewal_date=datetime(2026, 1, 12, 9, 0))
    make_subscription(db, name="Later", merchant="later", renewal_date=datetime(2026, 1, 20, 9, 0))

    assert notification_checker.check_upcoming_bills(db, now=NOW) == 1
    kind, payload = outbox[0]
    assert kind == "upcoming"
    assert payload["to"] == "sam@example.com"
    assert payload["days_until_renewal"] == 2

    db.refresh(subscription)
    assert subscription.last_notified_at == NOW

    # Already notified within 24 hours
    assert notification_checker.check_upcoming_bills(db, now=NOW) == 0
    print("✓ upcoming bill reminder")


def test_upcoming_bill_respects_email_preference(db, user, outbox) -> None:
    db.add(NotificationPreference(user_id=user.id, email_notifications=False))
    db.commit()
    make_subscription(db, renewal_date=datetime(2026, 1, 12, 9, 0))

    assert notification_checker.check_upcoming_bills(db, now=NOW) == 0
    assert outbox == []
    print("✓ email opt-out respected")


def test_cancelled_subscriptions_are_not_reminded(db, user, outbox) -> None:
    make_subscription(db, renewal_date=datetime(2026, 1, 12, 9, 0), status="cancelled")
    assert notification_checker.check_upcoming_bills(db, now=NOW) == 0
    print("✓ cancelled subscriptions skipped")


def test_price_change_updates_amount_and_emails(db, bank_account, outbox) -> None:
    subscription = make_subscription(db, amount=Decimal("10.00"), is_auto_detected=True)
    make_transaction(db, bank_account, subscription_id=subscription.id, amount=Decimal("-12.00"),
                     date=datetime(2025, 12, 1))
    make_transaction(db, bank_account, subscription_id=subscription.id, amount=Decimal("-12.00"),
                     date=datetime(2026, 1, 1))

    assert notification_checker.check_price_changes(db, now=NOW) == 1

    db.refresh(subscription)
    assert float(subscription.amount) == 12.0
    assert subscription.price_history[-1]["change"] == 2.0
    kind, payload = outbox[0]
    assert kind == "price"
    assert payload["old_amount"] == 10.0
    assert payload["new_amount"] == 12.0
    print("✓ price change detected")


def test_small_price_drift_is_ignored(db, bank_account, outbox) -> None:
    subscription = make_subscription(db, amount=Decimal("10.00"), is_auto_detected=True)
    for day in (datetime(2025, 12, 1), datetime(2026, 1, 1)):
        make_transaction(db, bank_account, subscription_id=subscription.id, amount=Decimal("-10.20"), date=day)

    assert notification_checker.check_price_changes(db, now=NOW) == 0
    print("✓ drift under threshold ignored")


def test_notify_new_subscriptions(db, user, outbox) -> None:
    detected = make_subscription(db, is_auto_detected=True, confidence_score=0.9)
    manual = make_subscription(db, name="Gym", merchant="gym")

    assert notification_checker.notify_new_subscriptions(db, user, [detected, manual]) == 1
    assert outbox[0][1]["subscription_name"] == "Netflix"
    print("✓ new subscription emails")


def test_notify_new_subscriptions_never_raises(db, user, monkeypatch) -> None:
    def _boom(**kwargs):
        raise RuntimeError("smtp down")

    monkeypatch.setattr(notification_checker, "send_new_subscription_detected_email", _boom)
    detected = make_subscription(db, is_auto_detected=True)

    assert notification_checker.notify_new_subscriptions(db, user, [detected]) == 0
    print("✓ new subscription email failures swallowed")


def test_run_all_notification_checks(db, user, outbox) -> None:
    make_subscription(db, renewal_date=datetime(2026, 1, 12, 9, 0))

    result = notification_checker.run_all_notification_checks(db, now=NOW)

    assert result == {"upcoming_bills": 1, "price_changes": 0}
    print("✓ run all checks")
