"""
Integration tests for the subscriptions API.
"""
import os
import sys
from datetime import datetime, timedelta
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import OTHER_USER_ID, TEST_USER_ID, make_subscription, make_transaction  # noqa: E402
from app.models import Subscription, Transaction  # noqa: E402

BASE = "/api/subscriptions/"


def test_create_subscription(client, user, auth) -> None:
    payload = {
        "name": "Spotify",
        "merchant": "spotify",
        "amount": "11.99",
        "currency": "GBP",
        "interval": "monthly",
        "renewal_date": "2026-02-01T00:00:00",
        "category": "Streaming",
    }

    response = client.post(BASE, headers=auth("POST", BASE), json=payload)

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Spotify"
    assert float(body["amount"]) == 11.99
    assert body["user_id"] == TEST_USER_ID
    assert body["is_auto_detected"] is False
    assert body["status"] == "active"
    print("✓ subscription created")


def test_create_requires_known_user(client, auth) -> None:
    payload = {"name": "Spotify", "amount": "11.99", "renewal_date": "2026-02-01T00:00:00"}
    response = client.post(BASE, headers=auth("POST", BASE), json=payload)
    assert response.status_code == 404
    print("✓ unknown user rejected")


def test_create_rejects_bad_interval(client, user, auth) -> None:
    payload = {"name": "Spotify", "amount": "11.99", "interval": "daily", "renewal_date": "2026-02-01T00:00:00"}
    response = client.post(BASE, headers=auth("POST", BASE), json=payload)
    assert response.status_code == 400
    print("✓ invalid interval rejected")


def test_list_subscriptions_with_stats(client, db, user, other_user, auth) -> None:
    make_subscription(db, renewal_date=datetime(2026, 2, 1))
    make_subscription(db, name="Adobe", merchant="adobe", amount=Decimal("600.00"), interval="yearly",
                      renewal_date=datetime(2026, 1, 20))
    make_subscription(db, name="Old", merchant="old", status="cancelled")
    make_subscription(db, user_id=OTHER_USER_ID, name="Theirs", merchant="theirs")

    response = client.get(BASE, headers=auth("GET", BASE))

    assert response.status_code == 200
    body = response.json()
    names = [s["name"] for s in body["subscriptions"]]
    assert names == ["Old", "Adobe", "Netflix"]
    assert body["stats"]["active_count"] == 2
    assert body["stats"]["total_monthly_spend"] == 65.49

    path = f"{BASE}?status=cancelled"
    filtered = client.get(path, headers=auth("GET", path)).json()
    assert [s["name"] for s in filtered["subscriptions"]] == ["Old"]
    print("✓ subscriptions listed")


def test_get_subscription_scoped_to_owner(client, db, user, other_user, auth) -> None:
    mine = make_subscription(db)
    theirs = make_subscription(db, user_id=OTHER_USER_ID)

    path = f"{BASE}{mine.id}"
    assert client.get(path, headers=auth("GET", path)).status_code == 200

    path = f"{BASE}{theirs.id}"
    assert client.get(path, headers=auth("GET", path)).status_code == 404
    print("✓ ownership enforced")


def test_update_amount_records_price_history(client, db, user, auth) -> None:
    subscription = make_subscription(db)
    path = f"{BASE}{subscription.id}"

    response = client.put(path, headers=auth("PUT", path), json={"amount": "17.99", "usage_frequency": "low"})

    assert response.status_code == 200
    body = response.json()
    assert float(body["amount"]) == 17.99
    assert body["usage_frequency"] == "low"
    assert len(body["price_history"]) == 1
    assert body["price_history"][0]["change"] == 2.5

    # No history entry when the amount is unchanged
    response = client.put(path, headers=auth("PUT", path), json={"amount": "17.99"})
    assert len(response.json()["price_history"]) == 1
    print("✓ price history recorded")


def test_update_rejects_null_for_required_fields(client, db, user, auth) -> None:
    subscription = make_subscription(db)
    path = f"{BASE}{subscription.id}"

    for field in ("name", "amount", "renewal_date", "currency", "interval", "status"):
        response = client.put(path, headers=auth("PUT", path), json={field: None})
        assert response.status_code == 400, field
        assert response.json()["detail"] == "Validation failed"

    # Nullable fields can still be cleared
    response = client.put(path, headers=auth("PUT", path), json={"category": None, "merchant": None})
    assert response.status_code == 200
    assert response.json()["name"] == "Netflix"
    print("✓ explicit nulls rejected for required fields")


def test_update_converts_aware_renewal_date(client, db, user, auth) -> None:
    subscription = make_subscription(db)
    path = f"{BASE}{subscription.id}"

    response = client.put(path, headers=auth("PUT", path), json={"renewal_date": "2026-03-01T02:00:00+02:00"})

    assert response.status_code == 200
    assert response.json()["renewal_date"] == "2026-03-01T00:00:00"
    print("✓ aware renewal date converted to UTC")


def test_delete_unlinks_transactions(client, db, bank_account, auth) -> None:
    subscription = make_subscription(db)
    transaction = make_transaction(db, bank_account, subscription_id=subscription.id)
    transaction_id = transaction.id
    path = f"{BASE}{subscription.id}"

    response = client.delete(path, headers=auth("DELETE", path))

    assert response.status_code == 204
    db.expire_all()
    assert db.query(Subscription).count() == 0
    kept = db.query(Transaction).filter(Transaction.id == transaction_id).one()
    assert kept.subscription_id is None

    assert client.delete(path, headers=auth("DELETE", path)).status_code == 404
    print("✓ subscription deleted and transactions unlinked")


def test_detect_subscriptions(client, db, bank_account, auth) -> None:
    now = datetime.utcnow().replace(hour=12, minute=0, second=0, microsecond=0)
    for months_ago in (3, 2, 1):
        make_transaction(db, bank_account, date=now - timedelta(days=30 * months_ago))
    path = f"{BASE}detect"

    response = client.post(path, headers=auth("POST", path), json={"months_back": 12})

    assert response.status_code == 200
    body = response.json()
    assert body["detected_count"] == 1
    assert body["created_count"] == 1
    assert body["linked_count"] == 3
    assert body["subscriptions"][0]["name"] == "Netflix"
    assert body["subscriptions"][0]["is_auto_detected"] is True

    # Running again updates instead of duplicating
    again = client.post(path, headers=auth("POST", path)).json()
    assert again["created_count"] == 0
    assert again["updated_count"] == 1
    print("✓ detection endpoint")


def test_detect_rejects_invalid_window(client, user, auth) -> None:
    path = f"{BASE}detect"
    response = client.post(path, headers=auth("POST", path), json={"months_back": 0})
    assert response.status_code == 400
    print("✓ invalid detection window")
