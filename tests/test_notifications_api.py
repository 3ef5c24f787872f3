"""
Integration tests for the notifications API: generated notifications,
read/dismiss state, preferences and the renewal reminder email.
"""
import os
import sys
from datetime import datetime, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import OTHER_USER_ID, make_subscription  # noqa: E402
from app.routes import notifications as notifications_route  # noqa: E402

BASE = "/api/notifications/"


def _renewing_in(days: int) -> datetime:
    return datetime.utcnow() + timedelta(days=days, hours=1)


def _get(client, auth, path: str = BASE):
    response = client.get(path, headers=auth("GET", path))
    assert response.status_code == 200
    return response.json()


def test_lists_generated_notifications(client, db, user, auth) -> None:
    subscription = make_subscription(db, renewal_date=_renewing_in(2))

    body = _get(client, auth)

    assert len(body["notifications"]) == 1
    notification = body["notifications"][0]
    assert notification["type"] == "renewal_reminder"
    assert notification["severity"] == "high"
    assert notification["subscription_id"] == str(subscription.id)
    assert body["counts"] == {"total": 1, "unread": 1, "critical": 0, "high": 1, "medium": 0, "low": 0}
    print("✓ notifications generated")


def test_mark_read_persists(client, db, user, auth) -> None:
    make_subscription(db, renewal_date=_renewing_in(2))
    notification_id = _get(client, auth)["notifications"][0]["id"]
    path = f"{BASE}{notification_id}"

    response = client.patch(path, headers=auth("PATCH", path), json={"action": "read"})
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Notification marked as read"}

    body = _get(client, auth)
    assert body["notifications"][0]["is_read"] is True
    assert body["counts"]["unread"] == 0

    unread_path = f"{BASE}?unread_only=true"
    unread = _get(client, auth, unread_path)
    assert unread["notifications"] == []
    assert unread["counts"]["total"] == 1
    print("✓ read state persisted")


def test_dismiss_hides_notification(client, db, user, auth) -> None:
    make_subscription(db, renewal_date=_renewing_in(2))
    notification_id = _get(client, auth)["notifications"][0]["id"]
    path = f"{BASE}{notification_id}"

    response = client.patch(path, headers=auth("PATCH", path), json={"action": "dismiss"})
    assert response.status_code == 200

    assert _get(client, auth)["notifications"] == []
    print("✓ dismissed notification hidden")


def test_unknown_notification_is_404(client, user, auth) -> None:
    path = f"{BASE}renewal-missing-2026-01-01"
    response = client.patch(path, headers=auth("PATCH", path), json={"action": "read"})
    assert response.status_code == 404

    bad_action = client.patch(path, headers=auth("PATCH", path), json={"action": "archive"})
    assert bad_action.status_code == 400
    print("✓ unknown notification")


def test_preferences_defaults_and_update(client, db, user, auth) -> None:
    path = f"{BASE}preferences"
    defaults = _get(client, auth, path)
    assert defaults["reminder_days"] == 7
    assert defaults["renewal_reminders"] is True

    response = client.put(
        path,
        headers=auth("PUT", path),
        json={"reminder_days": 14, "spending_limit": "50", "renewal_reminders": False},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["reminder_days"] == 14
    assert float(body["spending_limit"]) == 50.0
    assert body["renewal_reminders"] is False

    invalid = client.put(path, headers=auth("PUT", path), json={"reminder_days": 31})
    assert invalid.status_code == 400

    make_subscription(db, renewal_date=_renewing_in(2))
    assert [n["type"] for n in _get(client, auth)["notifications"]] == []
    print("✓ preferences saved and applied")


def test_send_renewal_reminder(client, db, user, auth, monkeypatch) -> None:
    sent = []

    def _send(to, reminders, now=None):
        sent.append((to, reminders))
        return True

    monkeypatch.setattr(notifications_route, "send_renewal_reminder_email", _send)
    subscription = make_subscription(db, renewal_date=_renewing_in(2))
    path = f"{BASE}send-renewal"

    response = client.post(path, headers=auth("POST", path), json={"subscription_id": str(subscription.id)})

    assert response.status_code == 200
    body = response.json()
    assert body["sent"] is True
    assert body["sent_count"] == 1
    assert body["urgent_count"] == 1
    assert body["regular_count"] == 0
    assert sent[0][0] == "sam@example.com"
    print("✓ renewal reminder emailed")


def test_send_renewal_nothing_due(client, db, user, auth) -> None:
    subscription = make_subscription(db, renewal_date=_renewing_in(40))
    path = f"{BASE}send-renewal"

    response = client.post(path, headers=auth("POST", path), json={"subscription_id": str(subscription.id)})

    assert response.status_code == 200
    assert response.json()["sent"] is False
    assert response.json()["message"] == "No renewal reminders to send"
    print("✓ nothing due")


def test_send_renewal_errors(client, db, user, other_user, auth) -> None:
    theirs = make_subscription(db, user_id=OTHER_USER_ID, renewal_date=_renewing_in(2))
    path = f"{BASE}send-renewal"

    response = client.post(path, headers=auth("POST", path), json={"subscription_id": str(theirs.id)})
    assert response.status_code == 404

    mine = make_subscription(db, renewal_date=_renewing_in(2))
    user.email = None
    db.commit()
    response = client.post(path, headers=auth("POST", path), json={"subscription_id": str(mine.id)})
    assert response.status_code == 400
    print("✓ send-renewal errors")
