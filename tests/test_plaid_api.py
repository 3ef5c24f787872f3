"""
Integration tests for the Plaid routes with the adapter replaced by a fake.
"""
import os
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import plaid
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import OTHER_USER_ID, TEST_USER_ID, make_transaction  # noqa: E402
from app.integrations.base import AccountData, TransactionData  # noqa: E402
from app.integrations.plaid_adapter import PlaidConfigurationError  # noqa: E402
from app.models import BankAccount, Subscription, Transaction  # noqa: E402
from app.routes import plaid as plaid_route  # noqa: E402
from app.security.data_encryption import decrypt_secret, encrypt_secret  # noqa: E402

BASE = "/api/plaid/"


def _recent_charges(account_id: str) -> list:
    now = datetime.utcnow().replace(hour=12, minute=0, second=0, microsecond=0)
    return [
        TransactionData(
            external_id=f"plaid-txn-{months_ago}",
            account_external_id=account_id,
            amount=Decimal("-15.49"),
            currency="USD",
            description="NETFLIX.COM",
            merchant="Netflix",
            booked_at=now - timedelta(days=30 * months_ago),
            transaction_type="debit",
        )
        for months_ago in (3, 2, 1)
    ]


class FakePlaidAdapter:
    instances = []
    transactions = []
    fail_on = None

    def __init__(self, access_token: Optional[str] = None, region: Optional[str] = "US", client=None):
        if self.fail_on == "config":
            raise PlaidConfigurationError("Plaid credentials not configured for region: US")
        self.access_token = access_token
        self.region = region
        FakePlaidAdapter.instances.append(self)

    def create_link_token(self, user_id: str) -> str:
        if self.fail_on == "link":
            raise plaid.ApiException(status=400, reason="INVALID_CONFIGURATION")
        return f"link-sandbox-{self.region}-{user_id}"

    def exchange_public_token(self, public_token: str):
        if self.fail_on == "exchange":
            raise plaid.ApiException(status=400, reason="INVALID_PUBLIC_TOKEN")
        self.access_token = "access-sandbox-new"
        return "access-sandbox-new", "item-new"

    def fetch_accounts(self):
        return [
            AccountData(
                external_id="acc-new",
                name="Plaid Checking",
                account_type="depository",
                account_subtype="checking",
                mask="0000",
                institution="First Platypus Bank",
                currency="USD",
            )
        ]

    def fetch_transactions(self, account_external_id=None, start_date=None, end_date=None):
        if self.fail_on == "transactions":
            raise plaid.ApiException(status=400, reason="PRODUCT_NOT_READY")
        return [
            t for t in self.transactions
            if account_external_id is None or t.account_external_id == account_external_id
        ]


@pytest.fixture
def fake_plaid(monkeypatch):
    monkeypatch.setattr(FakePlaidAdapter, "instances", [])
    monkeypatch.setattr(FakePlaidAdapter, "transactions", [])
    monkeypatch.setattr(FakePlaidAdapter, "fail_on", None)
    monkeypatch.setattr(plaid_route, "PlaidAdapter", FakePlaidAdapter)
    return FakePlaidAdapter


def test_create_link_token(client, user, auth, fake_plaid) -> None:
    path = f"{BASE}create-link-token"
    response = client.post(path, headers=auth("POST", path), json={"region": "GB"})

    assert response.status_code == 200
    assert response.json() == {"link_token": f"link-sandbox-UK-{TEST_USER_ID}", "region": "UK"}

    default = client.post(path, headers=auth("POST", path))
    assert default.json()["region"] == "US"
    print("✓ link token created")


def test_link_token_errors_are_500(client, user, auth, fake_plaid) -> None:
    path = f"{BASE}create-link-token"

    fake_plaid.fail_on = "link"
    assert client.post(path, headers=auth("POST", path)).status_code == 500

    fake_plaid.fail_on = "config"
    response = client.post(path, headers=auth("POST", path))
    assert response.status_code == 500
    assert response.json()["detail"] == "Plaid is not configured for this region"
    print("✓ link token failures")


def test_exchange_token_links_and_imports(client, db, user, auth, fake_plaid) -> None:
    fake_plaid.transactions = _recent_charges("acc-new")
    path = f"{BASE}exchange-token"

    response = client.post(path, headers=auth("POST", path), json={"public_token": "public-sandbox-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [a["name"] for a in body["accounts"]] == ["Plaid Checking"]
    assert body["transactions_saved"] == 3
    assert body["subscriptions_detected"] == 1
    assert "access_token" not in body["accounts"][0]

    db.expire_all()
    account = db.query(BankAccount).filter(BankAccount.plaid_account_id == "acc-new").one()
    assert account.access_token != "access-sandbox-new"
    assert decrypt_secret(account.access_token) == "access-sandbox-new"
    assert db.query(Subscription).filter(Subscription.user_id == TEST_USER_ID).count() == 1
    print("✓ token exchanged and transactions imported")


def test_exchange_failure_is_500(client, user, auth, fake_plaid) -> None:
    fake_plaid.fail_on = "exchange"
    path = f"{BASE}exchange-token"
    response = client.post(path, headers=auth("POST", path), json={"public_token": "public-sandbox-1"})
    assert response.status_code == 500
    print("✓ exchange failure")


def test_exchange_keeps_accounts_when_import_fails(client, db, user, auth, fake_plaid) -> None:
    fake_plaid.fail_on = "transactions"
    path = f"{BASE}exchange-token"

    response = client.post(path, headers=auth("POST", path), json={"public_token": "public-sandbox-1"})

    assert response.status_code == 200
    assert response.json()["transactions_saved"] == 0
    db.expire_all()
    assert db.query(BankAccount).filter(BankAccount.user_id == TEST_USER_ID).count() == 1
    print("✓ accounts kept after import failure")


def test_exchange_requires_public_token(client, user, auth, fake_plaid) -> None:
    path = f"{BASE}exchange-token"
    response = client.post(path, headers=auth("POST", path), json={"public_token": ""})
    assert response.status_code == 400
    print("✓ public token required")


def test_sync_transactions(client, db, bank_account, auth, fake_plaid) -> None:
    fake_plaid.transactions = _recent_charges("acc-1")
    path = f"{BASE}sync-transactions"

    response = client.post(path, headers=auth("POST", path))

    assert response.status_code == 200
    body = response.json()
    assert body["saved"] == 3
    assert body["detected"] == 1
    assert body["errors"] == []
    assert fake_plaid.instances[0].access_token == "access-sandbox-token"

    again = client.post(path, headers=auth("POST", path)).json()
    assert again["saved"] == 0
    assert again["skipped"] == 3
    print("✓ transactions synced")


def test_sync_without_accounts_is_404(client, user, auth, fake_plaid) -> None:
    path = f"{BASE}sync-transactions"
    assert client.post(path, headers=auth("POST", path)).status_code == 404
    print("✓ no accounts to sync")


def test_list_and_delete_accounts(client, db, bank_account, other_user, auth) -> None:
    make_transaction(db, bank_account)
    foreign = BankAccount(
        user_id=OTHER_USER_ID,
        plaid_item_id="item-9",
        plaid_account_id="acc-9",
        access_token=encrypt_secret("access-other"),
        name="Theirs",
    )
    db.add(foreign)
    db.commit()
    account_id = bank_account.id
    foreign_id = foreign.id

    path = f"{BASE}accounts"
    listed = client.get(path, headers=auth("GET", path)).json()
    assert [a["name"] for a in listed] == ["Checking"]

    path = f"{BASE}accounts/{foreign_id}"
    assert client.delete(path, headers=auth("DELETE", path)).status_code == 404

    path = f"{BASE}accounts/{account_id}"
    assert client.delete(path, headers=auth("DELETE", path)).status_code == 204
    db.expire_all()
    assert db.query(BankAccount).filter(BankAccount.id == account_id).first() is None
    assert db.query(Transaction).count() == 0
    print("✓ accounts listed and deleted")
