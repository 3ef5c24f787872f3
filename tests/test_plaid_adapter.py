"""
Tests for the Plaid adapter using a fake Plaid API client.
"""
import os
import sys
from datetime import date, datetime
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.integrations.plaid_adapter import (  # noqa: E402
    PlaidAdapter,
    PlaidConfigurationError,
    get_plaid_client,
    normalize_region,
    region_country,
    region_currency,
)


def _raw_transaction(index: int, amount: float = 15.49, **overrides) -> dict:
    raw = {
        "transaction_id": f"txn-{index}",
        "account_id": "acc-1",
        "amount": amount,
        "iso_currency_code": "USD",
        "name": "NETFLIX.COM",
        "merchant_name": "Netflix",
        "date": date(2026, 1, index),
        "pending": False,
        "personal_finance_category": {"primary": "ENTERTAINMENT"},
    }
    raw.update(overrides)
    return raw


class FakePlaidClient:
    def __init__(self, pages=None):
        self.pages = list(pages or [])
        self.transaction_requests = []

    def link_token_create(self, request):
        self.link_request = request
        return {"link_token": "link-sandbox-123"}

    def item_public_token_exchange(self, request):
        return {"access_token": "access-sandbox-abc", "item_id": "item-1"}

    def accounts_get(self, request):
        return {
            "item": {"institution_name": "First Platypus Bank"},
            "accounts": [
                {
                    "account_id": "acc-1",
                    "name": "Plaid Checking",
                    "type": "depository",
                    "subtype": "checking",
                    "mask": "0000",
                    "balances": {"available": 110.5, "iso_currency_code": "USD"},
                },
                {
                    "account_id": "acc-2",
                    "official_name": "Plaid Gold Savings",
                    "type": "depository",
                    "subtype": "savings",
                    "balances": {"available": None, "iso_currency_code": None},
                },
            ],
        }

    def transactions_get(self, request):
        self.transaction_requests.append(request)
        return self.pages.pop(0)


def test_region_helpers() -> None:
    assert normalize_region(None) == "US"
    assert normalize_region("gb") == "UK"
    assert normalize_region("UK") == "UK"
    assert normalize_region("fr") == "US"
    assert region_currency("uk") == "GBP"
    assert region_country("UK") == "GB"
    assert region_country("US") == "US"
    print("✓ region helpers")


def test_missing_credentials_raise(monkeypatch) -> None:
    for name in ("PLAID_CLIENT_ID", "PLAID_SECRET", "PLAID_CLIENT_ID_US", "PLAID_SECRET_US"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(PlaidConfigurationError):
        get_plaid_client("US")
    print("✓ missing credentials")


def test_link_token_and_exchange() -> None:
    client = FakePlaidClient()
    adapter = PlaidAdapter(region="GB", client=client)

    assert adapter.region == "UK"
    assert adapter.currency == "GBP"
    assert adapter.create_link_token("user_test_1") == "link-sandbox-123"

    access_token, item_id = adapter.exchange_public_token("public-sandbox-xyz")
    assert access_token == "access-sandbox-abc"
    assert item_id == "item-1"
    assert adapter.access_token == "access-sandbox-abc"

    with pytest.raises(ValueError):
        adapter.exchange_public_token("")
    print("✓ link token and exchange")


def test_fetch_accounts() -> None:
    adapter = PlaidAdapter(access_token="access-sandbox-abc", client=FakePlaidClient())

    accounts = adapter.fetch_accounts()

    assert [a.external_id for a in accounts] == ["acc-1", "acc-2"]
    assert accounts[0].institution == "First Platypus Bank"
    assert accounts[0].balance_available == Decimal("110.5")
    assert accounts[1].name == "Plaid Gold Savings"
    assert accounts[1].currency == "USD"
    assert accounts[1].balance_available is None
    print("✓ accounts fetched")


def test_fetch_accounts_requires_token() -> None:
    with pytest.raises(ValueError):
        PlaidAdapter(client=FakePlaidClient()).fetch_accounts()
    print("✓ access token required")


def test_fetch_transactions_paginates_and_flips_sign() -> None:
    client = FakePlaidClient(
        pages=[
            {"transactions": [_raw_transaction(1), _raw_transaction(2)], "total_transactions": 3},
            {"transactions": [_raw_transaction(3, amount=-500.0, name="Payroll", merchant_name=None)],
             "total_transactions": 3},
        ]
    )
    adapter = PlaidAdapter(access_token="access-sandbox-abc", client=client)

    transactions = adapter.fetch_transactions(
        start_date=datetime(2026, 1, 1),
        end_date=datetime(2026, 1, 31),
    )

    assert len(transactions) == 3
    assert len(client.transaction_requests) == 2
    expense, _, income = transactions
    assert expense.amount == Decimal("-15.49")
    assert expense.transaction_type == "debit"
    assert expense.merchant == "Netflix"
    assert expense.category == "ENTERTAINMENT"
    assert expense.booked_at == datetime(2026, 1, 1)
    assert income.amount == Decimal("500.0")
    assert income.transaction_type == "credit"
    assert income.merchant == "Payroll"
    print("✓ paginated transactions")


def test_normalize_transaction_legacy_category() -> None:
    adapter = PlaidAdapter(access_token="token", client=FakePlaidClient())
    raw = _raw_transaction(5, personal_finance_category=None, category=["Service", "Subscription"], pending=True)

    transaction = adapter.normalize_transaction(raw)

    assert transaction.category == "Service"
    assert transaction.pending is True
    print("✓ legacy category")


if __name__ == "__main__":
    test_region_helpers()
    test_link_token_and_exchange()
    test_fetch_accounts()
    test_fetch_transactions_paginates_and_flips_sign()
    test_normalize_transaction_legacy_category()
    print("All Plaid adapter tests passed.")
