"""
Shared fixtures: an in-memory SQLite database, a TestClient and a test user.

Environment is set before any app module is imported because the engine and
encryption config are built at import time.
"""
import os
import sys
from datetime import datetime
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["INTERNAL_AUTH_SECRET"] = "test-internal-auth-secret"
os.environ["DATA_ENCRYPTION_KEY_CURRENT"] = "11" * 32
os.environ["DATA_ENCRYPTION_KEY_ID"] = "k1"
os.environ["CRON_SECRET"] = "test-cron-secret"
for _name in (
    "ENVIRONMENT",
    "APP_ENV",
    "NODE_ENV",
    "SENDER_EMAIL",
    "SENDER_PASSWORD",
    "OPENAI_API_KEY",
    "AUTO_CREATE_TABLES",
    "DATA_ENCRYPTION_KEY_PREVIOUS",
):
    os.environ.pop(_name, None)

from app.database import Base, SessionLocal, engine  # noqa: E402
from app.models import BankAccount, Subscription, Transaction, User  # noqa: E402
from app.security.data_encryption import encrypt_secret, reset_encryption_config_cache  # noqa: E402
from tests.internal_auth import build_internal_auth_headers  # noqa: E402

TEST_USER_ID = "user_test_1"
OTHER_USER_ID = "user_test_2"


@pytest.fixture
def db():
    reset_encryption_config_cache()
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient
    from app.main import app

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def user(db) -> User:
    user = User(id=TEST_USER_ID, email="sam@example.com", name="Sam")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def other_user(db) -> User:
    user = User(id=OTHER_USER_ID, email="alex@example.com", name="Alex")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def bank_account(db, user) -> BankAccount:
    account = BankAccount(
        user_id=user.id,
        plaid_item_id="item-1",
        plaid_account_id="acc-1",
        access_token=encrypt_secret("access-sandbox-token"),
        institution_name="Test Bank",
        name="Checking",
        account_type="depository",
        account_subtype="checking",
        mask="0000",
        country="US",
        currency="USD",
    )
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def auth():
    """Signed headers for a method and path (including the query string)."""
    def _headers(method: str, path: str, user_id: str = TEST_USER_ID) -> dict:
        return build_internal_auth_headers(method, path, user_id)
    return _headers


def make_subscription(db, user_id: str = TEST_USER_ID, **overrides) -> Subscription:
    values = {
        "user_id": user_id,
        "name": "Netflix",
        "merchant": "netflix",
        "amount": Decimal("15.49"),
        "currency": "USD",
        "interval": "monthly",
        "renewal_date": datetime(2026, 1, 15),
        "status": "active",
        "transaction_ids": [],
        "price_history": [],
    }
    values.update(overrides)
    subscription = Subscription(**values)
    db.add(subscription)
    db.commit()
    return subscription


def make_transaction(db, account: BankAccount, **overrides) -> Transaction:
    values = {
        "user_id": account.user_id,
        "bank_account_id": account.id,
        "amount": Decimal("-15.49"),
        "currency": "USD",
        "date": datetime(2025, 12, 15),
        "merchant": "Netflix",
        "description": "NETFLIX.COM",
    }
    values.update(overrides)
    transaction = Transaction(**values)
    db.add(transaction)
    db.commit()
    return transaction
