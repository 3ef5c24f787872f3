"""
Plaid bank-aggregation adapter.
Links bank accounts through Plaid Link and pulls accounts and transactions.

Requirements:
    - Plaid client id and secret, per region or shared

Environment:
    - PLAID_CLIENT_ID_US / PLAID_SECRET_US: US credentials
    - PLAID_CLIENT_ID_EU / PLAID_SECRET_EU: UK credentials
    - PLAID_CLIENT_ID / PLAID_SECRET: fallback for either region
    - PLAID_ENV: sandbox (default) or production

Documentation: https://plaid.com/docs/api/

Plaid reports outflows as positive amounts; this adapter flips the sign so
expenses are negative, matching how transactions are stored.
"""
import logging
import os
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import plaid
from plaid.api import plaid_api
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.depository_account_subtype import DepositoryAccountSubtype
from plaid.model.depository_account_subtypes import DepositoryAccountSubtypes
from plaid.model.depository_filter import DepositoryFilter
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.link_token_account_filters import LinkTokenAccountFilters
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions

from app.integrations.base import AccountData, BankAdapter, TransactionData

logger = logging.getLogger(__name__)

CLIENT_NAME = "Subscription Sentry"
DEFAULT_SYNC_DAYS = 30
PAGE_SIZE = 500

REGION_CURRENCY = {"US": "USD", "UK": "GBP"}
REGION_COUNTRY_CODE = {"US": "US", "UK": "GB"}


class PlaidConfigurationError(RuntimeError):
    """Raised when Plaid credentials are missing for a region."""


def normalize_region(region: Optional[str]) -> str:
    """Map a country or region code to US or UK (GB is UK)."""
    value = (region or "US").strip().upper()
    if value in ("UK", "GB"):
        return "UK"
    return "US"


def region_currency(region: Optional[str]) -> str:
    return REGION_CURRENCY[normalize_region(region)]


def region_country(region: Optional[str]) -> str:
    """Two-letter country stored on bank accounts (US or GB)."""
    return REGION_COUNTRY_CODE[normalize_region(region)]


def _credentials(region: str) -> Tuple[str, str]:
    suffix = "EU" if region == "UK" else "US"
    client_id = os.getenv(f"PLAID_CLIENT_ID_{suffix}") or os.getenv("PLAID_CLIENT_ID", "")
    secret = os.getenv(f"PLAID_SECRET_{suffix}") or os.getenv("PLAID_SECRET", "")
    if not client_id or not secret:
        raise PlaidConfigurationError(f"Plaid credentials not configured for region: {region}")
    return client_id, secret


def _environment_host() -> str:
    env = os.getenv("PLAID_ENV", "sandbox").strip().lower()
    if env == "production":
        return plaid.Environment.Production
    if env == "development":
        logger.warning("[PLAID] PLAID_ENV=development is retired by Plaid, using sandbox")
    return plaid.Environment.Sandbox


def get_plaid_client(region: Optional[str] = "US") -> plaid_api.PlaidApi:
    """
    Build a Plaid API client for a region.

    Raises:
        PlaidConfigurationError: if no credentials are configured
    """
    resolved = normalize_region(region)
    client_id, secret = _credentials(resolved)
    configuration = plaid.Configuration(
        host=_environment_host(),
        api_key={
            "clientId": client_id,
            "secret": secret,
        },
    )
    return plaid_api.PlaidApi(plaid.ApiClient(configuration))


def _as_dict(response: Any) -> Dict[str, Any]:
    if isinstance(response, dict):
        return response
    return response.to_dict()


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


class PlaidAdapter(BankAdapter):
    """Adapter for Plaid-linked bank accounts."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        region: Optional[str] = "US",
        client: Optional[Any] = None,
    ):
        """
        Initialize Plaid adapter.

        Args:
            access_token: Decrypted Plaid access token for the linked item
            region: US or UK (GB accepted)
            client: Preconfigured PlaidApi client; built from env when omitted
        """
        self.access_token = access_token
        self.region = normalize_region(region)
        self.currency = region_currency(self.region)
        self.client = client or get_plaid_client(self.region)

    def _require_token(self) -> str:
        if not self.access_token:
            raise ValueError("Plaid access token is required for this operation")
        return self.access_token

    def create_link_token(self, user_id: str) -> str:
        """Create a Link token for the frontend to open Plaid Link."""
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=user_id),
            client_name=CLIENT_NAME,
            products=[Products("transactions")],
            country_codes=[CountryCode(REGION_COUNTRY_CODE[self.region])],
            language="en",
            account_filters=LinkTokenAccountFilters(
                depository=DepositoryFilter(
                    account_subtypes=DepositoryAccountSubtypes(
                        [DepositoryAccountSubtype("checking"), DepositoryAccountSubtype("savings")]
                    )
                )
            ),
        )
        response = _as_dict(self.client.link_token_create(request))
        return response["link_token"]

    def exchange_public_token(self, public_token: str) -> Tuple[str, str]:
        """
        Exchange a Link public token for a long-lived access token.

        Returns:
            (access_token, item_id). The access token is never logged.
        """
        if not public_token:
            raise ValueError("Public token is required")
        response = _as_dict(
            self.client.item_public_token_exchange(
                ItemPublicTokenExchangeRequest(public_token=public_token)
            )
        )
        self.access_token = response["access_token"]
        logger.info(f"[PLAID] Exchanged public token for item {response['item_id']}")
        return response["access_token"], response["item_id"]

    def fetch_accounts(self) -> List[AccountData]:
        response = _as_dict(self.client.accounts_get(AccountsGetRequest(access_token=self._require_token())))
        institution = (response.get("item") or {}).get("institution_name")

        accounts = []
        for raw in response.get("accounts", []):
            balances = raw.get("balances") or {}
            available = balances.get("available")
            accounts.append(
                AccountData(
                    external_id=raw["account_id"],
                    name=raw.get("name") or raw.get("official_name") or "Bank account",
                    account_type=str(raw["type"]) if raw.get("type") else None,
                    account_subtype=str(raw["subtype"]) if raw.get("subtype") else None,
                    mask=raw.get("mask"),
                    institution=institution,
                    currency=balances.get("iso_currency_code") or self.currency,
                    balance_available=Decimal(str(available)) if available is not None else None,
                )
            )
        return accounts

    def fetch_transactions(
        self,
        account_external_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[TransactionData]:
        """Fetch transactions page by page (defaults to the last 30 days)."""
        end = _as_date(end_date or datetime.utcnow())
        start = _as_date(start_date or (datetime.utcnow() - timedelta(days=DEFAULT_SYNC_DAYS)))

        transactions: List[TransactionData] = []
        offset = 0
        while True:
            options = TransactionsGetRequestOptions(count=PAGE_SIZE, offset=offset)
            if account_external_id:
                options = TransactionsGetRequestOptions(
                    count=PAGE_SIZE,
                    offset=offset,
                    account_ids=[account_external_id],
                )
            response = _as_dict(
                self.client.transactions_get(
                    TransactionsGetRequest(
                        access_token=self._require_token(),
                        start_date=start,
                        end_date=end,
                        options=options,
                    )
                )
            )
            page = response.get("transactions", [])
            transactions.extend(self.normalize_transaction(raw) for raw in page)
            offset += len(page)

            total = response.get("total_transactions", offset)
            if not page or offset >= total:
                break

        logger.info(f"[PLAID] Fetched {len(transactions)} transactions from {start} to {end}")
        return transactions

    def normalize_transaction(self, raw: dict) -> TransactionData:
        plaid_amount = Decimal(str(raw["amount"]))
        amount = -plaid_amount

        category = None
        personal_finance = raw.get("personal_finance_category") or {}
        if personal_finance.get("primary"):
            category = str(personal_finance["primary"])
        elif raw.get("category"):
            category = raw["category"][0]

        booked = raw["date"]
        booked_at = booked if isinstance(booked, datetime) else datetime.combine(_as_date(booked), datetime.min.time())

        return TransactionData(
            external_id=raw["transaction_id"],
            account_external_id=raw["account_id"],
            amount=amount,
            currency=raw.get("iso_currency_code") or self.currency,
            description=raw.get("name") or raw.get("merchant_name") or "",
            merchant=raw.get("merchant_name") or raw.get("name"),
            booked_at=booked_at,
            transaction_type="debit" if amount < 0 else "credit",
            category=category,
            pending=bool(raw.get("pending", False)),
        )
