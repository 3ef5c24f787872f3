"""
Base adapter interface for bank-aggregation providers.
"""
from abc import ABC, abstractmethod
from typing import List, Optional
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel


class AccountData(BaseModel):
    """Canonical linked-account data model."""
    external_id: str
    name: str
    account_type: Optional[str] = None  # depository, credit
    account_subtype: Optional[str] = None  # checking, savings
    mask: Optional[str] = None
    institution: Optional[str] = None
    currency: str
    balance_available: Optional[Decimal] = None
    metadata: dict = {}


class TransactionData(BaseModel):
    """
    Canonical transaction data model.
    amount follows the app convention: negative for money leaving the account.
    """
    external_id: str
    account_external_id: str
    amount: Decimal
    currency: str
    description: str
    merchant: Optional[str] = None
    booked_at: datetime
    transaction_type: str  # debit, credit
    category: Optional[str] = None
    pending: bool = False
    metadata: dict = {}


class BankAdapter(ABC):
    """Abstract base class for bank-aggregation adapters."""

    @abstractmethod
    def fetch_accounts(self) -> List[AccountData]:
        """Fetch all accounts behind the linked item."""
        pass

    @abstractmethod
    def fetch_transactions(
        self,
        account_external_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[TransactionData]:
        """Fetch transactions, optionally for a single account."""
        pass

    @abstractmethod
    def normalize_transaction(self, raw: dict) -> TransactionData:
        """Convert provider-specific transaction format to canonical format."""
        pass
