"""
Service for syncing Plaid data (linked accounts and transactions).
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.integrations.base import AccountData, BankAdapter, TransactionData
from app.integrations.plaid_adapter import DEFAULT_SYNC_DAYS, PlaidAdapter, region_country
from app.models import BankAccount, Subscription, Transaction
from app.security.data_encryption import decrypt_secret, encrypt_secret
from app.services.merchant_matcher import find_known_merchant
from app.services.merchant_normalizer import merchant_key, normalize_merchant_name
from app.services.subscription_detector import add_interval

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str, str], BankAdapter]


def _default_adapter_factory(access_token: str, region: str) -> BankAdapter:
    return PlaidAdapter(access_token=access_token, region=region)


class SyncService:
    """Service for syncing linked bank data for one user."""

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    def link_item(
        self,
        access_token: str,
        item_id: str,
        accounts: List[AccountData],
        region: str = "US",
    ) -> List[BankAccount]:
        """
        Upsert bank accounts for a freshly linked Plaid item.

        The access token is encrypted before it touches the database;
        EncryptionNotConfiguredError propagates when no key is set.
        """
        encrypted_token = encrypt_secret(access_token)
        country = region_country(region)
        linked = []

        for account_data in accounts:
            existing = self.db.query(BankAccount).filter(
                BankAccount.user_id == self.user_id,
                BankAccount.plaid_account_id == account_data.external_id,
            ).first()

            if existing:
                existing.plaid_item_id = item_id
                existing.access_token = encrypted_token
                existing.name = account_data.name
                existing.institution_name = account_data.institution
                existing.account_type = account_data.account_type
                existing.account_subtype = account_data.account_subtype
                existing.mask = account_data.mask
                existing.currency = account_data.currency
                existing.country = country
                existing.is_active = True
                linked.append(existing)
            else:
                account = BankAccount(
                    user_id=self.user_id,
                    plaid_item_id=item_id,
                    plaid_account_id=account_data.external_id,
                    access_token=encrypted_token,
                    institution_name=account_data.institution,
                    name=account_data.name,
                    account_type=account_data.account_type,
                    account_subtype=account_data.account_subtype,
                    mask=account_data.mask,
                    country=country,
                    currency=account_data.currency,
                    is_active=True,
                )
                self.db.add(account)
                linked.append(account)

        self.db.commit()
        for account in linked:
            self.db.refresh(account)

        logger.info(f"[PLAID_SYNC] Linked {len(linked)} accounts for item {item_id}")
        return linked

    def _is_duplicate(self, account: BankAccount, data: TransactionData, merchant: Optional[str]) -> bool:
        if data.external_id:
            by_id = self.db.query(Transaction.id).filter(
                Transaction.user_id == self.user_id,
                Transaction.plaid_transaction_id == data.external_id,
            ).first()
            if by_id:
                return True

        day_start = datetime.combine(data.booked_at.date(), datetime.min.time())
        same_day = self.db.query(Transaction.id).filter(
            Transaction.bank_account_id == account.id,
            Transaction.amount == data.amount,
            Transaction.date >= day_start,
            Transaction.date < day_start + timedelta(days=1),
        )
        if merchant is None:
            same_day = same_day.filter(Transaction.merchant.is_(None))
        else:
            same_day = same_day.filter(Transaction.merchant == merchant)
        return same_day.first() is not None

    def _active_subscriptions(self) -> List[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.user_id == self.user_id,
            Subscription.status == "active",
        ).all()

    @staticmethod
    def _match_subscription(
        subscriptions: List[Subscription],
        merchant: Optional[str],
        description: Optional[str],
        amount: Decimal,
        currency: str,
    ) -> Optional[Subscription]:
        """Active subscription billed by the same merchant, if any."""
        normalized = merchant_key(merchant, description)
        if not normalized:
            return None
        raw = (merchant or description or "").lower()
        known = find_known_merchant(normalized, abs(float(amount)), currency=currency)

        for sub in subscriptions:
            sub_merchant = (sub.merchant or "").lower()
            if not sub_merchant:
                continue
            if normalize_merchant_name(sub.merchant) == normalized:
                return sub
            # The charge name must sit inside the subscription's merchant, not the reverse:
            # "apple" must not claim "Applebee's Grill".
            if len(raw) >= 3 and raw in sub_merchant:
                return sub
            if known and sub_merchant == known.name:
                return sub
        return None

    @staticmethod
    def record_renewal(subscription: Subscription, transaction: Transaction) -> None:
        """Attach a renewal charge and move the subscription's dates forward."""
        transaction.subscription_id = subscription.id
        subscription.transaction_ids = list(
            dict.fromkeys(list(subscription.transaction_ids or []) + [str(transaction.id)])
        )
        if not subscription.last_payment_date or transaction.date > subscription.last_payment_date:
            subscription.last_payment_date = transaction.date

        next_renewal = add_interval(transaction.date, subscription.interval)
        if not subscription.renewal_date or next_renewal > subscription.renewal_date:
            subscription.renewal_date = next_renewal

    def sync_account_transactions(
        self,
        account: BankAccount,
        transactions: List[TransactionData],
    ) -> Dict[str, int]:
        """
        Save new transactions for one account.

        Pending charges are skipped; Plaid re-issues them under a new id once posted.

        Returns:
            {"saved": int, "skipped": int, "matched": int}
        """
        saved = 0
        skipped = 0
        matched = 0
        subscriptions = self._active_subscriptions()

        for data in transactions:
            if data.pending:
                skipped += 1
                continue

            merchant = (data.merchant or "").strip() or None
            if self._is_duplicate(account, data, merchant):
                skipped += 1
                continue

            transaction = Transaction(
                user_id=self.user_id,
                bank_account_id=account.id,
                plaid_transaction_id=data.external_id,
                amount=data.amount,
                currency=data.currency or account.currency,
                date=data.booked_at,
                merchant=merchant,
                description=data.description,
                category=data.category,
                pending=False,
            )
            self.db.add(transaction)
            self.db.flush()
            saved += 1

            if data.amount < 0:
                subscription = self._match_subscription(
                    subscriptions,
                    merchant,
                    data.description,
                    data.amount,
                    transaction.currency,
                )
                if subscription:
                    self.record_renewal(subscription, transaction)
                    matched += 1

        account.last_sync_at = datetime.utcnow()
        self.db.commit()

        logger.info(
            f"[PLAID_SYNC] Account {account.id}: saved {saved}, skipped {skipped}, "
            f"matched {matched} to subscriptions"
        )
        return {"saved": saved, "skipped": skipped, "matched": matched}

    def import_item_transactions(
        self,
        adapter: BankAdapter,
        accounts: List[BankAccount],
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """Fetch one page set for a whole item and route transactions to their accounts."""
        by_external_id = {account.plaid_account_id: account for account in accounts}
        grouped: Dict[str, List[TransactionData]] = {key: [] for key in by_external_id}

        start_date = start_date or datetime.utcnow() - timedelta(days=DEFAULT_SYNC_DAYS)
        for data in adapter.fetch_transactions(start_date=start_date, end_date=end_date):
            if data.account_external_id in grouped:
                grouped[data.account_external_id].append(data)

        totals = {"saved": 0, "skipped": 0, "matched": 0}
        for external_id, items in grouped.items():
            result = self.sync_account_transactions(by_external_id[external_id], items)
            for key in totals:
                totals[key] += result[key]
        return totals

    def sync_accounts(
        self,
        accounts: List[BankAccount],
        adapter_factory: Optional[AdapterFactory] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, object]:
        """
        Pull recent transactions for each account.

        A failing account is logged and reported in `errors`; the others still sync.

        Returns:
            {"saved": int, "skipped": int, "matched": int, "errors": [str]}
        """
        adapter_factory = adapter_factory or _default_adapter_factory
        start_date = start_date or datetime.utcnow() - timedelta(days=DEFAULT_SYNC_DAYS)
        totals = {"saved": 0, "skipped": 0, "matched": 0}
        errors: List[str] = []

        for account in accounts:
            try:
                access_token = decrypt_secret(account.access_token)
                adapter = adapter_factory(access_token, account.country or "US")
                transactions = adapter.fetch_transactions(
                    account_external_id=account.plaid_account_id,
                    start_date=start_date,
                    end_date=end_date,
                )
                result = self.sync_account_transactions(account, transactions)
                for key in totals:
                    totals[key] += result[key]
            except Exception as e:
                self.db.rollback()
                logger.exception(f"[PLAID_SYNC] Failed to sync account {account.id}")
                errors.append(f"{account.name}: {e}")

        return {**totals, "errors": errors}
