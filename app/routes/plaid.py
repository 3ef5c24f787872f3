"""
Plaid bank linking: Link tokens, public token exchange, transaction sync and
linked account management.
"""
import logging
from typing import List, Optional
from uuid import UUID

import plaid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import get_user_id, get_user_or_404
from app.integrations.plaid_adapter import PlaidAdapter, PlaidConfigurationError, normalize_region
from app.models import BankAccount
from app.schemas import (
    BankAccountResponse,
    ExchangeTokenRequest,
    ExchangeTokenResponse,
    LinkTokenRequest,
    LinkTokenResponse,
    SyncTransactionsRequest,
    SyncTransactionsResponse,
)
from app.security.data_encryption import EncryptionNotConfiguredError
from app.services.notification_checker import notify_new_subscriptions
from app.services.subscription_detector import SubscriptionDetector
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter()


def _build_adapter(region: str, access_token: Optional[str] = None) -> PlaidAdapter:
    try:
        return PlaidAdapter(access_token=access_token, region=region)
    except PlaidConfigurationError as e:
        logger.error(f"[PLAID] {e}")
        raise HTTPException(status_code=500, detail="Plaid is not configured for this region")


def _detect_after_import(db: Session, user_id: str) -> int:
    """Run detection on freshly imported transactions; returns newly created subscriptions."""
    user = get_user_or_404(db, user_id)
    result = SubscriptionDetector(db, user_id=user_id).detect_and_apply()
    notify_new_subscriptions(db, user, result["created"])
    return result["created_count"]


@router.post("/create-link-token", response_model=LinkTokenResponse)
def create_link_token(
    request: Optional[LinkTokenRequest] = None,
    user_id: Optional[str] = None,
):
    """Create a Plaid Link token for the signed-in user."""
    user_id = get_user_id(user_id)
    region = normalize_region((request or LinkTokenRequest()).region)
    adapter = _build_adapter(region)

    try:
        link_token = adapter.create_link_token(user_id)
    except plaid.ApiException as e:
        logger.error(f"[PLAID] Link token creation failed: {e.status} {e.reason}")
        raise HTTPException(status_code=500, detail="Failed to create link token")

    return {"link_token": link_token, "region": region}


@router.post("/exchange-token", response_model=ExchangeTokenResponse)
def exchange_token(
    request: ExchangeTokenRequest,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    Exchange a Link public token, store the linked accounts and import the
    last 30 days of transactions.

    A failed transaction import keeps the linked accounts; the user can sync later.
    """
    user_id = get_user_id(user_id)
    get_user_or_404(db, user_id)
    region = normalize_region(request.region)
    adapter = _build_adapter(region)

    try:
        access_token, item_id = adapter.exchange_public_token(request.public_token)
        account_data = adapter.fetch_accounts()
    except plaid.ApiException as e:
        logger.error(f"[PLAID] Token exchange failed: {e.status} {e.reason}")
        raise HTTPException(status_code=500, detail="Failed to link bank account")

    service = SyncService(db, user_id=user_id)
    try:
        accounts = service.link_item(access_token, item_id, account_data, region=region)
    except EncryptionNotConfiguredError as e:
        logger.error(f"[PLAID] {e}")
        raise HTTPException(status_code=500, detail="Token encryption is not configured")

    saved = 0
    try:
        saved = service.import_item_transactions(adapter, accounts)["saved"]
    except plaid.ApiException as e:
        db.rollback()
        logger.warning(f"[PLAID_SYNC] Initial transaction import failed for item {item_id}: {e.status} {e.reason}")

    detected = _detect_after_import(db, user_id) if saved else 0

    return {
        "success": True,
        "accounts": accounts,
        "transactions_saved": saved,
        "subscriptions_detected": detected,
    }


@router.post("/sync-transactions", response_model=SyncTransactionsResponse)
def sync_transactions(
    request: Optional[SyncTransactionsRequest] = None,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Pull the last 30 days of transactions for one or all linked accounts."""
    user_id = get_user_id(user_id)
    request = request or SyncTransactionsRequest()

    query = db.query(BankAccount).filter(
        BankAccount.user_id == user_id,
        BankAccount.is_active.is_(True),
    )
    if request.bank_account_id:
        query = query.filter(BankAccount.id == request.bank_account_id)
    accounts = query.all()
    if not accounts:
        raise HTTPException(status_code=404, detail="No bank accounts found")

    service = SyncService(db, user_id=user_id)
    result = service.sync_accounts(
        accounts,
        adapter_factory=lambda access_token, region: _build_adapter(region, access_token),
    )

    detected = _detect_after_import(db, user_id) if result["saved"] else 0

    return {
        "saved": result["saved"],
        "skipped": result["skipped"],
        "detected": detected,
        "errors": result["errors"],
    }


@router.get("/accounts", response_model=List[BankAccountResponse])
def list_bank_accounts(
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    user_id = get_user_id(user_id)
    return db.query(BankAccount).filter(
        BankAccount.user_id == user_id,
    ).order_by(BankAccount.created_at.desc()).all()


@router.delete("/accounts/{bank_account_id}", status_code=204)
def delete_bank_account(
    bank_account_id: UUID,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Unlink a bank account. Its transactions are deleted with it."""
    user_id = get_user_id(user_id)
    account = db.query(BankAccount).filter(
        BankAccount.id == bank_account_id,
        BankAccount.user_id == user_id,
    ).first()
    if not account:
        raise HTTPException(status_code=404, detail="Bank account not found")

    db.delete(account)
    db.commit()
    logger.info(f"[PLAID] Deleted bank account {bank_account_id} for user {user_id}")
    return None
