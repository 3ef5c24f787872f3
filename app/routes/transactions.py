from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.db_helpers import get_user_id
from app.models import BankAccount, Subscription, Transaction
from app.schemas import TransactionCreate, TransactionResponse
from app.services.sync_service import SyncService

router = APIRouter()


@router.get("/", response_model=List[TransactionResponse])
def list_transactions(
    limit: int = Query(100, ge=1, le=500),
    bank_account_id: Optional[UUID] = None,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Most recent transactions first, optionally for one bank account."""
    user_id = get_user_id(user_id)
    query = db.query(Transaction).filter(Transaction.user_id == user_id)
    if bank_account_id:
        query = query.filter(Transaction.bank_account_id == bank_account_id)

    return query.order_by(Transaction.date.desc()).limit(limit).all()


@router.post("/", response_model=TransactionResponse, status_code=201)
def create_transaction(
    transaction: TransactionCreate,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    Record a transaction on one of the user's bank accounts.

    Linking it to a subscription counts as a renewal payment.
    """
    user_id = get_user_id(user_id)

    account = db.query(BankAccount).filter(
        BankAccount.id == transaction.bank_account_id,
        BankAccount.user_id == user_id,
    ).first()
    if not account:
        raise HTTPException(status_code=404, detail="Bank account not found")

    subscription = None
    if transaction.subscription_id:
        subscription = db.query(Subscription).filter(
            Subscription.id == transaction.subscription_id,
            Subscription.user_id == user_id,
        ).first()
        if not subscription:
            raise HTTPException(status_code=404, detail="Subscription not found")

    data = transaction.model_dump(exclude={"subscription_id"})
    db_transaction = Transaction(**data, user_id=user_id, pending=False)
    db.add(db_transaction)
    db.flush()

    if subscription:
        SyncService.record_renewal(subscription, db_transaction)

    db.commit()
    db.refresh(db_transaction)
    return db_transaction
