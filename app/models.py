"""
SQLAlchemy models for users, linked bank accounts, transactions and subscriptions.
Column types are portable so the same models run on PostgreSQL and SQLite.
"""
import uuid
from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    Numeric,
    Text,
    Integer,
    Float,
    ForeignKey,
    Index,
    UniqueConstraint,
    JSON,
    Uuid,
)
from sqlalchemy.orm import relationship
from decimal import Decimal

from app.database import Base


class User(Base):
    """
    User identity. The id comes from the external auth provider.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String(255), unique=True, nullable=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    bank_accounts = relationship("BankAccount", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")
    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")
    notification_preference = relationship(
        "NotificationPreference",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    notification_states = relationship("NotificationState", back_populates="user", cascade="all, delete-orphan")


class BankAccount(Base):
    """
    Bank account linked through Plaid.
    access_token only ever holds an encryption envelope (enc:v1:...).
    """
    __tablename__ = "bank_accounts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plaid_item_id = Column(String(255), nullable=False)
    plaid_account_id = Column(String(255), nullable=False)
    access_token = Column(Text, nullable=False)  # Encrypted Plaid access token
    institution_name = Column(String(255), nullable=True)
    name = Column(String(255), nullable=False)
    account_type = Column(String(50), nullable=True)  # depository, credit
    account_subtype = Column(String(50), nullable=True)  # checking, savings
    mask = Column(String(10), nullable=True)
    country = Column(String(2), default="US")  # US, GB
    currency = Column(String(3), default="USD")
    is_active = Column(Boolean, default=True)
    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="bank_accounts")
    transactions = relationship("Transaction", back_populates="bank_account", cascade="all, delete-orphan")

    # Indexes and constraints
    __table_args__ = (
        Index("idx_bank_accounts_item", "plaid_item_id"),
        UniqueConstraint("user_id", "plaid_account_id", name="bank_accounts_user_plaid_account"),
    )


class Transaction(Base):
    """
    Bank transaction. Expenses carry negative amounts.
    """
    __tablename__ = "transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    bank_account_id = Column(Uuid(as_uuid=True), ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False)
    subscription_id = Column(Uuid(as_uuid=True), ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)
    plaid_transaction_id = Column(String(255), nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), default="USD")
    date = Column(DateTime, nullable=False)
    merchant = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    pending = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="transactions")
    bank_account = relationship("BankAccount", back_populates="transactions")
    subscription = relationship("Subscription", back_populates="linked_transactions")

    # Indexes
    __table_args__ = (
        Index("idx_transactions_user_date", "user_id", "date"),
        Index("idx_transactions_account", "bank_account_id"),
        Index("idx_transactions_subscription", "subscription_id"),
        Index("idx_transactions_plaid_id", "plaid_transaction_id"),
    )


class Subscription(Base):
    """
    Recurring charge, either entered by the user or auto-detected from transactions.
    """
    __tablename__ = "subscriptions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    merchant = Column(String(255), nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), default="USD")
    interval = Column(String(20), default="monthly")  # weekly, bi-weekly, monthly, quarterly, yearly
    renewal_date = Column(DateTime, nullable=False)
    last_payment_date = Column(DateTime, nullable=True)
    status = Column(String(20), default="active")  # active, paused, cancelled
    category = Column(String(100), nullable=True)
    confidence_score = Column(Float, nullable=True)  # 0.0-1.0, only for detected subscriptions
    is_auto_detected = Column(Boolean, default=False)
    transaction_ids = Column(JSON, default=list)
    price_history = Column(JSON, default=list)  # [{"date": ..., "amount": ..., "change": ...}]
    usage_frequency = Column(String(10), nullable=True)  # high, medium, low
    last_notified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    linked_transactions = relationship("Transaction", back_populates="subscription")

    # Indexes
    __table_args__ = (
        Index("idx_subscriptions_user_status", "user_id", "status"),
        Index("idx_subscriptions_renewal", "renewal_date"),
    )


class NotificationPreference(Base):
    """Per-user notification settings."""
    __tablename__ = "notification_preferences"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    renewal_reminders = Column(Boolean, default=True)
    price_increase_alerts = Column(Boolean, default=True)
    spending_limit_alerts = Column(Boolean, default=True)
    unused_subscription_warnings = Column(Boolean, default=True)
    duplicate_detection = Column(Boolean, default=True)
    savings_opportunities = Column(Boolean, default=True)
    email_notifications = Column(Boolean, default=True)
    reminder_days = Column(Integer, default=7)
    spending_limit = Column(Numeric(15, 2), default=Decimal("100"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="notification_preference")


class NotificationState(Base):
    """
    Read/dismissed flags for generated notifications.
    Notifications themselves are computed on demand; only their state is stored.
    """
    __tablename__ = "notification_states"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    notification_id = Column(String(255), nullable=False)
    is_read = Column(Boolean, default=False)
    is_dismissed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="notification_states")

    __table_args__ = (
        UniqueConstraint("user_id", "notification_id", name="notification_states_user_notification"),
    )
