from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional
from uuid import UUID

SubscriptionInterval = Literal["weekly", "bi-weekly", "monthly", "quarterly", "yearly"]
SubscriptionStatus = Literal["active", "paused", "cancelled"]
UsageFrequency = Literal["high", "medium", "low"]

def to_naive_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; aware inputs are converted on the way in."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

UTCDateTime = Annotated[datetime, AfterValidator(to_naive_utc)]

# Subscription Schemas
class SubscriptionBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    merchant: Optional[str] = None
    amount: Decimal = Field(gt=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    interval: SubscriptionInterval = "monthly"
    renewal_date: UTCDateTime
    status: SubscriptionStatus = "active"
    category: Optional[str] = None
    usage_frequency: Optional[UsageFrequency] = None

class SubscriptionCreate(SubscriptionBase):
    last_payment_date: Optional[UTCDateTime] = None

# Columns that are NOT NULL on the model; PUT may omit them but not null them.
_REQUIRED_SUBSCRIPTION_FIELDS = ("name", "amount", "currency", "interval", "renewal_date", "status")

class SubscriptionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    merchant: Optional[str] = None
    amount: Optional[Decimal] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    interval: Optional[SubscriptionInterval] = None
    renewal_date: Optional[UTCDateTime] = None
    last_payment_date: Optional[UTCDateTime] = None
    status: Optional[SubscriptionStatus] = None
    category: Optional[str] = None
    usage_frequency: Optional[UsageFrequency] = None

    @model_validator(mode="after")
    def reject_explicit_nulls(self) -> "SubscriptionUpdate":
        nulled = [
            name for name in _REQUIRED_SUBSCRIPTION_FIELDS
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if nulled:
            raise ValueError(f"Fields cannot be null: {', '.join(nulled)}")
        return self

class SubscriptionResponse(SubscriptionBase):
    id: UUID
    user_id: str
    last_payment_date: Optional[datetime] = None
    confidence_score: Optional[float] = None
    is_auto_detected: bool = False
    transaction_ids: List[str] = []
    price_history: List[Dict[str, Any]] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class SubscriptionStats(BaseModel):
    total_monthly_spend: float
    total_yearly_spend: float
    active_count: int
    upcoming_renewals: int
    most_expensive_subscription: Optional[Dict[str, Any]] = None

class SubscriptionListResponse(BaseModel):
    subscriptions: List[SubscriptionResponse]
    stats: SubscriptionStats

class DetectSubscriptionsRequest(BaseModel):
    months_back: int = 24
    user_id: Optional[str] = None

class DetectSubscriptionsResponse(BaseModel):
    detected_count: int
    created_count: int
    updated_count: int
    linked_count: int
    subscriptions: List[SubscriptionResponse]

# Transaction Schemas
class TransactionCreate(BaseModel):
    bank_account_id: UUID
    amount: Decimal
    currency: str = Field("USD", min_length=3, max_length=3)
    date: UTCDateTime
    merchant: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    subscription_id: Optional[UUID] = None

class TransactionResponse(BaseModel):
    id: UUID
    user_id: str
    bank_account_id: UUID
    subscription_id: Optional[UUID] = None
    amount: Decimal
    currency: str
    date: datetime
    merchant: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    pending: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Notification Schemas
class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: str
    title: str
    message: str
    severity: str
    created_at: datetime
    subscription_id: Optional[str] = None
    merchant: Optional[str] = None
    amount: Optional[float] = None
    due_date: Optional[datetime] = None
    is_read: bool = False
    expires_at: Optional[datetime] = None
    action_url: Optional[str] = None
    action_text: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class NotificationCounts(BaseModel):
    total: int
    unread: int
    critical: int
    high: int
    medium: int
    low: int

class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    counts: NotificationCounts

class NotificationAction(BaseModel):
    action: Literal["read", "dismiss"]

class NotificationActionResponse(BaseModel):
    success: bool
    message: str

class SendRenewalRequest(BaseModel):
    subscription_id: UUID

class SendRenewalResponse(BaseModel):
    message: str
    sent: bool
    sent_count: int = 0
    urgent_count: int = 0
    regular_count: int = 0

class NotificationPreferencesBase(BaseModel):
    renewal_reminders: bool = True
    price_increase_alerts: bool = True
    spending_limit_alerts: bool = True
    unused_subscription_warnings: bool = True
    duplicate_detection: bool = True
    savings_opportunities: bool = True
    email_notifications: bool = True
    reminder_days: int = Field(7, ge=1, le=30)
    spending_limit: Decimal = Field(Decimal("100"), ge=0)

class NotificationPreferencesUpdate(BaseModel):
    renewal_reminders: Optional[bool] = None
    price_increase_alerts: Optional[bool] = None
    spending_limit_alerts: Optional[bool] = None
    unused_subscription_warnings: Optional[bool] = None
    duplicate_detection: Optional[bool] = None
    savings_opportunities: Optional[bool] = None
    email_notifications: Optional[bool] = None
    reminder_days: Optional[int] = Field(None, ge=1, le=30)
    spending_limit: Optional[Decimal] = Field(None, ge=0)

class NotificationPreferencesResponse(NotificationPreferencesBase):
    model_config = ConfigDict(from_attributes=True)

# Plaid Schemas
class LinkTokenRequest(BaseModel):
    region: str = "US"

class LinkTokenResponse(BaseModel):
    link_token: str
    region: str

class ExchangeTokenRequest(BaseModel):
    public_token: str = Field(min_length=1)
    region: str = "US"

class BankAccountResponse(BaseModel):
    id: UUID
    name: str
    institution_name: Optional[str] = None
    account_type: Optional[str] = None
    account_subtype: Optional[str] = None
    mask: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None
    is_active: bool = True
    last_sync_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class ExchangeTokenResponse(BaseModel):
    success: bool
    accounts: List[BankAccountResponse]
    transactions_saved: int
    subscriptions_detected: int

class SyncTransactionsRequest(BaseModel):
    bank_account_id: Optional[UUID] = None

class SyncTransactionsResponse(BaseModel):
    saved: int
    skipped: int
    detected: int
    errors: List[str] = []

# AI Schemas
class CancellationGuideRequest(BaseModel):
    subscription_id: UUID

class CancellationGuideResponse(BaseModel):
    subscription_id: UUID
    name: str
    steps: List[str]

class SupportTemplateRequest(BaseModel):
    subscription_id: UUID
    reason: str = Field(min_length=1)

class SupportTemplateResponse(BaseModel):
    subscription_id: UUID
    template: str

class ChatMessage(BaseModel):
    role: Literal["user", "assistant"] = "user"
    content: str

class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    conversation_history: List[ChatMessage] = []

class ChatResponse(BaseModel):
    response: str
