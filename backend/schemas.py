from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Any, Literal, Optional

from utils.dates import to_naive_utc

Role = Literal["admin", "member"]


class UserBase(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None

class UserCreate(UserBase):
    password: str = Field(min_length=8)

class User(UserBase):
    id: int
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class UserSearchResult(BaseModel):
    id: int
    full_name: Optional[str] = None
    email: str

    class Config:
        from_attributes = True

class Token(BaseModel):
    access_token: str
    token_type: str
    refresh_token: Optional[str] = None

class TokenData(BaseModel):
    email: Optional[str] = None

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class Message(BaseModel):
    message: str


# Groups

class GroupBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    max_members: int = Field(default=10, ge=2, le=50)

class GroupCreate(GroupBase):
    pass

class GroupUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    max_members: Optional[int] = Field(default=None, ge=2, le=50)
    is_active: Optional[bool] = None

class Group(GroupBase):
    id: int
    owner_id: int
    invite_code: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True

class GroupSummary(Group):
    role: Optional[str] = None
    member_count: int = 0

class GroupMember(BaseModel):
    id: int
    user_id: int
    full_name: str
    email: str
    role: str
    joined_at: datetime

class GroupWithMembers(Group):
    members: list[GroupMember]

class GroupMemberAdd(BaseModel):
    user_id: int
    role: Role = "member"

class MemberRoleUpdate(BaseModel):
    role: Role

class GroupInvite(BaseModel):
    email: EmailStr
    role: Role = "member"
    message: Optional[str] = None

class GroupInviteResult(BaseModel):
    message: str
    notification_id: int
    email_sent: bool

class GroupJoin(BaseModel):
    invite_code: str


# Subscriptions

class SubscriptionBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    service_name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    total_price: int = Field(gt=0)  # In cents
    currency: str = Field(default="BRL", min_length=3, max_length=3)
    max_members: int = Field(ge=1, le=50)
    is_public: bool = False
    renewal_date: datetime

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v):
        return v.upper()

    @field_validator('renewal_date')
    @classmethod
    def validate_renewal_date(cls, v):
        return to_naive_utc(v)

class SubscriptionCreate(SubscriptionBase):
    group_id: Optional[int] = None

class SubscriptionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    service_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    total_price: Optional[int] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    max_members: Optional[int] = Field(default=None, ge=1, le=50)
    is_public: Optional[bool] = None
    is_active: Optional[bool] = None
    renewal_date: Optional[datetime] = None

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v):
        return v.upper() if v else v

    @field_validator('renewal_date')
    @classmethod
    def validate_renewal_date(cls, v):
        return to_naive_utc(v)

class Subscription(SubscriptionBase):
    id: int
    owner_id: int
    group_id: Optional[int] = None
    current_members: int
    is_active: bool
    last_password_change: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class SubscriptionWithRole(Subscription):
    role: Optional[str] = None
    group_name: Optional[str] = None
    your_share: int = 0

class PublicGroupRef(BaseModel):
    id: int
    name: str

class PublicSubscription(BaseModel):
    id: int
    name: str
    service_name: str
    description: Optional[str] = None
    total_price: int
    currency: str
    max_members: int
    current_members: int
    renewal_date: datetime
    created_at: datetime
    group: Optional[PublicGroupRef] = None
    price_per_member: float
    available_spots: int
    percentage_filled: float

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int

class PublicSubscriptionPage(BaseModel):
    subscriptions: list[PublicSubscription]
    pagination: Pagination

class PasswordChangeResult(BaseModel):
    message: str
    last_password_change: datetime
    members_notified: int

class SubscriptionMemberAdd(BaseModel):
    user_id: int
    role: Role = "member"

class SubscriptionMember(BaseModel):
    id: int
    user_id: int
    full_name: str
    email: str
    role: str
    joined_at: datetime
    last_payment: Optional[datetime] = None
    next_payment_due: Optional[datetime] = None


# Access requests

class AccessRequestCreate(BaseModel):
    subscription_id: int
    message: Optional[str] = Field(default=None, max_length=500)

class AccessRequestResponse(BaseModel):
    admin_response: Optional[str] = Field(default=None, max_length=500)

class AccessRequest(BaseModel):
    id: int
    user_id: int
    subscription_id: int
    status: str
    message: Optional[str] = None
    admin_response: Optional[str] = None
    requested_at: datetime
    responded_at: Optional[datetime] = None
    responded_by: Optional[int] = None

    class Config:
        from_attributes = True

class AccessRequestDetail(AccessRequest):
    subscription_name: str
    subscription_service: str


# Notifications

NotificationType = Literal["access_request", "payment_reminder", "renewal_alert", "password_change", "general"]

class NotificationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    type: NotificationType
    subscription_id: Optional[int] = None
    related_entity_id: Optional[int] = None
    related_entity_type: Optional[str] = Field(default=None, max_length=50)
    action_url: Optional[str] = Field(default=None, max_length=500)
    action_text: Optional[str] = Field(default=None, max_length=100)
    scheduled_for: Optional[datetime] = None

    @field_validator('scheduled_for')
    @classmethod
    def validate_scheduled_for(cls, v):
        return to_naive_utc(v)

class Notification(BaseModel):
    id: int
    user_id: int
    title: str
    message: str
    type: str
    subscription_id: Optional[int] = None
    related_entity_id: Optional[int] = None
    related_entity_type: Optional[str] = None
    is_read: bool
    is_archived: bool
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True

class NotificationDetail(Notification):
    subscription_name: Optional[str] = None
    service_name: Optional[str] = None

class NotificationList(BaseModel):
    notifications: list[NotificationDetail]
    unread_count: int

class AutomationResult(BaseModel):
    message: str
    results: dict[str, int]
    timestamp: datetime


# Payments

PaymentStatus = Literal["pending", "completed", "failed", "refunded"]

class PaymentCreate(BaseModel):
    subscription_id: int
    amount: int = Field(gt=0)  # In cents
    type: Literal["monthly", "initial", "proportional"]
    billing_period_start: datetime
    billing_period_end: datetime
    payment_method: Optional[str] = Field(default=None, max_length=100)
    external_payment_id: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator('billing_period_start', 'billing_period_end')
    @classmethod
    def validate_billing_period(cls, v):
        # Stored as naive UTC
        return to_naive_utc(v)

class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus

class Payment(BaseModel):
    id: int
    user_id: int
    subscription_id: int
    amount: int
    currency: str
    status: str
    type: str
    billing_period_start: datetime
    billing_period_end: datetime
    payment_method: Optional[str] = None
    external_payment_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PaymentDetail(Payment):
    subscription_name: str
    service_name: str

class PaymentSummary(BaseModel):
    total_paid: int
    pending_amount: int
    total_payments: int

class PaymentList(BaseModel):
    payments: list[PaymentDetail]
    summary: PaymentSummary


# Expenses

class ExpenseCreate(BaseModel):
    subscription_id: Optional[int] = None
    description: str = Field(min_length=1)
    amount: int = Field(gt=0)  # In cents
    category: Optional[str] = Field(default=None, max_length=100)
    date: Optional[datetime] = None
    participants: list[int] = []

    @field_validator('date')
    @classmethod
    def validate_date(cls, v):
        return to_naive_utc(v)

class ExpenseParticipant(BaseModel):
    id: int
    full_name: str

class Expense(BaseModel):
    id: int
    user_id: int
    subscription_id: Optional[int] = None
    description: str
    amount: int
    category: Optional[str] = None
    date: datetime

    class Config:
        from_attributes = True

class ExpenseWithParticipants(Expense):
    user_name: str
    subscription_name: Optional[str] = None
    participants: list[ExpenseParticipant] = []

class ExpenseBucket(BaseModel):
    key: Optional[Any] = None
    label: str
    total_amount: int
    count: int

class ExpenseSummary(BaseModel):
    total_amount: int
    total_count: int
    by_subscription: list[ExpenseBucket]
    by_category: list[ExpenseBucket]


# Dashboard

class SubscriptionBreakdown(BaseModel):
    id: int
    name: str
    service_name: str
    full_price: int
    your_share: int
    savings: int
    members: int
    role: Optional[str] = None

class CurrentMonth(BaseModel):
    total_paid: int
    total_saved: int
    savings_percentage: float
    subscription_count: int

class LifetimeTotals(BaseModel):
    total_paid: int
    total_saved: int

class MonthlySummary(BaseModel):
    month: int
    year: int
    total_paid: int
    total_saved: int

    class Config:
        from_attributes = True

class FinancialDashboard(BaseModel):
    current_month: CurrentMonth
    lifetime: LifetimeTotals
    subscription_breakdown: list[SubscriptionBreakdown]
    recent_payments: list[PaymentDetail]
    monthly_summaries: list[MonthlySummary]

class Alert(BaseModel):
    type: str
    severity: Literal["critical", "warning", "info"]
    title: str
    description: str
    action_url: str
    action_text: str
    data: dict[str, Any] = {}

class AlertSummary(BaseModel):
    critical: int
    warning: int
    info: int
    unread_notifications: int

class AlertGroups(BaseModel):
    critical: list[Alert]
    warning: list[Alert]
    info: list[Alert]

class DashboardAlerts(BaseModel):
    summary: AlertSummary
    alerts: AlertGroups
    last_updated: datetime


# Audit

class ParsedUserAgent(BaseModel):
    browser: Optional[str] = None
    os: Optional[str] = None
    device: Optional[str] = None

class AuditLogEntry(BaseModel):
    id: int
    action: str
    entity_type: str
    entity_id: Optional[int] = None
    details: Optional[dict[str, Any]] = None
    severity: str
    ip_address: Optional[str] = None
    user_agent: Optional[ParsedUserAgent] = None
    created_at: datetime
    action_description: str
    severity_label: str

class AuditLogPage(BaseModel):
    logs: list[AuditLogEntry]
    pagination: Pagination
