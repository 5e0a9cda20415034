"""Marketplace entity models.

Money fields are ``Decimal`` values with two decimal places; they serialise to
fixed-scale strings so they never pass through binary floating point.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

CENT = Decimal('0.01')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value: Any) -> Decimal:
    """Convert a number or string to a two-place Decimal without float drift."""
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid money value: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid money value: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class Currency(str, Enum):
    INR = "INR"
    USD = "USD"


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    PUBLISHED = "published"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    REFUND = "refund"
    COMMISSION = "commission"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class DownloadType(str, Enum):
    FULL = "full"
    DEMO = "demo"
    PREVIEW = "preview"


class UserType(str, Enum):
    USER = "user"
    ADMIN = "admin"
    MANAGER = "manager"


STAFF_TYPES = {UserType.ADMIN, UserType.MANAGER}


class Principal(BaseModel):
    """An authenticated caller."""
    user_id: str
    user_type: UserType = UserType.USER

    @property
    def is_staff(self) -> bool:
        return self.user_type in STAFF_TYPES


class Pricing(BaseModel):
    sale_price: Decimal = Field(ge=0)
    original_price: Decimal = Field(ge=0)
    currency: Currency = Currency.INR

    @field_validator('sale_price', 'original_price', mode='before')
    @classmethod
    def _money(cls, value):
        return to_money(value)


class Project(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    author_id: str
    title: str
    description: str
    category: Optional[str] = None
    difficulty_level: Optional[str] = None
    tech_stack: List[str] = Field(default_factory=list)
    github_url: Optional[str] = None
    demo_url: Optional[str] = None
    thumbnail: Optional[str] = None
    pricing: Optional[Pricing] = None
    status: ProjectStatus = ProjectStatus.DRAFT
    is_featured: bool = False
    buyers: List[str] = Field(default_factory=list)
    purchase_count: int = Field(default=0, ge=0)
    view_count: int = Field(default=0, ge=0)
    download_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def has_buyer(self, user_id: str) -> bool:
        return user_id in self.buyers


class Transaction(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    transaction_id: str
    user_id: str
    project_id: UUID
    seller_id: str
    type: TransactionType = TransactionType.PURCHASE
    status: TransactionStatus = TransactionStatus.PENDING
    amount: Decimal
    commission_amount: Decimal
    seller_amount: Decimal
    currency: Currency = Currency.INR
    payment_method: Optional[str] = None
    payment_gateway_response: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    processed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('amount', 'commission_amount', 'seller_amount', mode='before')
    @classmethod
    def _money(cls, value):
        return to_money(value)


class CartItem(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: str
    project_id: UUID
    price_at_time: Decimal
    currency: Currency = Currency.INR
    quantity: int = Field(default=1, ge=1, le=10)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('price_at_time', mode='before')
    @classmethod
    def _money(cls, value):
        return to_money(value)

    @property
    def line_total(self) -> Decimal:
        return self.price_at_time * self.quantity


class WishlistItem(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: str
    project_id: UUID
    created_at: datetime = Field(default_factory=utcnow)


class Review(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: str
    project_id: UUID
    rating: int = Field(ge=1, le=5)
    review_text: Optional[str] = None
    is_verified_purchase: bool = False
    is_approved: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Download(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: str
    project_id: UUID
    download_type: DownloadType = DownloadType.FULL
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ProjectFilters(BaseModel):
    """Search filters for the project catalogue."""
    category: Optional[List[str]] = None
    author_id: Optional[str] = None
    status: Optional[List[ProjectStatus]] = None
    is_featured: Optional[bool] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    currency: Optional[Currency] = None
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: str = 'created_at'
    sort_order: str = 'desc'


class ReviewFilters(BaseModel):
    """Admin filters for the review moderation queue."""
    status: str = 'all'  # pending | approved | all
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)
    sort_by: str = 'created_at'
    sort_order: str = 'desc'


__all__ = [
    'CENT', 'utcnow', 'to_money',
    'Currency', 'ProjectStatus', 'TransactionType', 'TransactionStatus',
    'DownloadType', 'UserType', 'STAFF_TYPES', 'Principal',
    'Pricing', 'Project', 'Transaction', 'CartItem', 'WishlistItem',
    'Review', 'Download', 'ProjectFilters', 'ReviewFilters',
]
