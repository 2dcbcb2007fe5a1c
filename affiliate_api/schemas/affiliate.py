"""
Affiliate Program Schemas

Request and response models for affiliates, links, referrals, payouts
and the dashboard. Amounts are integers in minor currency units.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from affiliate_api.models.affiliate import (
    AffiliateStatus,
    PaymentMethod,
    PayoutStatus,
    ReferralEventType,
    ReferralStatus,
)
from affiliate_api.schemas.base import BaseCreateSchema, BaseResponseSchema


# ============================================================================
# Client Metadata
# ============================================================================

CLIENT_META_LIMITS = {"ip": 64, "user_agent": 500, "referrer_url": 1000}


class ClientMeta(BaseModel):
    """Visitor metadata recorded for auditing only.

    Values come from request headers, so oversized ones are cut to the
    column width rather than rejected.
    """
    ip: Optional[str] = Field(None, max_length=64)
    user_agent: Optional[str] = Field(None, max_length=500)
    referrer_url: Optional[str] = Field(None, max_length=1000)

    @field_validator('ip', 'user_agent', 'referrer_url', mode='before')
    @classmethod
    def truncate(cls, v, info):
        if not isinstance(v, str):
            return v
        v = v.strip()
        if not v:
            return None
        return v[:CLIENT_META_LIMITS[info.field_name]]


# ============================================================================
# Affiliate Profile Schemas
# ============================================================================

class AffiliateApplication(BaseCreateSchema):
    """Schema for applying to the affiliate program"""
    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    payment_method: PaymentMethod
    bank_details: Optional[dict] = None
    website: Optional[str] = Field(None, max_length=500)
    promotion_method: Optional[str] = Field(None, max_length=2000)


class AffiliateProfileResponse(BaseResponseSchema):
    """Schema for affiliate profile response"""
    id: UUID
    user_id: str
    full_name: str
    email: str
    status: AffiliateStatus
    affiliate_code: Optional[str] = None
    commission_rate: float
    total_earnings: int
    pending_earnings: int
    payment_method: PaymentMethod
    website: Optional[str] = None
    rejection_reason: Optional[str] = None
    applied_at: datetime
    approved_at: Optional[datetime] = None


class AdminActionType(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    SUSPEND = "suspend"


class AdminAction(BaseCreateSchema):
    """Admin decision on an affiliate"""
    action: AdminActionType
    reason: Optional[str] = Field(None, max_length=2000)
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)


# ============================================================================
# Link Schemas
# ============================================================================

class LinkCreate(BaseCreateSchema):
    """Schema for generating an affiliate link"""
    product_id: UUID


class AffiliateLinkResponse(BaseResponseSchema):
    """Schema for affiliate link response"""
    id: UUID
    affiliate_id: UUID
    product_id: UUID
    link_code: str
    original_url: str
    clicks: int
    conversions: int
    commission_earned: int
    is_active: bool
    created_at: datetime


class ClickTrackRequest(BaseCreateSchema):
    """Public click tracking payload"""
    link_code: str = Field(..., min_length=1, max_length=20)
    # Truncated with the rest of the visitor metadata
    referrer_url: Optional[str] = None

    @field_validator('link_code')
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


# ============================================================================
# Referral Schemas
# ============================================================================

class AffiliateReferralResponse(BaseResponseSchema):
    """Schema for referral response"""
    id: UUID
    affiliate_id: UUID
    event_type: ReferralEventType
    order_id: Optional[UUID] = None
    link_code: Optional[str] = None
    order_total: int
    commission_rate: float
    commission_amount: int
    status: ReferralStatus
    paid_at: Optional[datetime] = None
    created_at: datetime


class ReferralStatusUpdate(BaseCreateSchema):
    """Admin transition of an order's referral"""
    status: Literal["completed", "cancelled"]


# ============================================================================
# Payout Schemas
# ============================================================================

class PayoutCreate(BaseCreateSchema):
    """Schema for requesting a payout"""
    amount: int = Field(..., gt=0, description="Amount in minor currency units")


class PayoutProcess(BaseCreateSchema):
    """Settlement update from the payment collaborator or an admin"""
    status: Literal["processing", "completed", "failed"]
    transaction_id: Optional[str] = Field(None, max_length=100)
    failure_reason: Optional[str] = Field(None, max_length=2000)


class AffiliatePayoutResponse(BaseResponseSchema):
    """Schema for payout response"""
    id: UUID
    affiliate_id: UUID
    amount: int
    status: PayoutStatus
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None


# ============================================================================
# Dashboard Schemas
# ============================================================================

class AffiliateDashboard(BaseModel):
    """Read-only rollup of an affiliate's activity"""
    profile: AffiliateProfileResponse
    total_links: int = 0
    active_links: int = 0
    total_clicks: int = 0
    total_conversions: int = 0
    conversion_rate: float = 0.0
    pending_referrals: int = 0
    completed_referrals: int = 0
    cancelled_referrals: int = 0
    total_commission: int = 0
    unpaid_commission: int = 0
    total_payouts: int = 0
    pending_payouts: int = 0


# ============================================================================
# Webhook Schemas
# ============================================================================

class OrderEventData(BaseModel):
    """Order payload sent by the storefront"""
    order_id: UUID
    order_total: Optional[int] = Field(None, ge=0)
    affiliate_code: Optional[str] = Field(None, max_length=20)
    link_code: Optional[str] = Field(None, max_length=20)
    landing_url: Optional[str] = Field(None, max_length=2000)
    customer_ip: Optional[str] = Field(None, max_length=64)
    user_agent: Optional[str] = Field(None, max_length=500)
    referrer_url: Optional[str] = Field(None, max_length=1000)


class OrderEvent(BaseModel):
    """Order webhook envelope"""
    event: str
    data: OrderEventData
