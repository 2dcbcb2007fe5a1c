"""Affiliate program models.

Affiliates earn a commission on storefront orders they refer through
per-product links.

Key Features:
- Application and admin review lifecycle
- Unique affiliate codes and link codes
- Click and conversion tracking in a shared referral table
- Commission snapshots frozen at attribution time
- Payout requests reserved against the pending balance
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Integer, Text,
    Numeric, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_api.database import Base
from affiliate_api.db_types import JSONType, UUIDType, MoneyType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS (stored as VARCHAR) ====================

class AffiliateStatus(str, Enum):
    """Affiliate application status."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class PaymentMethod(str, Enum):
    """How an affiliate wants to be paid."""
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    PAYPAL = "paypal"


class ReferralEventType(str, Enum):
    """Whether a referral row records a click or an order."""
    CLICK = "click"
    CONVERSION = "conversion"


class ReferralStatus(str, Enum):
    """Commission status of a referral."""
    PENDING = "pending"          # Order placed, awaiting confirmation
    COMPLETED = "completed"      # Order confirmed, commission credited
    CANCELLED = "cancelled"      # Order cancelled or refunded


class PayoutStatus(str, Enum):
    """Payout request status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ==================== MODELS ====================

class AffiliateProfile(Base):
    """
    Per-user affiliate state.

    affiliate_code is set only while status is approved. Balances are in
    minor currency units and are written with atomic UPDATE statements.
    """
    __tablename__ = "affiliate_profiles"
    __table_args__ = (
        Index('ix_affiliate_profiles_status', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identity issued by the auth provider
    user_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=AffiliateStatus.PENDING.value,
        nullable=False,
        comment="pending, approved, rejected, suspended"
    )
    affiliate_code: Mapped[Optional[str]] = mapped_column(
        String(20),
        unique=True,
        nullable=True,
        comment="Set only while approved"
    )
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("5.00"),
        nullable=False,
        comment="Percentage of order total"
    )

    # Balances
    total_earnings: Mapped[int] = mapped_column(MoneyType, default=0, nullable=False)
    pending_earnings: Mapped[int] = mapped_column(MoneyType, default=0, nullable=False)

    # Payout details
    payment_method: Mapped[str] = mapped_column(
        String(20),
        default=PaymentMethod.BANK_TRANSFER.value,
        nullable=False
    )
    bank_details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Application details
    website: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    promotion_method: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<AffiliateProfile(user_id='{self.user_id}', status='{self.status}')>"


class AffiliateLink(Base):
    """Shareable product link owned by one affiliate. Never deleted, only deactivated."""
    __tablename__ = "affiliate_links"
    __table_args__ = (
        Index('ix_affiliate_links_affiliate', 'affiliate_id'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_profiles.id", ondelete="CASCADE"),
        nullable=False
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id"),
        nullable=False
    )

    link_code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        index=True
    )
    original_url: Mapped[str] = mapped_column(String(1000), nullable=False)

    # Counters
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    commission_earned: Mapped[int] = mapped_column(MoneyType, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Set when a reject or suspend paused the link; re-approval only revives these
    paused_by_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<AffiliateLink(link_code='{self.link_code}', clicks={self.clicks})>"


class AffiliateReferral(Base):
    """
    One row per tracked click or attributed order.

    Click rows carry zeroed commission fields. Conversion rows snapshot the
    affiliate's rate, and commission_amount never changes after insert.
    """
    __tablename__ = "affiliate_referrals"
    __table_args__ = (
        Index('ix_affiliate_referrals_affiliate_status', 'affiliate_id', 'status'),
        Index('ix_affiliate_referrals_link_code', 'link_code'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_profiles.id", ondelete="CASCADE"),
        nullable=False
    )

    event_type: Mapped[str] = mapped_column(
        String(20),
        default=ReferralEventType.CLICK.value,
        nullable=False,
        comment="click, conversion"
    )

    # At most one conversion per order
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        unique=True,
        nullable=True
    )
    link_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Client metadata, kept for auditing only
    customer_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    referrer_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Commission snapshot
    order_total: Mapped[int] = mapped_column(MoneyType, default=0, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("0"),
        nullable=False
    )
    commission_amount: Mapped[int] = mapped_column(MoneyType, default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ReferralStatus.PENDING.value,
        nullable=False,
        comment="pending, completed, cancelled"
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<AffiliateReferral(event_type='{self.event_type}', status='{self.status}')>"


class AffiliatePayout(Base):
    """Withdrawal request. The amount is reserved from pending_earnings on creation."""
    __tablename__ = "affiliate_payouts"
    __table_args__ = (
        Index('ix_affiliate_payouts_affiliate_status', 'affiliate_id', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_profiles.id", ondelete="CASCADE"),
        nullable=False
    )

    amount: Mapped[int] = mapped_column(MoneyType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=PayoutStatus.PENDING.value,
        nullable=False,
        comment="pending, processing, completed, failed"
    )

    # Snapshot of payout details at request time
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    bank_details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Set by the payment collaborator
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    def __repr__(self) -> str:
        return f"<AffiliatePayout(amount={self.amount}, status='{self.status}')>"
