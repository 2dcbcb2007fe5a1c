"""
Referral Attribution & Commission Service

Turns an order carrying an affiliate code into a commission record and
drives it through its lifecycle:

    pending --(order confirmed)--> completed   credits the affiliate balances
    pending --(order cancelled)--> cancelled   credits nothing

All amounts are integers in minor currency units. Commission is computed
with integer arithmetic only and frozen on the referral at insert time.
"""

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple, Union

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_api.config import settings
from affiliate_api.core.exceptions import (
    DuplicateAttribution,
    InvalidAffiliateCode,
    InvalidTransition,
    ReferralNotFound,
    ValidationError,
)
from affiliate_api.core.retry import retry_transient_read
from affiliate_api.models.affiliate import (
    AffiliateLink,
    AffiliateProfile,
    AffiliateReferral,
    AffiliateStatus,
    ReferralEventType,
    ReferralStatus,
)
from affiliate_api.models.commerce import Order
from affiliate_api.schemas.affiliate import ClientMeta

logger = logging.getLogger(__name__)


def compute_commission(order_total: int, rate: Union[Decimal, int, float, str]) -> int:
    """
    floor(order_total * rate / 100) using integer arithmetic.

    The rate is a percentage with at most two decimal places, converted to
    basis points so no float ever touches the amount.

    >>> compute_commission(100_000, 5)
    5000
    """
    if isinstance(order_total, bool) or not isinstance(order_total, int):
        raise ValidationError("Order total must be an integer amount in minor units")
    if order_total < 0:
        raise ValidationError("Order total cannot be negative")

    try:
        rate_dec = Decimal(str(rate))
    except InvalidOperation:
        raise ValidationError(f"Invalid commission rate: {rate}")
    if not Decimal(0) <= rate_dec <= Decimal(100):
        raise ValidationError("Commission rate must be between 0 and 100")

    rate_bp = rate_dec * 100
    if rate_bp != rate_bp.to_integral_value():
        raise ValidationError("Commission rate supports at most two decimal places")

    return order_total * int(rate_bp) // 10_000


class CommissionService:
    """Service for referral attribution and commission lifecycle"""

    def __init__(self, db: AsyncSession, tiers: Optional[List[dict]] = None):
        self.db = db
        self.tiers = settings.COMMISSION_TIERS if tiers is None else tiers

    # ========================================================================
    # Lookups
    # ========================================================================

    async def find_approved_affiliate(self, affiliate_code: str) -> Optional[AffiliateProfile]:
        code = (affiliate_code or "").strip().upper()
        if not code:
            return None
        result = await self.db.execute(
            select(AffiliateProfile).where(
                AffiliateProfile.affiliate_code == code,
                AffiliateProfile.status == AffiliateStatus.APPROVED.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_order(self, order_id: uuid.UUID) -> Optional[AffiliateReferral]:
        result = await self.db.execute(
            select(AffiliateReferral).where(AffiliateReferral.order_id == order_id)
        )
        return result.scalar_one_or_none()

    @retry_transient_read
    async def list_referrals(
        self,
        affiliate_id: uuid.UUID,
        status: Optional[ReferralStatus] = None,
        event_type: Optional[ReferralEventType] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[AffiliateReferral], int]:
        query = select(AffiliateReferral).where(AffiliateReferral.affiliate_id == affiliate_id)
        count_query = select(func.count(AffiliateReferral.id)).where(
            AffiliateReferral.affiliate_id == affiliate_id
        )

        if status:
            query = query.where(AffiliateReferral.status == status.value)
            count_query = count_query.where(AffiliateReferral.status == status.value)
        if event_type:
            query = query.where(AffiliateReferral.event_type == event_type.value)
            count_query = count_query.where(AffiliateReferral.event_type == event_type.value)

        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(AffiliateReferral.created_at.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # ========================================================================
    # Attribution
    # ========================================================================

    async def attribute_referral(
        self,
        order_id: uuid.UUID,
        affiliate_code: str,
        order_total: int,
        client_meta: Optional[ClientMeta] = None,
        link_code: Optional[str] = None,
    ) -> AffiliateReferral:
        """
        Record a pending commission for an order referred by an affiliate.

        At most one referral exists per order: a repeat (e.g. a webhook
        retry) raises DuplicateAttribution carrying the original row and
        changes nothing. Balances are only credited on completion.

        Raises:
            InvalidAffiliateCode: code doesn't belong to an approved affiliate
            DuplicateAttribution: order already attributed
        """
        meta = client_meta or ClientMeta()

        existing = await self.get_by_order(order_id)
        if existing:
            raise DuplicateAttribution(existing)

        profile = await self.find_approved_affiliate(affiliate_code)
        if not profile:
            raise InvalidAffiliateCode(details={"affiliate_code": affiliate_code})

        rate = profile.commission_rate
        commission = compute_commission(order_total, rate)

        # Only credit a link that belongs to the resolved affiliate
        link = None
        if link_code:
            result = await self.db.execute(
                select(AffiliateLink).where(
                    AffiliateLink.link_code == link_code.strip().upper(),
                    AffiliateLink.affiliate_id == profile.id,
                )
            )
            link = result.scalar_one_or_none()
            if not link:
                logger.info(f"Ignoring link code {link_code} not owned by affiliate {profile.id}")

        referral = AffiliateReferral(
            affiliate_id=profile.id,
            event_type=ReferralEventType.CONVERSION.value,
            order_id=order_id,
            link_code=link.link_code if link else None,
            customer_ip=meta.ip,
            user_agent=meta.user_agent,
            referrer_url=meta.referrer_url,
            order_total=order_total,
            commission_rate=rate,
            commission_amount=commission,
            status=ReferralStatus.PENDING.value,
        )
        self.db.add(referral)
        try:
            await self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent attribution of the same order
            await self.db.rollback()
            existing = await self.get_by_order(order_id)
            if existing:
                raise DuplicateAttribution(existing)
            raise

        if link:
            await self.db.execute(
                update(AffiliateLink)
                .where(AffiliateLink.id == link.id)
                .values(conversions=AffiliateLink.conversions + 1)
                .execution_options(synchronize_session=False)
            )

        # Stamp the referring affiliate on the storefront order for audit
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(affiliate_id=profile.id, referral_code=profile.affiliate_code)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.debug(f"Order {order_id} not present locally; skipped affiliate stamp")

        await self.db.refresh(referral)
        logger.info(
            f"Attributed order {order_id} to affiliate {profile.id}: "
            f"{commission} on {order_total} at {rate}%"
        )
        return referral

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def _get_conversion(self, order_id: uuid.UUID) -> AffiliateReferral:
        referral = await self.get_by_order(order_id)
        if not referral:
            raise ReferralNotFound(f"No referral recorded for order {order_id}")
        return referral

    async def _transition(self, referral: AffiliateReferral, target: ReferralStatus) -> bool:
        """pending -> target. Returns False if the referral was already at target."""
        result = await self.db.execute(
            update(AffiliateReferral)
            .where(
                AffiliateReferral.id == referral.id,
                AffiliateReferral.status == ReferralStatus.PENDING.value,
            )
            .values(status=target.value)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(referral)

        if result.rowcount == 1:
            return True
        if referral.status == target.value:
            return False
        raise InvalidTransition(
            f"Referral for order {referral.order_id} is already {referral.status}"
        )

    async def complete_referral(self, order_id: uuid.UUID) -> AffiliateReferral:
        """
        Confirm an order's commission and credit the affiliate.

        total_earnings, pending_earnings and the link's commission_earned are
        incremented in place, in the same transaction as the status change.
        Completing twice is a no-op.
        """
        referral = await self._get_conversion(order_id)
        if not await self._transition(referral, ReferralStatus.COMPLETED):
            return referral

        amount = referral.commission_amount
        await self.db.execute(
            update(AffiliateProfile)
            .where(AffiliateProfile.id == referral.affiliate_id)
            .values(
                total_earnings=AffiliateProfile.total_earnings + amount,
                pending_earnings=AffiliateProfile.pending_earnings + amount,
            )
            .execution_options(synchronize_session=False)
        )
        if referral.link_code:
            await self.db.execute(
                update(AffiliateLink)
                .where(AffiliateLink.link_code == referral.link_code)
                .values(commission_earned=AffiliateLink.commission_earned + amount)
                .execution_options(synchronize_session=False)
            )

        logger.info(f"Referral for order {order_id} completed; credited {amount} to {referral.affiliate_id}")
        await self.update_tier(referral.affiliate_id)
        return referral

    async def cancel_referral(self, order_id: uuid.UUID) -> AffiliateReferral:
        """Cancel a pending commission. Nothing is credited. Cancelling twice is a no-op."""
        referral = await self._get_conversion(order_id)
        if await self._transition(referral, ReferralStatus.CANCELLED):
            logger.info(f"Referral for order {order_id} cancelled")
        return referral

    # ========================================================================
    # Tiers
    # ========================================================================

    async def update_tier(self, affiliate_id: uuid.UUID) -> Optional[Decimal]:
        """
        Raise the affiliate's rate to the highest tier their completed
        conversions qualify for. Rates are never lowered.

        Returns:
            The tier rate that applies, or None if no tier applies
        """
        if not self.tiers:
            return None

        result = await self.db.execute(
            select(func.count(AffiliateReferral.id)).where(
                AffiliateReferral.affiliate_id == affiliate_id,
                AffiliateReferral.event_type == ReferralEventType.CONVERSION.value,
                AffiliateReferral.status == ReferralStatus.COMPLETED.value,
            )
        )
        completed = result.scalar() or 0

        # Check from highest tier to lowest
        for tier in sorted(self.tiers, key=lambda t: int(t["min_conversions"]), reverse=True):
            if completed >= int(tier["min_conversions"]):
                rate = Decimal(str(tier["rate"]))
                result = await self.db.execute(
                    update(AffiliateProfile)
                    .where(
                        AffiliateProfile.id == affiliate_id,
                        AffiliateProfile.commission_rate < rate,
                    )
                    .values(commission_rate=rate)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    logger.info(f"Affiliate {affiliate_id} moved to {rate}% tier after {completed} conversions")
                return rate

        return None
