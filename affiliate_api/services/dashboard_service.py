"""
Affiliate Dashboard Service

Read-only rollup of links, referrals and payouts for one affiliate.
"""

import uuid

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_api.core.exceptions import AffiliateNotFound
from affiliate_api.core.retry import retry_transient_read
from affiliate_api.models.affiliate import (
    AffiliateLink,
    AffiliatePayout,
    AffiliateProfile,
    AffiliateReferral,
    PayoutStatus,
    ReferralEventType,
    ReferralStatus,
)
from affiliate_api.schemas.affiliate import AffiliateDashboard, AffiliateProfileResponse


def conversion_rate(conversions: int, clicks: int) -> float:
    """Conversions per hundred clicks, rounded to two places."""
    if clicks <= 0:
        return 0.0
    return round(conversions / clicks * 100, 2)


class DashboardService:
    """Service for affiliate dashboard aggregation"""

    def __init__(self, db: AsyncSession):
        self.db = db

    @retry_transient_read
    async def get_dashboard_for_user(self, user_id: str) -> AffiliateDashboard:
        result = await self.db.execute(
            select(AffiliateProfile).where(AffiliateProfile.user_id == user_id)
        )
        profile = result.scalar_one_or_none()
        if not profile:
            raise AffiliateNotFound()
        return await self._build(profile)

    @retry_transient_read
    async def get_dashboard(self, affiliate_id: uuid.UUID) -> AffiliateDashboard:
        profile = await self.db.get(AffiliateProfile, affiliate_id)
        if not profile:
            raise AffiliateNotFound()
        return await self._build(profile)

    async def _build(self, profile: AffiliateProfile) -> AffiliateDashboard:
        # Links
        link_result = await self.db.execute(
            select(
                func.count(AffiliateLink.id),
                func.coalesce(func.sum(case((AffiliateLink.is_active.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(AffiliateLink.clicks), 0),
            ).where(AffiliateLink.affiliate_id == profile.id)
        )
        total_links, active_links, total_clicks = link_result.one()

        # Conversions by status
        referral_result = await self.db.execute(
            select(
                AffiliateReferral.status,
                func.count(AffiliateReferral.id),
                func.coalesce(func.sum(AffiliateReferral.commission_amount), 0),
                func.coalesce(func.sum(
                    case((AffiliateReferral.paid_at.is_(None), AffiliateReferral.commission_amount), else_=0)
                ), 0),
            )
            .where(
                AffiliateReferral.affiliate_id == profile.id,
                AffiliateReferral.event_type == ReferralEventType.CONVERSION.value,
            )
            .group_by(AffiliateReferral.status)
        )
        by_status = {row[0]: row[1:] for row in referral_result.all()}
        pending = by_status.get(ReferralStatus.PENDING.value, (0, 0, 0))
        completed = by_status.get(ReferralStatus.COMPLETED.value, (0, 0, 0))
        cancelled = by_status.get(ReferralStatus.CANCELLED.value, (0, 0, 0))

        # Payouts
        payout_result = await self.db.execute(
            select(
                func.coalesce(func.sum(case(
                    (AffiliatePayout.status == PayoutStatus.COMPLETED.value, AffiliatePayout.amount),
                    else_=0,
                )), 0),
                func.coalesce(func.sum(case(
                    (AffiliatePayout.status.in_([PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value]),
                     AffiliatePayout.amount),
                    else_=0,
                )), 0),
            ).where(AffiliatePayout.affiliate_id == profile.id)
        )
        total_payouts, pending_payouts = payout_result.one()

        total_conversions = int(pending[0]) + int(completed[0])

        return AffiliateDashboard(
            profile=AffiliateProfileResponse.model_validate(profile),
            total_links=int(total_links),
            active_links=int(active_links),
            total_clicks=int(total_clicks),
            total_conversions=total_conversions,
            conversion_rate=conversion_rate(total_conversions, int(total_clicks)),
            pending_referrals=int(pending[0]),
            completed_referrals=int(completed[0]),
            cancelled_referrals=int(cancelled[0]),
            total_commission=int(completed[1]),
            unpaid_commission=int(completed[2]),
            total_payouts=int(total_payouts),
            pending_payouts=int(pending_payouts),
        )
