"""
Payout Service

Payout requests reserve the amount from pending_earnings with one
conditional UPDATE, so two concurrent requests can never both spend the
same balance. Settlement is driven by the external payment collaborator:

    pending -> processing -> completed | failed
    pending -> completed | failed

A failed payout returns the reserved amount to pending_earnings.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_api.config import settings
from affiliate_api.core.exceptions import (
    AffiliateNotFound,
    BelowMinimum,
    InsufficientBalance,
    InvalidTransition,
    NotApproved,
    PayoutNotFound,
    ValidationError,
)
from affiliate_api.core.retry import retry_transient_read
from affiliate_api.models.affiliate import (
    AffiliatePayout,
    AffiliateProfile,
    AffiliateReferral,
    AffiliateStatus,
    PayoutStatus,
    ReferralEventType,
    ReferralStatus,
)
from affiliate_api.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Allowed source states for each settlement target
PAYOUT_TRANSITIONS = {
    PayoutStatus.PROCESSING: (PayoutStatus.PENDING,),
    PayoutStatus.COMPLETED: (PayoutStatus.PENDING, PayoutStatus.PROCESSING),
    PayoutStatus.FAILED: (PayoutStatus.PENDING, PayoutStatus.PROCESSING),
}


class PayoutService:
    """Service for payout requests and settlement"""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationService] = None,
        minimum_payout: Optional[int] = None,
    ):
        self.db = db
        self.notifier = notifier or NotificationService()
        self.minimum_payout = settings.MINIMUM_PAYOUT if minimum_payout is None else minimum_payout

    # ========================================================================
    # Requests
    # ========================================================================

    async def request_payout(self, affiliate_id: uuid.UUID, amount: int) -> AffiliatePayout:
        """
        Request a withdrawal of `amount` from pending earnings.

        Raises:
            ValidationError: amount is not a positive integer
            BelowMinimum: amount is under the configured minimum
            NotApproved: affiliate is not approved
            InsufficientBalance: pending_earnings < amount (balance untouched)
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Payout amount must be a positive integer")
        if amount < self.minimum_payout:
            raise BelowMinimum(
                f"Minimum payout amount is {self.minimum_payout}",
                details={"minimum_payout": self.minimum_payout},
            )

        profile = await self.db.get(AffiliateProfile, affiliate_id)
        if not profile:
            raise AffiliateNotFound()
        if profile.status != AffiliateStatus.APPROVED.value:
            raise NotApproved("Only approved affiliates can request payouts")

        # Check-and-reserve in one statement
        result = await self.db.execute(
            update(AffiliateProfile)
            .where(
                AffiliateProfile.id == affiliate_id,
                AffiliateProfile.pending_earnings >= amount,
            )
            .values(pending_earnings=AffiliateProfile.pending_earnings - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.refresh(profile)
            raise InsufficientBalance(
                details={"requested": amount, "available": profile.pending_earnings},
            )

        payout = AffiliatePayout(
            affiliate_id=affiliate_id,
            amount=amount,
            status=PayoutStatus.PENDING.value,
            payment_method=profile.payment_method,
            bank_details=profile.bank_details,
        )
        self.db.add(payout)
        await self.db.flush()
        await self.db.refresh(payout)
        await self.db.refresh(profile)

        logger.info(f"Payout {payout.id} of {amount} requested by affiliate {affiliate_id}")
        return payout

    @retry_transient_read
    async def list_payouts(
        self,
        affiliate_id: uuid.UUID,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[AffiliatePayout], int]:
        count_query = select(func.count(AffiliatePayout.id)).where(
            AffiliatePayout.affiliate_id == affiliate_id
        )
        total = (await self.db.execute(count_query)).scalar() or 0

        result = await self.db.execute(
            select(AffiliatePayout)
            .where(AffiliatePayout.affiliate_id == affiliate_id)
            .order_by(AffiliatePayout.requested_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    # ========================================================================
    # Settlement
    # ========================================================================

    async def process_payout(
        self,
        payout_id: uuid.UUID,
        status: PayoutStatus,
        transaction_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> AffiliatePayout:
        """
        Apply a settlement update from the payment collaborator.

        completed stamps paid_at on the referrals the payout covers and
        notifies the affiliate; failed releases the reserved amount.
        """
        status = PayoutStatus(status)
        if status not in PAYOUT_TRANSITIONS:
            raise ValidationError(f"Cannot set payout status to '{status.value}'")

        payout = await self.db.get(AffiliatePayout, payout_id)
        if not payout:
            raise PayoutNotFound()

        values = {"status": status.value}
        if status in (PayoutStatus.COMPLETED, PayoutStatus.FAILED):
            values["processed_at"] = datetime.now(timezone.utc)
        if transaction_id:
            values["transaction_id"] = transaction_id
        if status == PayoutStatus.FAILED:
            values["failure_reason"] = failure_reason or "Payment failed"

        allowed = [s.value for s in PAYOUT_TRANSITIONS[status]]
        result = await self.db.execute(
            update(AffiliatePayout)
            .where(
                AffiliatePayout.id == payout_id,
                AffiliatePayout.status.in_(allowed),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(payout)
        if result.rowcount == 0:
            raise InvalidTransition(
                f"Cannot move payout from '{payout.status}' to '{status.value}'"
            )

        if status == PayoutStatus.FAILED:
            await self.db.execute(
                update(AffiliateProfile)
                .where(AffiliateProfile.id == payout.affiliate_id)
                .values(pending_earnings=AffiliateProfile.pending_earnings + payout.amount)
                .execution_options(synchronize_session=False)
            )
            logger.warning(f"Payout {payout_id} failed; released {payout.amount} back to pending earnings")

        elif status == PayoutStatus.COMPLETED:
            covered = await self._mark_referrals_paid(payout)
            logger.info(f"Payout {payout_id} completed; {covered} referrals marked paid")

            profile = await self.db.get(AffiliateProfile, payout.affiliate_id)
            if profile:
                await self.notifier.send_payout_processed(
                    profile.email, profile.full_name, payout.amount, payout.transaction_id,
                    event_ref=str(payout.id),
                )

        return payout

    async def _mark_referrals_paid(self, payout: AffiliatePayout) -> int:
        """Stamp paid_at on the oldest unpaid completed referrals that fit in the payout."""
        result = await self.db.execute(
            select(AffiliateReferral.id, AffiliateReferral.commission_amount)
            .where(
                AffiliateReferral.affiliate_id == payout.affiliate_id,
                AffiliateReferral.event_type == ReferralEventType.CONVERSION.value,
                AffiliateReferral.status == ReferralStatus.COMPLETED.value,
                AffiliateReferral.paid_at.is_(None),
            )
            .order_by(AffiliateReferral.created_at.asc())
        )

        covered_ids = []
        remaining = payout.amount
        for referral_id, commission in result.all():
            if commission > remaining:
                break
            covered_ids.append(referral_id)
            remaining -= commission

        if covered_ids:
            await self.db.execute(
                update(AffiliateReferral)
                .where(
                    AffiliateReferral.id.in_(covered_ids),
                    AffiliateReferral.paid_at.is_(None),
                )
                .values(paid_at=payout.processed_at or datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
        return len(covered_ids)
