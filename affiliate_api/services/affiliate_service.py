"""
Affiliate Profile Service

Handles the affiliate application lifecycle:
- Applications and resubmission after rejection
- Admin approve / reject / suspend
- Affiliate code minting

Status changes are conditional UPDATEs on the current status, so two
admins acting at once cannot both win.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_api.config import settings
from affiliate_api.core.codes import build_referral_url, random_code
from affiliate_api.core.exceptions import (
    AffiliateNotFound,
    AlreadyApplied,
    CodeGenerationExhausted,
    InvalidTransition,
    ValidationError,
)
from affiliate_api.core.retry import retry_transient_read
from affiliate_api.models.affiliate import (
    AffiliateLink,
    AffiliateProfile,
    AffiliateStatus,
)
from affiliate_api.models.commerce import Product
from affiliate_api.schemas.affiliate import AffiliateApplication
from affiliate_api.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class AffiliateService:
    """Service for affiliate profile operations"""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService()

    # ========================================================================
    # Lookups
    # ========================================================================

    @retry_transient_read
    async def get(self, affiliate_id: uuid.UUID) -> AffiliateProfile:
        profile = await self.db.get(AffiliateProfile, affiliate_id)
        if not profile:
            raise AffiliateNotFound()
        return profile

    @retry_transient_read
    async def get_by_user(self, user_id: str) -> AffiliateProfile:
        result = await self.db.execute(
            select(AffiliateProfile).where(AffiliateProfile.user_id == user_id)
        )
        profile = result.scalar_one_or_none()
        if not profile:
            raise AffiliateNotFound()
        return profile

    @retry_transient_read
    async def list_affiliates(
        self,
        status: Optional[AffiliateStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[AffiliateProfile], int]:
        """List affiliates for admin review, newest applications first."""
        query = select(AffiliateProfile)
        count_query = select(func.count(AffiliateProfile.id))

        if status:
            query = query.where(AffiliateProfile.status == status.value)
            count_query = count_query.where(AffiliateProfile.status == status.value)

        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(AffiliateProfile.applied_at.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # ========================================================================
    # Application
    # ========================================================================

    async def apply(
        self,
        user_id: str,
        data: AffiliateApplication,
        default_name: Optional[str] = None,
        default_email: Optional[str] = None,
    ) -> AffiliateProfile:
        """
        Submit an affiliate application.

        A rejected applicant may reapply; any other existing profile is a
        conflict. Name and email fall back to the identity's claims.
        """
        full_name = data.full_name or default_name
        email = data.email or default_email
        if not full_name or not email:
            raise ValidationError("full_name and email are required")

        result = await self.db.execute(
            select(AffiliateProfile).where(AffiliateProfile.user_id == user_id)
        )
        profile = result.scalar_one_or_none()

        if profile and profile.status != AffiliateStatus.REJECTED.value:
            raise AlreadyApplied(f"Affiliate application already exists with status '{profile.status}'")

        now = datetime.now(timezone.utc)
        if profile:
            # Resubmission after rejection
            result = await self.db.execute(
                update(AffiliateProfile)
                .where(
                    AffiliateProfile.id == profile.id,
                    AffiliateProfile.status == AffiliateStatus.REJECTED.value,
                )
                .values(
                    status=AffiliateStatus.PENDING.value,
                    full_name=full_name,
                    email=email,
                    payment_method=data.payment_method.value,
                    bank_details=data.bank_details,
                    website=data.website,
                    promotion_method=data.promotion_method,
                    rejection_reason=None,
                    applied_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise AlreadyApplied("Affiliate application was changed concurrently")
            await self.db.refresh(profile)
        else:
            profile = AffiliateProfile(
                user_id=user_id,
                full_name=full_name,
                email=email,
                status=AffiliateStatus.PENDING.value,
                commission_rate=Decimal(str(settings.DEFAULT_COMMISSION_RATE)),
                payment_method=data.payment_method.value,
                bank_details=data.bank_details,
                website=data.website,
                promotion_method=data.promotion_method,
                applied_at=now,
            )
            self.db.add(profile)
            await self.db.flush()
            await self.db.refresh(profile)

        logger.info(f"Affiliate application submitted by user {user_id}")
        await self.notifier.send_application_received(
            profile.email, profile.full_name, event_ref=f"{profile.id}:{now.isoformat()}"
        )
        return profile

    # ========================================================================
    # Admin Actions
    # ========================================================================

    async def generate_affiliate_code(self) -> str:
        """
        Generate unique affiliate code: prefix + random alphanumerics
        Example: AFFKR7X2M9Q
        """
        for _ in range(settings.AFFILIATE_CODE_MAX_ATTEMPTS):
            code = random_code(settings.AFFILIATE_CODE_LENGTH, settings.AFFILIATE_CODE_PREFIX)
            result = await self.db.execute(
                select(AffiliateProfile.id).where(AffiliateProfile.affiliate_code == code)
            )
            if not result.scalar_one_or_none():
                return code

        logger.error("Affiliate code generation exhausted its retry budget")
        raise CodeGenerationExhausted("Could not generate a unique affiliate code")

    async def _transition(
        self,
        affiliate_id: uuid.UUID,
        allowed_from: Iterable[AffiliateStatus],
        **values,
    ) -> AffiliateProfile:
        """Apply a status change only if the profile is still in an allowed state."""
        profile = await self.get(affiliate_id)
        allowed = [s.value for s in allowed_from]

        result = await self.db.execute(
            update(AffiliateProfile)
            .where(
                AffiliateProfile.id == affiliate_id,
                AffiliateProfile.status.in_(allowed),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(profile)

        if result.rowcount == 0:
            raise InvalidTransition(
                f"Cannot change affiliate from '{profile.status}' to '{values['status']}'"
            )
        return profile

    async def approve(
        self,
        affiliate_id: uuid.UUID,
        commission_rate: Optional[Decimal] = None,
    ) -> AffiliateProfile:
        """
        Approve an affiliate and mint a fresh code.

        Links paused by a reject or suspend are re-enabled, and every
        link URL is rewritten with the new code.
        """
        rate = commission_rate if commission_rate is not None else Decimal(str(settings.DEFAULT_COMMISSION_RATE))
        if not Decimal(0) <= rate <= Decimal(100):
            raise ValidationError("Commission rate must be between 0 and 100")

        code = await self.generate_affiliate_code()
        profile = await self._transition(
            affiliate_id,
            [AffiliateStatus.PENDING, AffiliateStatus.REJECTED, AffiliateStatus.SUSPENDED],
            status=AffiliateStatus.APPROVED.value,
            affiliate_code=code,
            commission_rate=rate,
            rejection_reason=None,
            approved_at=datetime.now(timezone.utc),
        )

        await self._reissue_links(profile)

        logger.info(f"Affiliate {affiliate_id} approved with code {code} at {rate}%")
        await self.notifier.send_application_approved(
            profile.email, profile.full_name, code, profile.commission_rate,
            event_ref=f"{profile.id}:{code}",
        )
        return profile

    async def reject(self, affiliate_id: uuid.UUID, reason: Optional[str] = None) -> AffiliateProfile:
        """Reject a pending (or suspended) affiliate."""
        now = datetime.now(timezone.utc)
        profile = await self._transition(
            affiliate_id,
            [AffiliateStatus.PENDING, AffiliateStatus.SUSPENDED],
            status=AffiliateStatus.REJECTED.value,
            affiliate_code=None,
            rejection_reason=reason,
            updated_at=now,
        )
        await self._pause_links(affiliate_id)

        logger.info(f"Affiliate {affiliate_id} rejected")
        await self.notifier.send_application_rejected(
            profile.email, profile.full_name, event_ref=f"{profile.id}:{now.isoformat()}", feedback=reason
        )
        return profile

    async def suspend(self, affiliate_id: uuid.UUID, reason: Optional[str] = None) -> AffiliateProfile:
        """Suspend an approved affiliate. Balances are kept; links stop tracking."""
        profile = await self._transition(
            affiliate_id,
            [AffiliateStatus.APPROVED],
            status=AffiliateStatus.SUSPENDED.value,
            affiliate_code=None,
            rejection_reason=reason,
        )
        await self._pause_links(affiliate_id)

        logger.warning(f"Affiliate {affiliate_id} suspended: {reason or 'no reason given'}")
        return profile

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _pause_links(self, affiliate_id: uuid.UUID) -> None:
        """Stop tracking the affiliate's live links, remembering which ones were live."""
        await self.db.execute(
            update(AffiliateLink)
            .where(
                AffiliateLink.affiliate_id == affiliate_id,
                AffiliateLink.is_active.is_(True),
            )
            .values(is_active=False, paused_by_admin=True)
            .execution_options(synchronize_session=False)
        )

    async def _reissue_links(self, profile: AffiliateProfile) -> None:
        """
        Point existing links at the affiliate's current code and revive the
        ones a reject or suspend paused. Links the owner retired stay off.
        """
        result = await self.db.execute(
            select(AffiliateLink, Product.slug)
            .join(Product, Product.id == AffiliateLink.product_id)
            .where(AffiliateLink.affiliate_id == profile.id)
            .execution_options(populate_existing=True)
        )
        for link, slug in result.all():
            link.original_url = build_referral_url(
                settings.SITE_URL, slug or str(link.product_id), profile.affiliate_code, link.product_id
            )
            if link.paused_by_admin:
                link.is_active = True
                link.paused_by_admin = False
        await self.db.flush()
