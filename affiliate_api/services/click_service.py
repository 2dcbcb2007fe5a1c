"""
Click Tracking Service

Public traffic hits this path, so it never raises: an unknown or inactive
code, or any datastore failure, is reported as False.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_api.models.affiliate import (
    AffiliateLink,
    AffiliateReferral,
    ReferralEventType,
    ReferralStatus,
)
from affiliate_api.schemas.affiliate import ClientMeta

logger = logging.getLogger(__name__)


class ClickService:
    """Service for recording link clicks"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def track_click(self, link_code: str, client_meta: Optional[ClientMeta] = None) -> bool:
        """
        Record a click against a link code.

        The counter is bumped with a single UPDATE ... SET clicks = clicks + 1
        guarded on is_active, so concurrent clicks never lose an increment.
        A click-only referral row is appended for later correlation.

        Returns:
            True if the click was recorded, False otherwise
        """
        meta = client_meta or ClientMeta()
        code = (link_code or "").strip().upper()
        if not code:
            return False

        try:
            result = await self.db.execute(
                select(AffiliateLink.affiliate_id).where(
                    AffiliateLink.link_code == code,
                    AffiliateLink.is_active.is_(True),
                )
            )
            affiliate_id = result.scalar_one_or_none()
            if affiliate_id is None:
                logger.info(f"Click on unknown or inactive link code {code}")
                return False

            result = await self.db.execute(
                update(AffiliateLink)
                .where(
                    AffiliateLink.link_code == code,
                    AffiliateLink.is_active.is_(True),
                )
                .values(clicks=AffiliateLink.clicks + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Deactivated between the lookup and the increment
                return False

            self.db.add(AffiliateReferral(
                affiliate_id=affiliate_id,
                event_type=ReferralEventType.CLICK.value,
                link_code=code,
                customer_ip=meta.ip,
                user_agent=meta.user_agent,
                referrer_url=meta.referrer_url,
                order_total=0,
                commission_rate=0,
                commission_amount=0,
                status=ReferralStatus.PENDING.value,
            ))
            await self.db.flush()
            return True

        except SQLAlchemyError as e:
            logger.error(f"Failed to track click for {code}: {e}")
            await self.db.rollback()
            return False
