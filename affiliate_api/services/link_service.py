"""
Affiliate Link Service

Mints per-product shareable links for approved affiliates.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_api.config import settings
from affiliate_api.core.codes import build_referral_url, random_code
from affiliate_api.core.exceptions import (
    AffiliateNotFound,
    CodeGenerationExhausted,
    Forbidden,
    LinkNotFound,
    NotApproved,
    ProductNotFound,
)
from affiliate_api.core.retry import retry_transient_read
from affiliate_api.models.affiliate import AffiliateLink, AffiliateProfile, AffiliateStatus
from affiliate_api.models.commerce import Product

logger = logging.getLogger(__name__)


class LinkService:
    """Service for affiliate link generation and management"""

    def __init__(
        self,
        db: AsyncSession,
        code_length: Optional[int] = None,
        max_attempts: Optional[int] = None,
        site_url: Optional[str] = None,
    ):
        self.db = db
        self.code_length = code_length or settings.LINK_CODE_LENGTH
        self.max_attempts = max_attempts or settings.LINK_CODE_MAX_ATTEMPTS
        self.site_url = site_url or settings.SITE_URL

    def _new_code(self) -> str:
        return random_code(self.code_length)

    async def generate_link_code(self) -> str:
        """
        Generate a unique link code.

        Collisions are practically impossible at 12 characters, but the
        loop is capped and gives up with CodeGenerationExhausted.
        """
        for attempt in range(1, self.max_attempts + 1):
            code = self._new_code()
            result = await self.db.execute(
                select(AffiliateLink.id).where(AffiliateLink.link_code == code)
            )
            if not result.scalar_one_or_none():
                return code
            logger.warning(f"Link code collision on attempt {attempt}/{self.max_attempts}")

        logger.error(f"Link code generation exhausted after {self.max_attempts} attempts")
        raise CodeGenerationExhausted(
            "Could not generate a unique link code",
            details={"attempts": self.max_attempts},
        )

    async def generate_link(self, affiliate_id: uuid.UUID, product_id: uuid.UUID) -> AffiliateLink:
        """Create a tracked link for an approved affiliate and an existing product."""
        profile = await self.db.get(AffiliateProfile, affiliate_id)
        if not profile:
            raise AffiliateNotFound()
        if profile.status != AffiliateStatus.APPROVED.value or not profile.affiliate_code:
            raise NotApproved("Affiliate must be approved to generate links")

        product = await self.db.get(Product, product_id)
        if not product:
            raise ProductNotFound()

        link_code = await self.generate_link_code()

        link = AffiliateLink(
            affiliate_id=profile.id,
            product_id=product.id,
            link_code=link_code,
            original_url=build_referral_url(
                self.site_url, product.slug or str(product.id), profile.affiliate_code, product.id
            ),
            clicks=0,
            conversions=0,
            commission_earned=0,
            is_active=True,
        )
        self.db.add(link)
        await self.db.flush()
        await self.db.refresh(link)

        logger.info(f"Affiliate {affiliate_id} generated link {link_code} for product {product_id}")
        return link

    @retry_transient_read
    async def list_links(self, affiliate_id: uuid.UUID) -> List[AffiliateLink]:
        result = await self.db.execute(
            select(AffiliateLink)
            .where(AffiliateLink.affiliate_id == affiliate_id)
            .order_by(AffiliateLink.created_at.desc())
        )
        return list(result.scalars().all())

    async def deactivate_link(self, affiliate_id: uuid.UUID, link_id: uuid.UUID) -> AffiliateLink:
        """Stop tracking a link. Links are never deleted."""
        link = await self.db.get(AffiliateLink, link_id)
        if not link:
            raise LinkNotFound()
        if link.affiliate_id != affiliate_id:
            raise Forbidden("Link belongs to another affiliate")

        await self.db.execute(
            update(AffiliateLink)
            .where(AffiliateLink.id == link_id)
            .values(is_active=False, paused_by_admin=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(link)
        return link
