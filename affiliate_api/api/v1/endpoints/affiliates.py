"""
Affiliate API Endpoints

Endpoints for affiliates themselves:
- Application (any authenticated user)
- Profile and dashboard
- Link generation
- Referral and payout history
- Payout requests
- Public click tracking
"""

import logging
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from affiliate_api.api.deps import (
    CurrentAffiliate,
    Identity,
    get_affiliate_service,
    get_click_service,
    get_commission_service,
    get_dashboard_service,
    get_link_service,
    get_payout_service,
)
from affiliate_api.models.affiliate import ReferralEventType, ReferralStatus
from affiliate_api.schemas.affiliate import (
    AffiliateApplication,
    AffiliateDashboard,
    AffiliateLinkResponse,
    AffiliatePayoutResponse,
    AffiliateProfileResponse,
    AffiliateReferralResponse,
    ClickTrackRequest,
    ClientMeta,
    LinkCreate,
    PayoutCreate,
)
from affiliate_api.schemas.base import APIResponse, ErrorResponse, PaginatedList
from affiliate_api.services.affiliate_service import AffiliateService
from affiliate_api.services.click_service import ClickService
from affiliate_api.services.commission_service import CommissionService
from affiliate_api.services.dashboard_service import DashboardService
from affiliate_api.services.link_service import LinkService
from affiliate_api.services.payout_service import PayoutService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/affiliates", tags=["Affiliates"])


def client_meta_from_request(request: Request, referrer_url: Optional[str] = None) -> ClientMeta:
    """Audit metadata for a visitor; honours the first X-Forwarded-For hop.

    Header values are unbounded; ClientMeta truncates them.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else None
    return ClientMeta(
        ip=ip,
        user_agent=request.headers.get("user-agent"),
        referrer_url=referrer_url or request.headers.get("referer"),
    )


# ============================================================================
# Application & Profile
# ============================================================================

@router.post(
    "/apply",
    response_model=APIResponse[AffiliateProfileResponse],
    status_code=status.HTTP_201_CREATED,
)
async def apply_for_affiliate(
    data: AffiliateApplication,
    identity: Identity,
    service: Annotated[AffiliateService, Depends(get_affiliate_service)],
):
    """Submit an affiliate application for the current user."""
    profile = await service.apply(
        identity.user_id,
        data,
        default_name=identity.name,
        default_email=identity.email,
    )
    return APIResponse(
        data=AffiliateProfileResponse.model_validate(profile),
        message="Affiliate application submitted successfully",
    )


@router.get("/me", response_model=APIResponse[AffiliateProfileResponse])
async def get_my_profile(affiliate: CurrentAffiliate):
    """Get the current user's affiliate profile."""
    return APIResponse(data=AffiliateProfileResponse.model_validate(affiliate))


@router.get("/me/dashboard", response_model=APIResponse[AffiliateDashboard])
async def get_my_dashboard(
    identity: Identity,
    service: Annotated[DashboardService, Depends(get_dashboard_service)],
):
    """Summary of links, referrals and payouts. 404 if the user never applied."""
    dashboard = await service.get_dashboard_for_user(identity.user_id)
    return APIResponse(data=dashboard)


# ============================================================================
# Links
# ============================================================================

@router.get("/me/links", response_model=APIResponse[list[AffiliateLinkResponse]])
async def list_my_links(
    affiliate: CurrentAffiliate,
    service: Annotated[LinkService, Depends(get_link_service)],
):
    links = await service.list_links(affiliate.id)
    return APIResponse(data=[AffiliateLinkResponse.model_validate(link) for link in links])


@router.post(
    "/me/links",
    response_model=APIResponse[AffiliateLinkResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_link(
    data: LinkCreate,
    affiliate: CurrentAffiliate,
    service: Annotated[LinkService, Depends(get_link_service)],
):
    """Generate a tracked link for a product."""
    link = await service.generate_link(affiliate.id, data.product_id)
    return APIResponse(
        data=AffiliateLinkResponse.model_validate(link),
        message="Affiliate link generated successfully",
    )


@router.post("/me/links/{link_id}/deactivate", response_model=APIResponse[AffiliateLinkResponse])
async def deactivate_link(
    link_id: UUID,
    affiliate: CurrentAffiliate,
    service: Annotated[LinkService, Depends(get_link_service)],
):
    link = await service.deactivate_link(affiliate.id, link_id)
    return APIResponse(
        data=AffiliateLinkResponse.model_validate(link),
        message="Affiliate link deactivated",
    )


# ============================================================================
# Referrals
# ============================================================================

@router.get("/me/referrals", response_model=APIResponse[PaginatedList[AffiliateReferralResponse]])
async def list_my_referrals(
    affiliate: CurrentAffiliate,
    service: Annotated[CommissionService, Depends(get_commission_service)],
    status_filter: Optional[ReferralStatus] = Query(None, alias="status", description="Filter by status"),
    event_type: Optional[ReferralEventType] = Query(None, description="click or conversion"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    referrals, total = await service.list_referrals(
        affiliate.id,
        status=status_filter,
        event_type=event_type,
        page=page,
        page_size=page_size,
    )
    return APIResponse(data=PaginatedList[AffiliateReferralResponse].build(
        [AffiliateReferralResponse.model_validate(r) for r in referrals],
        total, page, page_size,
    ))


# ============================================================================
# Payouts
# ============================================================================

@router.get("/me/payouts", response_model=APIResponse[PaginatedList[AffiliatePayoutResponse]])
async def list_my_payouts(
    affiliate: CurrentAffiliate,
    service: Annotated[PayoutService, Depends(get_payout_service)],
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    payouts, total = await service.list_payouts(affiliate.id, page=page, page_size=page_size)
    return APIResponse(data=PaginatedList[AffiliatePayoutResponse].build(
        [AffiliatePayoutResponse.model_validate(p) for p in payouts],
        total, page, page_size,
    ))


@router.post(
    "/me/payouts",
    response_model=APIResponse[AffiliatePayoutResponse],
    status_code=status.HTTP_201_CREATED,
)
async def request_payout(
    data: PayoutCreate,
    affiliate: CurrentAffiliate,
    service: Annotated[PayoutService, Depends(get_payout_service)],
):
    """Request a withdrawal from pending earnings."""
    payout = await service.request_payout(affiliate.id, data.amount)
    return APIResponse(
        data=AffiliatePayoutResponse.model_validate(payout),
        message="Payout request submitted successfully",
    )


# ============================================================================
# Click Tracking (public)
# ============================================================================

@router.post("/track", response_model=APIResponse[None])
async def track_click(
    data: ClickTrackRequest,
    request: Request,
    service: Annotated[ClickService, Depends(get_click_service)],
):
    """Record a click on an affiliate link. Never errors on unknown codes."""
    tracked = await service.track_click(data.link_code, client_meta_from_request(request, data.referrer_url))
    if not tracked:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(error="Failed to track click", code="CLICK_NOT_TRACKED").model_dump(exclude_none=True),
        )
    return APIResponse(message="Click tracked successfully")
