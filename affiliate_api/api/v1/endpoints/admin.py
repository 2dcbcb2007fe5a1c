"""
Affiliate Admin Endpoints

- Affiliate review (approve / reject / suspend)
- Affiliate listing and per-affiliate dashboard
- Out-of-band referral transitions
- Payout settlement
"""

import logging
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from affiliate_api.api.deps import (
    Admin,
    get_affiliate_service,
    get_commission_service,
    get_dashboard_service,
    get_payout_service,
)
from affiliate_api.models.affiliate import AffiliateStatus, PayoutStatus
from affiliate_api.schemas.affiliate import (
    AdminAction,
    AdminActionType,
    AffiliateDashboard,
    AffiliatePayoutResponse,
    AffiliateProfileResponse,
    AffiliateReferralResponse,
    PayoutProcess,
    ReferralStatusUpdate,
)
from affiliate_api.schemas.base import APIResponse, PaginatedList
from affiliate_api.services.affiliate_service import AffiliateService
from affiliate_api.services.commission_service import CommissionService
from affiliate_api.services.dashboard_service import DashboardService
from affiliate_api.services.payout_service import PayoutService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Affiliate Admin"])


@router.get("/affiliates", response_model=APIResponse[PaginatedList[AffiliateProfileResponse]])
async def list_affiliates(
    admin: Admin,
    service: Annotated[AffiliateService, Depends(get_affiliate_service)],
    status_filter: Optional[AffiliateStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """List affiliates, newest applications first."""
    profiles, total = await service.list_affiliates(status=status_filter, page=page, page_size=page_size)
    return APIResponse(data=PaginatedList[AffiliateProfileResponse].build(
        [AffiliateProfileResponse.model_validate(p) for p in profiles],
        total, page, page_size,
    ))


@router.get("/affiliates/{affiliate_id}", response_model=APIResponse[AffiliateDashboard])
async def get_affiliate(
    affiliate_id: UUID,
    admin: Admin,
    service: Annotated[DashboardService, Depends(get_dashboard_service)],
):
    return APIResponse(data=await service.get_dashboard(affiliate_id))


@router.post("/affiliates/{affiliate_id}/action", response_model=APIResponse[AffiliateProfileResponse])
async def affiliate_action(
    affiliate_id: UUID,
    data: AdminAction,
    admin: Admin,
    service: Annotated[AffiliateService, Depends(get_affiliate_service)],
):
    """Approve, reject or suspend an affiliate."""
    if data.action == AdminActionType.APPROVE:
        profile = await service.approve(affiliate_id, commission_rate=data.commission_rate)
        message = "Affiliate approved successfully"
    elif data.action == AdminActionType.REJECT:
        profile = await service.reject(affiliate_id, reason=data.reason)
        message = "Affiliate rejected successfully"
    else:
        profile = await service.suspend(affiliate_id, reason=data.reason)
        message = "Affiliate suspended successfully"

    logger.info(f"Admin {admin.user_id} applied '{data.action.value}' to affiliate {affiliate_id}")
    return APIResponse(data=AffiliateProfileResponse.model_validate(profile), message=message)


@router.post("/orders/{order_id}/referral", response_model=APIResponse[AffiliateReferralResponse])
async def update_order_referral(
    order_id: UUID,
    data: ReferralStatusUpdate,
    admin: Admin,
    service: Annotated[CommissionService, Depends(get_commission_service)],
):
    """Confirm or cancel an order's commission out-of-band."""
    if data.status == "completed":
        referral = await service.complete_referral(order_id)
    else:
        referral = await service.cancel_referral(order_id)
    return APIResponse(
        data=AffiliateReferralResponse.model_validate(referral),
        message=f"Referral {referral.status}",
    )


@router.post("/payouts/{payout_id}/process", response_model=APIResponse[AffiliatePayoutResponse])
async def process_payout(
    payout_id: UUID,
    data: PayoutProcess,
    admin: Admin,
    service: Annotated[PayoutService, Depends(get_payout_service)],
):
    """Record a settlement result for a payout."""
    payout = await service.process_payout(
        payout_id,
        PayoutStatus(data.status),
        transaction_id=data.transaction_id,
        failure_reason=data.failure_reason,
    )
    logger.info(f"Admin {admin.user_id} set payout {payout_id} to {payout.status}")
    return APIResponse(
        data=AffiliatePayoutResponse.model_validate(payout),
        message=f"Payout {payout.status}",
    )
