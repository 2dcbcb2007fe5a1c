from fastapi import APIRouter

from affiliate_api.api.v1.endpoints import (
    # Affiliate self-service and public click tracking
    affiliates,
    # Admin review, referral transitions, payout settlement
    admin,
    # Storefront order events
    webhooks,
)

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(affiliates.router)
api_router.include_router(admin.router)
api_router.include_router(webhooks.router)
