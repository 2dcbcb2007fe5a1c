# Models module
from affiliate_api.models.affiliate import (
    AffiliateStatus,
    PaymentMethod,
    ReferralEventType,
    ReferralStatus,
    PayoutStatus,
    AffiliateProfile,
    AffiliateLink,
    AffiliateReferral,
    AffiliatePayout,
)
from affiliate_api.models.commerce import Product, Order

__all__ = [
    "AffiliateStatus",
    "PaymentMethod",
    "ReferralEventType",
    "ReferralStatus",
    "PayoutStatus",
    "AffiliateProfile",
    "AffiliateLink",
    "AffiliateReferral",
    "AffiliatePayout",
    "Product",
    "Order",
]
