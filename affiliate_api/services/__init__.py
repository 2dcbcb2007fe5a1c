# Services module
from affiliate_api.services.affiliate_service import AffiliateService
from affiliate_api.services.link_service import LinkService
from affiliate_api.services.click_service import ClickService
from affiliate_api.services.commission_service import CommissionService, compute_commission
from affiliate_api.services.payout_service import PayoutService
from affiliate_api.services.dashboard_service import DashboardService
from affiliate_api.services.notification_service import NotificationService
