from dataclasses import dataclass
from typing import Annotated, Optional
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_api.database import get_db
from affiliate_api.core.security import verify_access_token
from affiliate_api.models.affiliate import AffiliateProfile
from affiliate_api.services.affiliate_service import AffiliateService
from affiliate_api.services.click_service import ClickService
from affiliate_api.services.commission_service import CommissionService
from affiliate_api.services.dashboard_service import DashboardService
from affiliate_api.services.link_service import LinkService
from affiliate_api.services.notification_service import NotificationService
from affiliate_api.services.payout_service import PayoutService


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; missing credentials are reported as 401 below
security = HTTPBearer(auto_error=False)


@dataclass
class CurrentIdentity:
    """Authenticated caller as asserted by the auth provider's token."""
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    is_admin: bool = False


async def get_current_identity(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> CurrentIdentity:
    """
    Dependency to get the current authenticated identity.
    Validates the JWT token; authentication itself lives with the auth provider.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    return CurrentIdentity(
        user_id=str(payload["sub"]),
        email=payload.get("email"),
        name=payload.get("name"),
        is_admin=bool(payload.get("is_admin", False)),
    )


async def require_admin(
    identity: Annotated[CurrentIdentity, Depends(get_current_identity)],
) -> CurrentIdentity:
    """Require an admin identity."""
    if not identity.is_admin:
        logger.warning(f"Non-admin {identity.user_id} attempted an admin action")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return identity


# ==================== SERVICE FACTORIES ====================

def get_notification_service() -> NotificationService:
    return NotificationService()


def get_affiliate_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    notifier: Annotated[NotificationService, Depends(get_notification_service)],
) -> AffiliateService:
    return AffiliateService(db, notifier)


def get_link_service(db: Annotated[AsyncSession, Depends(get_db)]) -> LinkService:
    return LinkService(db)


def get_click_service(db: Annotated[AsyncSession, Depends(get_db)]) -> ClickService:
    return ClickService(db)


def get_commission_service(db: Annotated[AsyncSession, Depends(get_db)]) -> CommissionService:
    return CommissionService(db)


def get_payout_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    notifier: Annotated[NotificationService, Depends(get_notification_service)],
) -> PayoutService:
    return PayoutService(db, notifier)


def get_dashboard_service(db: Annotated[AsyncSession, Depends(get_db)]) -> DashboardService:
    return DashboardService(db)


async def get_current_affiliate(
    identity: Annotated[CurrentIdentity, Depends(get_current_identity)],
    service: Annotated[AffiliateService, Depends(get_affiliate_service)],
) -> AffiliateProfile:
    """The caller's affiliate profile (404 if they never applied)."""
    return await service.get_by_user(identity.user_id)


# Annotated aliases used by the endpoint modules
Identity = Annotated[CurrentIdentity, Depends(get_current_identity)]
Admin = Annotated[CurrentIdentity, Depends(require_admin)]
CurrentAffiliate = Annotated[AffiliateProfile, Depends(get_current_affiliate)]
