"""
Storefront Order Webhooks

Order lifecycle signals drive referral attribution and commission status:

- order.placed:                 attribute the order to the referring affiliate
- order.confirmed / order.paid: complete the commission
- order.cancelled / order.refunded: cancel the commission

Attribution is best-effort: an invalid affiliate code or a repeated event
is acknowledged with 200 so the storefront never blocks or retries an
order because of the affiliate program.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError as PayloadError

from affiliate_api.api.deps import get_commission_service
from affiliate_api.config import settings
from affiliate_api.core.codes import parse_affiliate_code
from affiliate_api.core.exceptions import (
    DuplicateAttribution,
    InvalidAffiliateCode,
    ReferralNotFound,
    Unauthenticated,
    Unavailable,
    ValidationError,
)
from affiliate_api.core.security import verify_webhook_signature
from affiliate_api.schemas.affiliate import ClientMeta, OrderEvent
from affiliate_api.schemas.base import APIResponse
from affiliate_api.services.commission_service import CommissionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

COMPLETE_EVENTS = {"order.confirmed", "order.paid"}
CANCEL_EVENTS = {"order.cancelled", "order.refunded"}


def get_webhook_secret() -> Optional[str]:
    return settings.WEBHOOK_SECRET


def _ack(event: str, result: str, **extra) -> APIResponse[dict]:
    return APIResponse(data={"event": event, "result": result, **extra})


@router.post("/orders", response_model=APIResponse[dict])
async def order_webhook(
    request: Request,
    service: Annotated[CommissionService, Depends(get_commission_service)],
    secret: Annotated[Optional[str], Depends(get_webhook_secret)],
    x_webhook_signature: Optional[str] = Header(None, alias="X-Webhook-Signature"),
):
    """Handle an order lifecycle event from the storefront."""
    body = await request.body()

    if not secret:
        logger.error("Order webhook received but WEBHOOK_SECRET is not configured")
        raise Unavailable("Webhook verification not configured")

    if not verify_webhook_signature(body, x_webhook_signature, secret):
        logger.warning("Order webhook signature verification failed")
        raise Unauthenticated("Invalid webhook signature")

    try:
        payload = OrderEvent.model_validate_json(body)
    except PayloadError as e:
        raise ValidationError("Invalid webhook payload", details={"errors": e.errors()})

    event = payload.event
    data = payload.data

    if event == "order.placed":
        code = data.affiliate_code or parse_affiliate_code(data.landing_url)
        if not code:
            return _ack(event, "no_affiliate")
        if data.order_total is None:
            raise ValidationError("order_total is required for order.placed")

        meta = ClientMeta(
            ip=data.customer_ip,
            user_agent=data.user_agent,
            referrer_url=data.referrer_url,
        )
        try:
            referral = await service.attribute_referral(
                data.order_id,
                code,
                data.order_total,
                client_meta=meta,
                link_code=data.link_code,
            )
        except DuplicateAttribution as e:
            logger.info(f"Order {data.order_id} already attributed; ignoring repeat event")
            return _ack(event, "duplicate", referral_id=str(e.referral.id))
        except InvalidAffiliateCode:
            logger.warning(f"Order {data.order_id} carried invalid affiliate code {code}; not attributed")
            return _ack(event, "invalid_affiliate_code")

        return _ack(
            event,
            "attributed",
            referral_id=str(referral.id),
            commission_amount=referral.commission_amount,
        )

    if event in COMPLETE_EVENTS or event in CANCEL_EVENTS:
        try:
            if event in COMPLETE_EVENTS:
                referral = await service.complete_referral(data.order_id)
            else:
                referral = await service.cancel_referral(data.order_id)
        except ReferralNotFound:
            if data.affiliate_code or data.link_code or parse_affiliate_code(data.landing_url):
                # Arrived before order.placed; the referral created later stays pending
                logger.warning(
                    f"Order {data.order_id} received {event} before it was attributed; "
                    "its referral must be settled by an admin"
                )
            return _ack(event, "no_referral")
        return _ack(event, referral.status, referral_id=str(referral.id))

    logger.info(f"Ignoring unhandled order webhook event {event}")
    return _ack(event, "ignored")
