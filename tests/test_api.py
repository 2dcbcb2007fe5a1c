"""
HTTP-level tests: envelopes, status codes and auth around the affiliate API.
"""
import hashlib
import hmac
import json
import logging
import uuid

from sqlalchemy import select

from affiliate_api.models import AffiliateReferral, AffiliateStatus

from conftest import auth_headers, make_affiliate, make_link, make_product

WEBHOOK_SECRET = b"test-webhook-secret"


def signed(payload: dict) -> dict:
    body = json.dumps(payload).encode()
    signature = hmac.new(WEBHOOK_SECRET, body, hashlib.sha256).hexdigest()
    return {
        "content": body,
        "headers": {"Content-Type": "application/json", "X-Webhook-Signature": signature},
    }


# ==================== AUTH ====================

async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"


async def test_requires_authentication(client):
    response = await client.get("/api/v1/affiliates/me")
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert response.headers["www-authenticate"] == "Bearer"

    response = await client.get("/api/v1/affiliates/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_admin_routes_require_admin(client):
    response = await client.get("/api/v1/admin/affiliates", headers=auth_headers("user-1"))
    assert response.status_code == 403
    assert response.json()["success"] is False


# ==================== APPLICATION ====================

async def test_apply_and_admin_approve(client, notifier):
    headers = auth_headers("user-1", email="ravi@example.com", name="Ravi Kumar")

    response = await client.post(
        "/api/v1/affiliates/apply",
        json={"payment_method": "upi", "bank_details": {"upi_id": "ravi@okbank"}},
        headers=headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "pending"
    assert body["data"]["full_name"] == "Ravi Kumar"
    assert body["data"]["affiliate_code"] is None
    affiliate_id = body["data"]["id"]

    response = await client.post("/api/v1/affiliates/apply", json={"payment_method": "upi"}, headers=headers)
    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_APPLIED"

    admin = auth_headers("admin-1", is_admin=True)
    response = await client.get("/api/v1/admin/affiliates", params={"status": "pending"}, headers=admin)
    assert response.status_code == 200
    assert response.json()["data"]["total"] == 1

    response = await client.post(
        f"/api/v1/admin/affiliates/{affiliate_id}/action",
        json={"action": "approve", "commission_rate": "7.5"},
        headers=admin,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "approved"
    assert data["commission_rate"] == 7.5
    assert data["affiliate_code"].startswith("AFF")

    response = await client.get("/api/v1/affiliates/me", headers=headers)
    assert response.json()["data"]["affiliate_code"] == data["affiliate_code"]
    assert notifier.subjects == ["Affiliate Application Received", "Affiliate Application Approved"]


async def test_invalid_input_is_400(client):
    response = await client.post(
        "/api/v1/affiliates/apply",
        json={"payment_method": "cheque"},
        headers=auth_headers("user-1", email="a@example.com", name="A"),
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "VALIDATION_ERROR"


async def test_unknown_affiliate_dashboard_is_404(client):
    response = await client.get("/api/v1/affiliates/me/dashboard", headers=auth_headers("stranger"))
    assert response.status_code == 404
    assert response.json()["code"] == "AFFILIATE_NOT_FOUND"


# ==================== LINKS & CLICKS ====================

async def test_link_generation_and_click_tracking(client, session):
    affiliate = await make_affiliate(session, user_id="user-1")
    product = await make_product(session, slug="copper-bottle")
    headers = auth_headers("user-1")

    response = await client.post("/api/v1/affiliates/me/links", json={"product_id": str(product.id)}, headers=headers)
    assert response.status_code == 201
    link = response.json()["data"]
    assert link["original_url"].startswith("https://shop.example.com/store/product/copper-bottle?ref=")
    assert affiliate.affiliate_code in link["original_url"]

    response = await client.post(
        "/api/v1/affiliates/track",
        json={"link_code": link["link_code"].lower()},
        headers={"User-Agent": "pytest-browser", "X-Forwarded-For": "203.0.113.5, 10.0.0.1"},
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Click tracked successfully"

    response = await client.post("/api/v1/affiliates/track", json={"link_code": "NOSUCHCODE"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Failed to track click", "code": "CLICK_NOT_TRACKED"}

    response = await client.get("/api/v1/affiliates/me/links", headers=headers)
    assert response.json()["data"][0]["clicks"] == 1

    response = await client.get("/api/v1/affiliates/me/referrals", params={"event_type": "click"}, headers=headers)
    page = response.json()["data"]
    assert page["total"] == 1
    assert page["items"][0]["link_code"] == link["link_code"]


async def test_click_with_oversized_headers_is_tracked(client, session):
    affiliate = await make_affiliate(session)
    product = await make_product(session)
    link = await make_link(session, affiliate, product)
    long_referer = "https://www.google.com/search?q=" + "x" * 1200
    long_hop = "2001:db8:" + "a" * 100

    response = await client.post(
        "/api/v1/affiliates/track",
        json={"link_code": link.link_code},
        headers={
            "Referer": long_referer,
            "X-Forwarded-For": f"{long_hop}, 10.0.0.1",
            "User-Agent": "U" * 900,
        },
    )
    assert response.status_code == 200

    row = (await session.execute(
        select(AffiliateReferral).where(AffiliateReferral.link_code == link.link_code)
    )).scalar_one()
    assert row.referrer_url == long_referer[:1000]
    assert row.customer_ip == long_hop[:64]
    assert len(row.user_agent) == 500

    await session.refresh(link)
    assert link.clicks == 1


async def test_pending_affiliate_cannot_create_links(client, session):
    await make_affiliate(session, status=AffiliateStatus.PENDING, user_id="user-1")
    product = await make_product(session)

    response = await client.post(
        "/api/v1/affiliates/me/links",
        json={"product_id": str(product.id)},
        headers=auth_headers("user-1"),
    )
    assert response.status_code == 403
    assert response.json()["code"] == "NOT_APPROVED"


# ==================== PAYOUTS ====================

async def test_payout_request_and_settlement(client, session, notifier):
    await make_affiliate(session, user_id="user-1", pending_earnings=15_000)
    headers = auth_headers("user-1")

    response = await client.post("/api/v1/affiliates/me/payouts", json={"amount": 10_000}, headers=headers)
    assert response.status_code == 201
    payout = response.json()["data"]
    assert payout["status"] == "pending"

    response = await client.post("/api/v1/affiliates/me/payouts", json={"amount": 8_000}, headers=headers)
    assert response.status_code == 409
    assert response.json()["code"] == "INSUFFICIENT_BALANCE"

    response = await client.post("/api/v1/affiliates/me/payouts", json={"amount": 1_000}, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "BELOW_MINIMUM"

    admin = auth_headers("admin-1", is_admin=True)
    response = await client.post(
        f"/api/v1/admin/payouts/{payout['id']}/process",
        json={"status": "failed", "failure_reason": "Invalid UPI handle"},
        headers=admin,
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "failed"

    response = await client.get("/api/v1/affiliates/me", headers=headers)
    assert response.json()["data"]["pending_earnings"] == 15_000

    response = await client.post(
        f"/api/v1/admin/payouts/{payout['id']}/process",
        json={"status": "completed"},
        headers=admin,
    )
    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_TRANSITION"

    response = await client.get("/api/v1/affiliates/me/payouts", headers=headers)
    assert response.json()["data"]["total"] == 1


# ==================== WEBHOOKS ====================

async def test_webhook_rejects_bad_signature(client):
    payload = {"event": "order.placed", "data": {"order_id": str(uuid.uuid4()), "order_total": 1000}}
    response = await client.post(
        "/api/v1/webhooks/orders",
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json", "X-Webhook-Signature": "deadbeef"},
    )
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"

    response = await client.post("/api/v1/webhooks/orders", json=payload)
    assert response.status_code == 401


async def test_webhook_order_lifecycle(client, session):
    affiliate = await make_affiliate(session, user_id="user-1")
    product = await make_product(session)
    link = await make_link(session, affiliate, product)
    order_id = str(uuid.uuid4())

    placed = {
        "event": "order.placed",
        "data": {
            "order_id": order_id,
            "order_total": 100_000,
            "landing_url": f"https://shop.example.com/store/product/x?ref={affiliate.affiliate_code.lower()}",
            "link_code": link.link_code,
        },
    }
    response = await client.post("/api/v1/webhooks/orders", **signed(placed))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["result"] == "attributed"
    assert data["commission_amount"] == 5_000

    # Storefront retry
    response = await client.post("/api/v1/webhooks/orders", **signed(placed))
    assert response.json()["data"]["result"] == "duplicate"
    assert response.json()["data"]["referral_id"] == data["referral_id"]

    confirmed = {"event": "order.confirmed", "data": {"order_id": order_id}}
    response = await client.post("/api/v1/webhooks/orders", **signed(confirmed))
    assert response.json()["data"]["result"] == "completed"
    response = await client.post("/api/v1/webhooks/orders", **signed(confirmed))
    assert response.json()["data"]["result"] == "completed"

    refunded = {"event": "order.refunded", "data": {"order_id": order_id}}
    response = await client.post("/api/v1/webhooks/orders", **signed(refunded))
    assert response.status_code == 409

    response = await client.get("/api/v1/affiliates/me/dashboard", headers=auth_headers("user-1"))
    dashboard = response.json()["data"]
    assert dashboard["total_conversions"] == 1
    assert dashboard["total_commission"] == 5_000
    assert dashboard["profile"]["pending_earnings"] == 5_000


async def test_webhook_acknowledges_unattributable_orders(client, session):
    order_id = str(uuid.uuid4())

    response = await client.post("/api/v1/webhooks/orders", **signed(
        {"event": "order.placed", "data": {"order_id": order_id, "order_total": 5_000}}
    ))
    assert response.json()["data"]["result"] == "no_affiliate"

    response = await client.post("/api/v1/webhooks/orders", **signed(
        {"event": "order.placed", "data": {"order_id": order_id, "order_total": 5_000, "affiliate_code": "AFFNOTREAL"}}
    ))
    assert response.status_code == 200
    assert response.json()["data"]["result"] == "invalid_affiliate_code"

    response = await client.post("/api/v1/webhooks/orders", **signed(
        {"event": "order.cancelled", "data": {"order_id": order_id}}
    ))
    assert response.json()["data"]["result"] == "no_referral"

    response = await client.post("/api/v1/webhooks/orders", **signed(
        {"event": "order.shipped", "data": {"order_id": order_id}}
    ))
    assert response.json()["data"]["result"] == "ignored"

    response = await client.post("/api/v1/webhooks/orders", **signed({"event": "order.placed"}))
    assert response.status_code == 400


async def test_settlement_before_attribution_is_logged(client, session, caplog):
    affiliate = await make_affiliate(session)
    order_id = str(uuid.uuid4())
    caplog.set_level(logging.WARNING, logger="affiliate_api.api.v1.endpoints.webhooks")

    response = await client.post("/api/v1/webhooks/orders", **signed(
        {"event": "order.confirmed", "data": {"order_id": order_id, "affiliate_code": affiliate.affiliate_code}}
    ))
    assert response.status_code == 200
    assert response.json()["data"]["result"] == "no_referral"
    assert any(
        order_id in r.getMessage() and r.levelno == logging.WARNING for r in caplog.records
    )

    # The late order.placed still attributes; settlement is left to an admin
    response = await client.post("/api/v1/webhooks/orders", **signed(
        {"event": "order.placed", "data": {"order_id": order_id, "order_total": 10_000, "affiliate_code": affiliate.affiliate_code}}
    ))
    assert response.json()["data"]["result"] == "attributed"
    referral = (await session.execute(
        select(AffiliateReferral).where(AffiliateReferral.order_id == uuid.UUID(order_id))
    )).scalar_one()
    assert referral.status == "pending"


async def test_settlement_for_unreferred_order_is_quiet(client, caplog):
    caplog.set_level(logging.WARNING, logger="affiliate_api.api.v1.endpoints.webhooks")

    response = await client.post("/api/v1/webhooks/orders", **signed(
        {"event": "order.paid", "data": {"order_id": str(uuid.uuid4())}}
    ))
    assert response.json()["data"]["result"] == "no_referral"
    assert not [r for r in caplog.records if r.name == "affiliate_api.api.v1.endpoints.webhooks"]


async def test_admin_referral_transition(client, session):
    affiliate = await make_affiliate(session)
    order_id = str(uuid.uuid4())
    await client.post("/api/v1/webhooks/orders", **signed(
        {"event": "order.placed", "data": {
            "order_id": order_id, "order_total": 40_000, "affiliate_code": affiliate.affiliate_code,
        }}
    ))

    admin = auth_headers("admin-1", is_admin=True)
    response = await client.post(
        f"/api/v1/admin/orders/{order_id}/referral", json={"status": "cancelled"}, headers=admin
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"

    response = await client.post(
        f"/api/v1/admin/orders/{uuid.uuid4()}/referral", json={"status": "completed"}, headers=admin
    )
    assert response.status_code == 404
    assert response.json()["code"] == "REFERRAL_NOT_FOUND"
