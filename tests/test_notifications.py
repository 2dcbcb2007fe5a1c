import json

import httpx

from affiliate_api.services.notification_service import (
    EmailMessage,
    NotificationService,
    format_amount,
)


def message() -> EmailMessage:
    return EmailMessage(to="asha@example.com", subject="Hello", html="<p>Hi</p>", text="Hi")


def service_with(handler) -> NotificationService:
    return NotificationService(
        api_key="re_test",
        api_url="https://api.resend.test/emails",
        from_email="Affiliates <affiliates@example.com>",
        transport=httpx.MockTransport(handler),
    )


def test_format_amount():
    assert format_amount(0) == "0.00"
    assert format_amount(5) == "0.05"
    assert format_amount(150_050) == "1,500.50"


async def test_send_posts_to_provider():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(200, json={"id": "email_123"})

    sent = await service_with(handler).send(message(), idempotency_key="payout:1")

    assert sent is True
    request = captured["request"]
    assert str(request.url) == "https://api.resend.test/emails"
    assert request.headers["Authorization"] == "Bearer re_test"
    assert len(request.headers["Idempotency-Key"]) == 64
    payload = json.loads(request.content)
    assert payload["to"] == ["asha@example.com"]
    assert payload["from"] == "Affiliates <affiliates@example.com>"
    assert payload["subject"] == "Hello"


async def test_provider_error_returns_false():
    sent = await service_with(lambda request: httpx.Response(500, text="boom")).send(message())
    assert sent is False


async def test_timeout_returns_false():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    assert await service_with(handler).send(message()) is False


async def test_connection_error_returns_false():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert await service_with(handler).send(message()) is False


async def test_unconfigured_service_skips_sending():
    def handler(request):
        raise AssertionError("provider must not be called")

    service = NotificationService(api_key="", transport=httpx.MockTransport(handler))
    assert await service.send(message()) is False


async def test_payout_email_contains_amount_and_reference():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "email_456"})

    await service_with(handler).send_payout_processed(
        "asha@example.com", "Asha", 250_000, "TXN-9", event_ref="payout-1"
    )

    assert bodies[0]["subject"] == "Affiliate Payout Processed"
    assert "2,500.00" in bodies[0]["text"]
    assert "TXN-9" in bodies[0]["text"]


async def test_user_supplied_values_are_escaped_in_html():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "email_789"})

    await service_with(handler).send_application_rejected(
        "asha@example.com",
        "<b>Asha</b>",
        event_ref="profile-1:2026-01-01T00:00:00",
        feedback='<script>alert("x")</script>',
    )

    html = bodies[0]["html"]
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "&lt;b&gt;Asha&lt;/b&gt;" in html
    # Plain-text part is left as written
    assert '<script>alert("x")</script>' in bodies[0]["text"]


async def test_payout_key_names_the_payout():
    keys = []

    def handler(request):
        keys.append(request.headers["Idempotency-Key"])
        return httpx.Response(200, json={"id": "email_1"})

    service = service_with(handler)
    await service.send_payout_processed("asha@example.com", "Asha", 10_000, None, event_ref="payout-1")
    await service.send_payout_processed("asha@example.com", "Asha", 10_000, None, event_ref="payout-2")

    assert len(set(keys)) == 2
