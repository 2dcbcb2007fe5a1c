import hashlib
import hmac
import uuid
from datetime import timedelta

import pytest

from affiliate_api.core.codes import CODE_ALPHABET, build_referral_url, parse_affiliate_code, random_code
from affiliate_api.core.security import (
    create_access_token,
    verify_access_token,
    verify_webhook_signature,
)


def test_random_code_shape():
    code = random_code(12)
    assert len(code) == 12
    assert set(code) <= set(CODE_ALPHABET)

    prefixed = random_code(8, "AFF")
    assert prefixed.startswith("AFF")
    assert len(prefixed) == 11


def test_referral_url_round_trips_code():
    product_id = uuid.uuid4()
    url = build_referral_url("https://shop.example.com/", "steel-bottle", "AFFABC12345", product_id)

    assert url.startswith("https://shop.example.com/store/product/steel-bottle?")
    assert parse_affiliate_code(url) == "AFFABC12345"


@pytest.mark.parametrize(
    "url,expected",
    [
        (None, None),
        ("", None),
        ("https://shop.example.com/store", None),
        ("https://shop.example.com/store?ref=", None),
        ("https://shop.example.com/store?utm_source=x&ref=affxyz", "AFFXYZ"),
    ],
)
def test_parse_affiliate_code(url, expected):
    assert parse_affiliate_code(url) == expected


def test_access_tokens():
    token = create_access_token("user-9", additional_claims={"is_admin": True})
    claims = verify_access_token(token)
    assert claims["sub"] == "user-9"
    assert claims["is_admin"] is True

    expired = create_access_token("user-9", expires_delta=timedelta(seconds=-5))
    assert verify_access_token(expired) is None
    assert verify_access_token("garbage") is None


def test_webhook_signature():
    body = b'{"event":"order.placed"}'
    good = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

    assert verify_webhook_signature(body, good, "s3cret") is True
    assert verify_webhook_signature(body, good.upper(), "s3cret") is True
    assert verify_webhook_signature(body + b" ", good, "s3cret") is False
    assert verify_webhook_signature(body, None, "s3cret") is False
