"""Random code minting and referral URL helpers."""
import random
import string
from typing import Optional
from urllib.parse import urlencode, urlparse, parse_qs

CODE_ALPHABET = string.ascii_uppercase + string.digits

_random = random.SystemRandom()


def random_code(length: int, prefix: str = "") -> str:
    """Random uppercase alphanumeric code, e.g. random_code(8, "AFF") -> AFFKR7X2M9Q."""
    return prefix + ''.join(_random.choices(CODE_ALPHABET, k=length))


def build_referral_url(base_url: str, product_ref: str, affiliate_code: str, product_id) -> str:
    """Shareable storefront URL carrying the affiliate code in ?ref=."""
    query = urlencode({"ref": affiliate_code, "product": str(product_id)})
    return f"{base_url.rstrip('/')}/store/product/{product_ref}?{query}"


def parse_affiliate_code(url: Optional[str]) -> Optional[str]:
    """Extract the ?ref= affiliate code from a landing URL."""
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get("ref")
    if not values or not values[0].strip():
        return None
    return values[0].strip().upper()
