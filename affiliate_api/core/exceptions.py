"""
Affiliate domain errors.

Every error carries an HTTP status so the API layer can render it in the
standard envelope without per-endpoint try/except blocks:

- ValidationError  -> 400
- Unauthenticated  -> 401
- Forbidden        -> 403
- NotFound         -> 404
- Conflict         -> 409
- Unavailable      -> 500 (message is replaced with a generic one)
"""
from typing import Any, Dict, Optional


class AffiliateError(Exception):
    """Base exception for affiliate program errors."""

    http_status: int = 500
    error_code: str = "AFFILIATE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


# ==================== CATEGORIES ====================

class ValidationError(AffiliateError):
    http_status = 400
    error_code = "VALIDATION_ERROR"


class Unauthenticated(AffiliateError):
    http_status = 401
    error_code = "UNAUTHENTICATED"


class Forbidden(AffiliateError):
    http_status = 403
    error_code = "FORBIDDEN"


class NotFound(AffiliateError):
    http_status = 404
    error_code = "NOT_FOUND"


class Conflict(AffiliateError):
    http_status = 409
    error_code = "CONFLICT"


class Unavailable(AffiliateError):
    """Datastore or collaborator failure. Never shown verbatim to callers."""
    http_status = 500
    error_code = "UNAVAILABLE"


# ==================== SPECIFIC ERRORS ====================

class NotApproved(Forbidden):
    error_code = "NOT_APPROVED"

    def __init__(self, message: str = "Affiliate is not approved", **kwargs):
        super().__init__(message, **kwargs)


class AffiliateNotFound(NotFound):
    error_code = "AFFILIATE_NOT_FOUND"

    def __init__(self, message: str = "Affiliate profile not found", **kwargs):
        super().__init__(message, **kwargs)


class ProductNotFound(NotFound):
    error_code = "PRODUCT_NOT_FOUND"

    def __init__(self, message: str = "Product not found", **kwargs):
        super().__init__(message, **kwargs)


class LinkNotFound(NotFound):
    error_code = "LINK_NOT_FOUND"

    def __init__(self, message: str = "Affiliate link not found", **kwargs):
        super().__init__(message, **kwargs)


class ReferralNotFound(NotFound):
    error_code = "REFERRAL_NOT_FOUND"

    def __init__(self, message: str = "Referral not found", **kwargs):
        super().__init__(message, **kwargs)


class PayoutNotFound(NotFound):
    error_code = "PAYOUT_NOT_FOUND"

    def __init__(self, message: str = "Payout not found", **kwargs):
        super().__init__(message, **kwargs)


class InvalidAffiliateCode(ValidationError):
    error_code = "INVALID_AFFILIATE_CODE"

    def __init__(self, message: str = "Affiliate code does not match an approved affiliate", **kwargs):
        super().__init__(message, **kwargs)


class BelowMinimum(ValidationError):
    error_code = "BELOW_MINIMUM"


class AlreadyApplied(Conflict):
    error_code = "ALREADY_APPLIED"


class InsufficientBalance(Conflict):
    error_code = "INSUFFICIENT_BALANCE"

    def __init__(self, message: str = "Insufficient pending earnings", **kwargs):
        super().__init__(message, **kwargs)


class InvalidTransition(Conflict):
    error_code = "INVALID_TRANSITION"


class DuplicateAttribution(Conflict):
    """Raised when an order already has a referral; carries the existing row."""
    error_code = "DUPLICATE_ATTRIBUTION"

    def __init__(self, referral, message: str = "Order has already been attributed"):
        self.referral = referral
        super().__init__(message, details={"referral_id": str(referral.id)})


class CodeGenerationExhausted(Unavailable):
    error_code = "CODE_GENERATION_EXHAUSTED"
