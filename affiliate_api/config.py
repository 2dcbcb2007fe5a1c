from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes
    DB_CONNECT_TIMEOUT: int = 10  # Seconds before a connection attempt is abandoned

    # JWT Settings (tokens are issued by the auth provider)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # App Settings
    APP_NAME: str = "Affiliate API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Storefront URLs used when building links and emails
    SITE_URL: str = "http://localhost:3000"
    DASHBOARD_URL: str = "http://localhost:3000/affiliate/dashboard"

    # Commission
    DEFAULT_COMMISSION_RATE: float = 5.0  # Percent
    # JSON list of {"min_conversions": int, "rate": number}; empty disables tiers
    COMMISSION_TIERS: list[dict] = []

    # Payouts (minor currency units)
    MINIMUM_PAYOUT: int = 1_000_000

    # Code generation
    AFFILIATE_CODE_PREFIX: str = "AFF"
    AFFILIATE_CODE_LENGTH: int = 8
    LINK_CODE_LENGTH: int = 12
    AFFILIATE_CODE_MAX_ATTEMPTS: int = 5
    LINK_CODE_MAX_ATTEMPTS: int = 5

    # Transactional email (Resend)
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "noreply@example.com"

    # Storefront order webhooks
    WEBHOOK_SECRET: Optional[str] = None

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('COMMISSION_TIERS', mode='before')
    @classmethod
    def parse_commission_tiers(cls, v):
        if isinstance(v, str):
            v = json.loads(v) if v.strip() else []
        for tier in v:
            if "min_conversions" not in tier or "rate" not in tier:
                raise ValueError("Each commission tier needs min_conversions and rate")
            if not 0 <= float(tier["rate"]) <= 100:
                raise ValueError("Commission tier rate must be between 0 and 100")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
