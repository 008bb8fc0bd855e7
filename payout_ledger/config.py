from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./payout_ledger.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Payout Ledger"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Fee Split
    PAYMENT_FEE_PERCENTAGE: str = "0.036"  # Processor's variable fee
    PAYMENT_FEE_FIXED: int = 30  # Processor's fixed fee, minor units
    PLATFORM_FEE_PERCENTAGE: str = "0.15"  # Platform's cut; sellers get the rest
    MAX_BUYER_AFFILIATE_FEE_PERCENTAGE: str = "0.5"
    DEFAULT_SELLER_AFFILIATE_FEE_PERCENTAGE: str = "0.05"
    DEFAULT_BUYER_AFFILIATE_FEE_PERCENTAGE: str = "0.25"

    # Payouts
    PLATFORM_PAYEE_ID: str = "gm-platform"
    DEFAULT_CURRENCY: str = "USD"
    NUM_APPROVALS_REQUIRED: int = 2

    # PayPal Payouts
    PAYPAL_API_URL: str = "https://api.sandbox.paypal.com"
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_TIMEOUT: float = 30.0
    PAYPAL_PAYOUT_EMAIL_SUBJECT: str = "Payout from the marketplace"
    PAYPAL_PAYOUT_EMAIL_MESSAGE: str = "We've sent you a payout for your marketplace earnings"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('DEFAULT_CURRENCY', mode='before')
    @classmethod
    def uppercase_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
