from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    environment: str = Field("development", alias="ENVIRONMENT")  # development | test | production
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Payment gateway (Stripe-compatible REST API)
    gateway_api_key: Optional[str] = Field(None, alias="GATEWAY_API_KEY")
    gateway_api_base: str = Field("https://api.stripe.com/v1", alias="GATEWAY_API_BASE")
    gateway_timeout_seconds: float = Field(10.0, alias="GATEWAY_TIMEOUT_SECONDS")
    gateway_webhook_secret: Optional[str] = Field(None, alias="GATEWAY_WEBHOOK_SECRET")
    gateway_signature_tolerance_seconds: int = Field(300, alias="GATEWAY_SIGNATURE_TOLERANCE_SECONDS")
    gateway_default_currency: str = Field("usd", alias="GATEWAY_DEFAULT_CURRENCY")

    # Ledger
    ledger_amount_tolerance: Decimal = Field(Decimal("0.01"), alias="LEDGER_AMOUNT_TOLERANCE")
    ledger_max_write_attempts: int = Field(3, alias="LEDGER_MAX_WRITE_ATTEMPTS")
    default_first_due_days: int = Field(30, alias="DEFAULT_FIRST_DUE_DAYS")
    upcoming_window_days: int = Field(7, alias="UPCOMING_WINDOW_DAYS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


settings = Settings()
