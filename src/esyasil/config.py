from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

INITIAL_CREDITS = 5
MISSING_ACCOUNT_CREDITS = 1
UNLIMITED_CREDITS = 9999
MAX_BATCH_SIZE = 5

REMOVE_FURNITURE_PROMPT = (
    "Identify all furniture in this image. Remove the furniture and "
    "reconstruct the background (floor and walls) to show an empty room. "
    "Maintain lighting and architectural structure."
)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    mongo_uri: str | None = Field(None, alias="MONGO_URI")
    mongo_db: str = "esyasil"
    ledger_log_path: Path = Path("logs/esyasil_ledger.log")

    gemini_api_key: str | None = Field(None, alias="GEMINI_API_KEY")
    gemini_model: str = "gemini-2.5-flash-image"
    dispatch_timeout_seconds: float = 60.0
    dispatch_max_attempts: int = 2
    dispatch_backoff_seconds: float = 1.0

    stripe_secret_key: str | None = Field(None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = Field(None, alias="STRIPE_WEBHOOK_SECRET")
    checkout_unit_amount: int = Field(
        10000, description="Monthly price in minor currency units"
    )
    checkout_currency: str = "try"
    checkout_product_name: str = "EşyaSil AI Pro (Aylık)"
    checkout_success_url: str = "https://your-app-url.com?success=true"
    checkout_cancel_url: str = "https://your-app-url.com?canceled=true"

    jwt_secret: str | None = Field(None, alias="JWT_SECRET")
    jwt_jwks_url: str | None = Field(
        None,
        alias="JWT_JWKS_URL",
        description="JWKS endpoint of the identity provider for RS256 tokens",
    )
    jwt_audience: str | None = None
    jwt_issuer: str | None = None
    admin_user_ids: list[str] = Field(default_factory=list)

    initial_credits: int = INITIAL_CREDITS
    missing_account_credits: int = MISSING_ACCOUNT_CREDITS
    unlimited_credits: int = UNLIMITED_CREDITS
    max_batch_size: int = MAX_BATCH_SIZE

    log_level: str = "INFO"
    json_logs: bool = True

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        env_prefix="ESYASIL_",
        case_sensitive=False,
        populate_by_name=True,
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
