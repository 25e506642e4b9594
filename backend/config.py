"""
Configuration management for the Meat Shop order backend.

Loads settings from .env via pydantic-settings.

Notes:
    - Amounts are integers in minor currency units (centavos).
    - validate_production_settings() enforces strict CORS and provider
      credentials in production.
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/meat_shop.db"

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    client_url: str = "http://localhost:5173"

    # ── Auth (JWT) ──────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "meatshop-api"
    jwt_access_ttl_minutes: int = 60

    # ── Stripe (payment provider) ───────────────────────────────────
    stripe_secret_key: str = ""
    stripe_api_base: str = "https://api.stripe.com/v1"
    stripe_timeout_seconds: float = 20.0
    currency: str = "php"
    tax_rate: float = 0.12  # VAT on product subtotal

    # ── Lalamove (carrier) ──────────────────────────────────────────
    lalamove_api_key: str = ""
    lalamove_api_secret: str = ""
    lalamove_hostname: str = "rest.sandbox.lalamove.com"
    lalamove_market: str = "PH"
    lalamove_language: str = "en_PH"
    lalamove_item_category: str = "FOOD_DELIVERY"
    lalamove_pickup_lat: str = "14.5995"
    lalamove_pickup_lng: str = "120.9842"
    lalamove_pickup_address: str = ""
    lalamove_pickup_phone: str = ""
    store_name: str = "Meat Shop"

    # Placement is the only slow external call: own timeout + retry budget
    carrier_timeout_seconds: float = 15.0
    carrier_max_attempts: int = 3
    carrier_retry_backoff_seconds: float = 0.5

    # ── Order engine ────────────────────────────────────────────────
    order_mutation_max_attempts: int = 5
    side_effect_max_attempts: int = 2
    # A logged webhook with no outcome after this long is reprocessed on redelivery
    webhook_stuck_after_seconds: float = 300.0

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def lalamove_base_url(self) -> str:
        return f"https://{self.lalamove_hostname}"

    @property
    def lalamove_market_code(self) -> str:
        """Lalamove expects a city-level market for the Philippines."""
        if self.lalamove_market == "PH":
            return "PH_MNL"
        return self.lalamove_market

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup. Raises in production, warns otherwise.
        """
        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to sign customer and admin access tokens."
                )
            if not self.stripe_secret_key:
                raise ValueError("STRIPE_SECRET_KEY must be set in production.")
            if not self.lalamove_api_key or not self.lalamove_api_secret:
                raise ValueError(
                    "LALAMOVE_API_KEY and LALAMOVE_API_SECRET must be set in production."
                )
            logger.info("Production settings validated")
        else:
            warnings = []
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            if not self.stripe_secret_key:
                warnings.append("STRIPE_SECRET_KEY not set (checkout disabled)")
            if not self.lalamove_api_key:
                warnings.append("LALAMOVE_API_KEY not set (carrier placement disabled)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
