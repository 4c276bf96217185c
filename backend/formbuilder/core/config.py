"""Application configuration"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Form Builder API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Security
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 1440  # 24 hours

    # Database
    DATABASE_URL: str

    # URLs
    FRONTEND_URL: str = "http://localhost:3000"

    # Stripe
    STRIPE_SECRET_KEY: str
    # WHY: 2023-10-16 still reports current_period_start/end on the subscription
    # itself; later versions moved them onto subscription items.
    STRIPE_API_VERSION: str = "2023-10-16"
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    STRIPE_SUBSCRIPTION_LOOKUP_LIMIT: int = 10

    # Stripe Subscription Plans
    # WHY: Price IDs map our plan/interval pairs to Stripe prices for billing.
    # Each price ID must be unique across the table (reverse lookups depend on it).
    STRIPE_PRICE_BASIC_MONTHLY: Optional[str] = None  # price_xxx
    STRIPE_PRICE_BASIC_ANNUAL: Optional[str] = None  # price_xxx
    STRIPE_PRICE_PRO_MONTHLY: Optional[str] = None  # price_xxx
    STRIPE_PRICE_PRO_ANNUAL: Optional[str] = None  # price_xxx
    STRIPE_PRICE_ENTERPRISE_MONTHLY: Optional[str] = None  # price_xxx
    STRIPE_PRICE_ENTERPRISE_ANNUAL: Optional[str] = None  # price_xxx

    # Billing behaviour
    TRIAL_ENDING_SOON_DAYS: int = 3
    RETRY_AFTER_SECONDS: int = 30  # Retry-After hint when Stripe is unavailable

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    @property
    def stripe_price_table(self) -> dict[tuple[str, str], Optional[str]]:
        """
        Configured price IDs keyed by (plan, interval).

        WHY: The plan catalog is built from this table so prices can change
        without code changes.
        """
        return {
            ("basic", "monthly"): self.STRIPE_PRICE_BASIC_MONTHLY,
            ("basic", "annual"): self.STRIPE_PRICE_BASIC_ANNUAL,
            ("pro", "monthly"): self.STRIPE_PRICE_PRO_MONTHLY,
            ("pro", "annual"): self.STRIPE_PRICE_PRO_ANNUAL,
            ("enterprise", "monthly"): self.STRIPE_PRICE_ENTERPRISE_MONTHLY,
            ("enterprise", "annual"): self.STRIPE_PRICE_ENTERPRISE_ANNUAL,
        }

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
