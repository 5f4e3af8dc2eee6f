from __future__ import annotations

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    app_name: str = "PropFlow"
    app_version: str = "2024-12.v1"
    database_url: str = "sqlite:///./propflow.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Payment processor ----
    stripe_secret_key: str | None = None
    stripe_api_version: str = "2024-12-18.acacia"
    currency: str = "usd"

    # Flat fee charged to the payer on each milestone release (never netted from the contractor)
    escrow_platform_fee: Decimal = Decimal("1.00")

    # ---- Eviction notices ----
    eviction_sweep_hour_utc: int = 6

    # ---- Rent automation ----
    rent_check_hour_utc: int = 7
    default_grace_period_days: int = 5
    default_reminder_days_before: list[int] = [7, 3, 1]

    # ---- Celery ----
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if self.escrow_platform_fee < 0:
            raise ValueError("escrow_platform_fee cannot be negative")

        if is_prod:
            if not self.stripe_secret_key:
                raise ValueError("CONFIG: stripe_secret_key is required in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")


settings = Settings()
