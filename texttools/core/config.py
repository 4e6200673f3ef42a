import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Literal, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_MONTHLY_PRICE_ID: Optional[str] = None
    STRIPE_YEARLY_PRICE_ID: Optional[str] = None

    # App URLs (checkout redirects)
    FRONTEND_URL: str = "http://localhost:3000"

    # Internal callers (usage reset cron)
    INTERNAL_API_KEY: Optional[str] = None

    # Free tier quotas, per billing month
    FREE_DETECTION_LIMIT: int = 5
    FREE_HUMANIZATION_LIMIT: int = 3

    # Gate behaviour when the record store is unreachable
    GATE_FAILURE_POLICY: Literal["open", "closed"] = "open"

    # Skip billing events older than the last one applied to a record
    BILLING_REJECT_STALE_EVENTS: bool = False

    # Refresh paid records from Stripe on GET /api/subscription/{user_id}
    SUBSCRIPTION_REFRESH_ON_READ: bool = True

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("texttools")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "INTERNAL_API_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
