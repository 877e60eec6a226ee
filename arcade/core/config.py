import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None

    # Bearer auth (HS256 JWT issued by the auth service)
    AUTH_JWT_SECRET: Optional[str] = None

    # Token signing keys
    SAVE_HMAC_SECRET: Optional[str] = None
    CONTINUE_TOKEN_SECRET: Optional[str] = None

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_ID: Optional[str] = None

    # Credits
    CREDITS_PER_PURCHASE: int = 10
    FREE_CREDITS_DEFAULT: int = 3
    CHECKOUT_ALLOWED_HOSTS: str = "localhost"  # comma-separated

    # Per-user rate limits
    CONTINUE_RATE_LIMIT_PER_MINUTE: int = 5
    CHECKOUT_RATE_LIMIT_PER_MINUTE: int = 3
    SAVE_WRITE_RATE_LIMIT_PER_MINUTE: int = 20

    # Saves
    SAVE_MAX_BYTES: int = 256 * 1024

    # CORS
    CORS_ALLOWED_ORIGINS: str = "http://localhost:5173"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def allowed_checkout_hosts(self) -> List[str]:
        return _split_csv(self.CHECKOUT_ALLOWED_HOSTS)

    def cors_origins(self) -> List[str]:
        return _split_csv(self.CORS_ALLOWED_ORIGINS)


def _split_csv(raw: Optional[str]) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("arcade")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_JWT_SECRET",
        "SAVE_HMAC_SECRET",
        "CONTINUE_TOKEN_SECRET",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
