import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict, model_validator
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    AUTO_CREATE_TABLES: bool = False

    # Caller resolution
    AUTH_JWT_SECRET: Optional[str] = None
    # X-User-Id fallback for tests and internal callers; off in production unless set
    ALLOW_HEADER_AUTH: Optional[bool] = None
    # Callers allowed to read economy-wide metrics (comma-separated); empty allows any caller
    ADMIN_USER_IDS: str = ""

    # Reward calendar: all day arithmetic is anchored to this zone
    REWARDS_TIMEZONE: str = "UTC"

    # Ledger store discipline
    USER_LOCK_TIMEOUT_SECONDS: float = 5.0
    STORE_RETRY_ATTEMPTS: int = 3
    STORE_RETRY_BACKOFF_SECONDS: float = 0.05

    # Catalog
    CATALOG_CACHE_TTL_SECONDS: float = 60.0
    FREE_TIER_MAX_LEVEL: int = 10

    # App
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _default_header_auth(self):
        if self.ALLOW_HEADER_AUTH is None:
            self.ALLOW_HEADER_AUTH = self.ENV.lower() != "production"
        return self

settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("crave")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = ["DATABASE_URL"]
    if not getattr(cfg, "ALLOW_HEADER_AUTH", True):
        required_keys.append("AUTH_JWT_SECRET")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.ALLOW_HEADER_AUTH and cfg.ENV.lower() == "production":
        message = "ALLOW_HEADER_AUTH is enabled in production: any client can act as any user via X-User-Id"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.ENV.lower() == "production" and not cfg.ADMIN_USER_IDS.strip():
        log.warning("ADMIN_USER_IDS is empty: economy metrics are readable by any authenticated caller")

    if cfg.STORE_RETRY_ATTEMPTS < 1:
        message = "STORE_RETRY_ATTEMPTS must be at least 1"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
