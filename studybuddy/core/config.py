import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database (Supabase/Postgres in the cloud, SQLite mirror for desktop/offline)
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    LOCAL_DATABASE_URL: str = "sqlite:///./studybuddy.db"
    DB_POOL_TIMEOUT: int = 5  # seconds; store access must fail fast
    DB_CONNECT_TIMEOUT: int = 5

    # Tier catalog
    TIER_CONFIG_PATH: Optional[str] = None  # JSON file; database catalog when unset
    TIER_REFRESH_INTERVAL_MS: int = 5 * 60 * 1000
    FALLBACK_TIER: str = "free"

    # Upgrade prompts
    UPGRADE_PROMPTS_ENABLED: bool = True
    UPGRADE_PROMPT_THROTTLE_MS: int = 24 * 60 * 60 * 1000
    UPGRADE_PROMPT_NEAR_LIMIT_RATIO: float = 0.10
    UPGRADE_PROMPT_ACTION_THRESHOLD: int = 10

    # Monetization
    ADS_ENABLED: bool = False

    # Quota spends
    QUOTA_MAX_RETRIES: int = 3

    # Admin access (X-Admin-Key)
    ADMIN_KEY: Optional[str] = None

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate configuration values.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only the offending keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("studybuddy")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    if cfg.TIER_REFRESH_INTERVAL_MS <= 0:
        problems.append("TIER_REFRESH_INTERVAL_MS must be positive")
    if cfg.UPGRADE_PROMPT_THROTTLE_MS < 0:
        problems.append("UPGRADE_PROMPT_THROTTLE_MS must not be negative")
    if not 0 <= cfg.UPGRADE_PROMPT_NEAR_LIMIT_RATIO < 1:
        problems.append("UPGRADE_PROMPT_NEAR_LIMIT_RATIO must be in [0, 1)")
    if cfg.UPGRADE_PROMPT_ACTION_THRESHOLD < 0:
        problems.append("UPGRADE_PROMPT_ACTION_THRESHOLD must not be negative")
    if cfg.QUOTA_MAX_RETRIES < 1:
        problems.append("QUOTA_MAX_RETRIES must be at least 1")
    if cfg.ENV.lower() == "production" and not cfg.DATABASE_URL:
        problems.append("DATABASE_URL is required in production")
    if cfg.ENV.lower() == "production" and not cfg.ADMIN_KEY:
        problems.append("ADMIN_KEY is required in production")

    if problems:
        message = f"Invalid configuration: {'; '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
