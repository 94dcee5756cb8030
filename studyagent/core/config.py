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

    # Supabase Auth (JWT verification only)
    SUPABASE_JWT_SECRET: Optional[str] = None
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    # Gemini / Vertex AI
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_API_KEY: Optional[str] = None
    GOOGLE_SERVICE_ACCOUNT_BASE64: Optional[str] = None
    GOOGLE_SERVICE_ACCOUNT_FILE: Optional[str] = None
    VERTEX_LOCATION: str = "us-central1"

    # Intent routing
    INTENT_ESTIMATED_TOKENS: int = 500  # intent routing is lightweight
    INTENT_TEMPERATURE: float = 0.1
    INTENT_MAX_OUTPUT_TOKENS: int = 500
    INTENT_TIMEOUT_SECONDS: float = 30.0
    UPSTREAM_ERROR_USAGE_POLICY: Literal["skip", "estimate"] = "skip"

    # Plans
    FREE_MONTHLY_TOKEN_LIMIT: int = 100_000
    PRO_PLAN_MULTIPLIER: int = 10

    # App
    CORS_ORIGINS: str = "http://localhost:5173"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def is_production(settings_obj: Optional[Settings] = None) -> bool:
    cfg = settings_obj or settings
    return (cfg.ENV or "").lower() in {"production", "prod"}


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("studyagent")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "SUPABASE_JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]

    oracle_keys = ["GEMINI_API_KEY", "GOOGLE_SERVICE_ACCOUNT_BASE64", "GOOGLE_SERVICE_ACCOUNT_FILE"]
    if not any(getattr(cfg, key, None) for key in oracle_keys):
        missing.append(" or ".join(oracle_keys))

    if cfg.INTENT_TIMEOUT_SECONDS <= 0:
        message = "INTENT_TIMEOUT_SECONDS must be positive"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
