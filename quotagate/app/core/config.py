import json
import re
from typing import Annotated, Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # Prefer JSON, but tolerate a plain comma separated list.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    origins: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if not part:
            continue
        if part == "*":
            return ["*"]
        if part not in origins:
            origins.append(part)
    return origins


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Rate limiting settings (per client identity, in-process token bucket)
    rate_limit_requests_per_minute: int = 60
    rate_limit_refill_interval_ms: int = 60_000
    rate_limit_fallback_identity: str = "127.0.0.1"

    # Daily AI token budget per principal
    ai_daily_token_limit: int = Field(
        default=5000,
        validation_alias=AliasChoices("AI_DAILY_TOKENS", "AI_DAILY_TOKEN_LIMIT"),
    )
    ai_default_estimated_cost: int = 500

    # Counter store (Redis hash per principal/day; in-memory when disabled)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    counter_store_timeout: float = 2.0  # Seconds per store call

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("rate_limit_requests_per_minute", "rate_limit_refill_interval_ms")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("ai_daily_token_limit", "ai_default_estimated_cost")
    @classmethod
    def validate_token_values(cls, v: int) -> int:
        """Validate token budget values are not negative."""
        if v < 0:
            raise ValueError("Token budget values must not be negative")
        return v

    @field_validator("counter_store_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("counter_store_timeout must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


# Global settings instance
settings = Settings()
