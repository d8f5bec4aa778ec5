"""Application configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App
    app_env: str = "development"
    log_level: str = "DEBUG"
    json_logs: bool = False

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./pokerleague.db",
        description="Async database connection URL",
    )
    db_pool_size: int = Field(
        default=10,
        description="DB connection pool size (ignored for SQLite)",
    )
    db_echo: bool = False

    # Redis - 단일 관리자 락 / 탈락 멱등성 키 저장소
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL (optional, in-process locks when unset)",
    )
    redis_socket_timeout: float = Field(
        default=5.0,
        description="Redis socket timeout in seconds (기본: 5초)",
    )

    # Round write lock
    round_lock_timeout_ms: int = Field(
        default=10000,
        description="Per-round write lock TTL in milliseconds",
    )
    round_lock_acquire_timeout_ms: int = Field(
        default=5000,
        description="Max wait for the per-round write lock in milliseconds",
    )

    # Store read retry (reads only, never mutations)
    store_read_attempts: int = Field(
        default=3,
        description="Attempts for read-only store calls on TransientIOError",
    )
    store_read_wait_seconds: float = Field(
        default=0.5,
        description="Base exponential backoff between read retries",
    )

    # Observers
    observer_poll_seconds: float = Field(
        default=5.0,
        description="Interval at which non-admin viewers re-pull round state",
    )

    @field_validator("store_read_attempts")
    @classmethod
    def validate_store_read_attempts(cls, v: int) -> int:
        """At least one attempt is always made."""
        if v < 1:
            raise ValueError("store_read_attempts must be >= 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production environment."""
        if self.app_env == "production":
            # 프로덕션은 JSON 로그 강제
            object.__setattr__(self, "json_logs", True)

            if self.log_level == "DEBUG":
                import warnings
                warnings.warn(
                    "DEBUG log level in production may expose sensitive information"
                )

        return self

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
