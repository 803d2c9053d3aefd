from functools import lru_cache

from pydantic import ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings


class DatabaseSettings(BaseSettings):
    """Settings needed to reach the database (used by Alembic)."""

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "sqlite:///./secrets.db"
    store_timeout_seconds: float = 5.0


class Settings(DatabaseSettings):
    # Encryption
    encryption_key: SecretStr
    pbkdf2_iterations: int = Field(100_000, ge=10_000)
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536  # 64MB
    argon2_parallelism: int = 4

    # Share links
    site_url: str = "http://localhost:3000"

    # Limits
    max_secret_length: int = 10_000
    min_ttl_seconds: int = 60
    max_ttl_seconds: int = 604_800  # 7 days
    default_ttl_seconds: int = 86_400  # 24 hours
    min_views: int = 1
    max_views: int = 100
    default_max_views: int = 1

    # Rate Limiting
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    rate_limit_create_requests: int = 10
    rate_limit_create_window_ms: int = 15 * 60 * 1000
    rate_limit_view_requests: int = 50
    rate_limit_view_window_ms: int = 15 * 60 * 1000

    # Cleanup
    reaper_enabled: bool = True
    reaper_interval_minutes: int = 10

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"

    # CORS
    cors_origins: list[str] | str = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @field_validator("encryption_key")
    @classmethod
    def require_encryption_key(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("ENCRYPTION_KEY environment variable is required")
        return v

    @field_validator("site_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process. Raises if ENCRYPTION_KEY is missing."""
    return Settings()
