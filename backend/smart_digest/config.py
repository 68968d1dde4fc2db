from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field, model_validator
from functools import lru_cache
from pathlib import Path

# Get the project root (smart-digest/)
PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):

    # Application
    app_env: str = "development"
    app_debug: bool = False
    app_base_url: str = "http://localhost:5000"

    # PostgreSQL Configuration
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "smart_digest"
    postgres_user: str = "smart_digest"
    postgres_password: str = ""

    # SQLite (local development and tests)
    use_sqlite: bool = False
    sqlite_url: str = "sqlite+aiosqlite:///./data/smart_digest.db"

    @computed_field
    @property
    def database_url(self) -> str:
        """Return the appropriate database URL based on configuration."""
        if self.use_sqlite:
            return self.sqlite_url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Database pooling (PostgreSQL)
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_recycle: int = 1800

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    prometheus_enabled: bool = True

    # Digest scheduler
    scheduler_enabled: bool = True
    digest_min_check_interval_seconds: int = 60
    digest_max_check_interval_seconds: int = 30 * 60
    digest_immediate_check_interval_seconds: int = 5 * 60
    digest_delivery_window_minutes: int = 15
    digest_immediate_cooldown_minutes: int = 60
    digest_gather_timeout_seconds: float = 30.0
    digest_send_timeout_seconds: float = 30.0
    digest_store_timeout_seconds: float = 10.0
    digest_processing_time_samples: int = 100

    # Content gatherer (CRM query service)
    gatherer_base_url: str = "http://localhost:5000/internal"
    gatherer_api_key: str = ""

    # Email Configuration
    email_enabled: bool = False  # Default to False so the scheduler works without email
    email_provider: str = "smtp"  # "smtp", "resend"
    email_from_address: str = "noreply@smartdigest.app"
    email_from_name: str = "Sales Digest"

    # SMTP Settings
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True

    # Resend Settings (alternative)
    resend_api_key: str = ""

    # Redis event publishing (empty disables it)
    redis_url: str = ""
    redis_events_channel: str = "smart_digest:events"

    @model_validator(mode="after")
    def check_interval_bounds(self):
        if self.digest_min_check_interval_seconds > self.digest_max_check_interval_seconds:
            raise ValueError(
                "digest_min_check_interval_seconds must not exceed digest_max_check_interval_seconds"
            )
        return self

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Singleton instance for easy import
settings = get_settings()
