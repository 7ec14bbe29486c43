from pydantic_settings import BaseSettings
from functools import lru_cache

from farewatch.errors import ConfigurationError


class Settings(BaseSettings):
    env: str = "dev"
    database_url: str = "sqlite:///./data/farewatch.db"

    scheduler_enabled: bool = True
    timezone: str = "America/New_York"

    # Dispatch loop
    dispatch_every_minutes: int = 5
    concurrent_trips: int = 3
    check_timeout_seconds: int = 120
    shutdown_timeout_seconds: int = 30

    # Per-trip interval (minutes)
    default_check_every_minutes: int = 360
    min_check_interval_minutes: int = 60
    max_check_interval_minutes: int = 1440

    backoff_base_minutes: int = 30
    backoff_max_minutes: int = 120
    price_history_limit: int = 50

    # Price API rate limiting
    rate_limit_delay_ms: int = 4000
    segment_delay_ms: int = 1000

    # Manual triggers
    allow_manual_triggers: bool = True
    manual_trigger_cooldown_minutes: int = 30
    manual_job_batch_size: int = 3

    # Retention
    job_retention_days: int = 7
    alert_retention_days: int = 90
    failure_reset_days: int = 30

    # Alerts
    alerts_enabled: bool = True
    min_savings_amount: float = 10
    min_savings_percent: float = 2
    alert_cooldown_hours: int = 24
    max_alerts_per_day: int = 3
    alert_timeout_seconds: int = 30

    # Price sources
    use_mock_prices: bool = False
    enable_mock_fallback: bool = False
    amadeus_client_id: str = ""
    amadeus_client_secret: str = ""
    amadeus_base_url: str = "https://test.api.amadeus.com"

    # Email
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    alert_from_email: str = "Farewatch <noreply@farewatch.app>"

    class Config:
        env_file = ".env"


def validate_settings(settings: Settings) -> None:
    """Refuse to start without a usable database connection string."""
    if not settings.database_url or not settings.database_url.strip():
        raise ConfigurationError("DATABASE_URL is not configured")
    if settings.env == "prod" and settings.database_url.startswith("sqlite"):
        raise ConfigurationError(
            "Production requires explicit DATABASE_URL (not SQLite)"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
