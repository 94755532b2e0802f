"""Service configuration loaded from ``WIDEEVENT_``-prefixed environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the ingest and query service."""

    clickhouse_url: str = "http://localhost:8123"
    clickhouse_database: str = "default"
    clickhouse_user: str = "default"
    clickhouse_password: str = ""
    clickhouse_timeout_seconds: float = 30.0

    credentials_db_path: str = "wideevent.db"

    limits_url: str | None = None
    limits_secret: str | None = None
    limits_timeout_seconds: float = 2.0

    quota_ttl_seconds: float = 300.0
    quota_sweep_interval_seconds: float = 600.0
    default_events_per_month: int = 10_000

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3005

    model_config = SettingsConfigDict(
        env_prefix="WIDEEVENT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


def get_settings() -> Settings:
    return Settings()
