from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "Workshop Metrics"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./workshop.db"

    # Calendar windows are computed in the workshop's civil zone, never UTC
    business_timezone: str = "Asia/Kolkata"

    # Windows reported by the dashboard metric families, in display order
    dashboard_windows: list[str] = [
        "today",
        "thisWeek",
        "thisMonth",
        "lastMonth",
    ]

    # Windows used for entered/exited vehicle counts
    summary_windows: list[str] = [
        "today",
        "thisWeek",
        "thisMonth",
    ]

    # Shown when a stage event carries no performer
    unknown_performer: str = "Unknown"


@lru_cache
def get_settings() -> Settings:
    return Settings()
