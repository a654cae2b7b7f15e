"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "CalmDay Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://calmday@localhost:5432/calmday"
    default_timezone: str = "UTC"
    default_wake_time: str = "07:00"
    default_sleep_time: str = "22:00"
    buffer_minutes: int = 5
    min_window_minutes: int = 5
    low_mood_threshold: float = 4.0
    generation_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    generation_timeout_seconds: float = 20.0
    calendar_provider: str = "local"
    lease_ttl_seconds: int = 120
    lease_wait_seconds: float = 30.0
    lease_poll_interval_seconds: float = 0.5
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "calmday"
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    daily_job_hour: int = 6
    daily_job_minute: int = 0
    jobs_run_on_startup: bool = False


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
