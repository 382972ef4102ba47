from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./microgrid_metrics.db"
    create_tables_on_startup: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8030
    log_level: str = "INFO"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # Sample store
    clock_skew_seconds: int = 300  # Readings further ahead of "now" are rejected
    retention_days: int = 400
    ingest_batch_size: int = 500

    # Dashboard
    snapshot_lookback_hours: int = 24
    grid_tariff_per_kwh: float = 1.2
    co2_factor_kg_per_kwh: float = 0.7  # kg CO2 avoided per kWh of solar

    # Background jobs
    scheduler_enabled: bool = True
    reconcile_interval_minutes: int = 5
    compaction_hour: int = 3
    site_timezone: Optional[str] = None  # Schedule timezone, UTC when unset

    class Config:
        env_file = ".env"
        env_prefix = "MICROGRID_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
