# app/core/config.py
from __future__ import annotations

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_ROOT = Path(__file__).resolve().parents[2]
ENV_PATH = BACKEND_ROOT / ".env"


class Settings(BaseSettings):
    env: str = "dev"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./territoires.db"

    # Scheduler / jobs
    # DISABLE_SCHEDULER=true para evitar jobs en startup.
    # Los batch enviados quedan pending hasta que un proceso externo
    # llame BatchOrchestrator.process_pending().
    disable_scheduler: bool = False
    seed_demo: bool = False

    # Batch matching
    batch_max_items: int = 1000
    batch_ttl_hours: int = 24
    batch_concurrency: int = 4
    batch_items_per_second: int = 50
    batch_poll_seconds: int = 10
    batch_stale_minutes: int = 15
    batch_cleanup_minutes: int = 60
    batch_retry_after_seconds: int = 5
    max_active_batches_per_client: int = 5

    # Cache (REDIS_URL vacío -> cache en memoria)
    redis_url: str | None = None
    cache_ttl_seconds: int = 60 * 60 * 24

    # Rate limiting
    rate_limit_requests: int = 500
    rate_limit_window_seconds: int = 60

    public_base_url: str | None = None
    webhook_timeout_seconds: int = 10

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH) if ENV_PATH.exists() else None,
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
