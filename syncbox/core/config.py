from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "syncbox"
    APP_ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str

    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TASK_ALWAYS_EAGER: bool = False

    # Stable per-install id. When unset, one is generated and persisted in app_settings.
    DEVICE_ID: str | None = None

    # reference | http | none
    SYNC_REMOTE: str = "reference"
    SYNC_BACKEND_URL: str = ""
    SYNC_API_KEY: str | None = None
    SYNC_HTTP_TIMEOUT_S: float = 30.0

    SYNC_BATCH_LIMIT: int = 100
    # halt_on_failure | skip_blocked
    SYNC_DRAIN_POLICY: str = "halt_on_failure"
    SYNC_DRAIN_INTERVAL_S: float = 30.0
    SYNC_FAILED_SWEEP_INTERVAL_S: float = 300.0
    SYNC_MAX_RETRIES: int = 5

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
