"""PulseSync — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Remote Store ──
    remote_base_url: str = "http://localhost:3000/api"
    remote_api_token: Optional[str] = None
    remote_timeout_seconds: float = 15.0

    # ── Upload ──
    upload_batch_size: int = 500
    upload_batch_delay_seconds: float = 0.5  # Pause between batches (remote rate limit)
    upload_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0

    # ── Database ──
    database_url: str = ""

    # ── Calendar / Retention ──
    timezone: str = "Asia/Seoul"
    retention_days: int = 14  # Shared by day merge and rollover scheduler
    rollover_check_seconds: int = 60

    # ── Sync ──
    sync_stale_minutes: int = 5
    sync_count_drift: int = 0
    sync_reentry_policy: str = "join"  # join | reject
    sync_interval_minutes: int = 10
    default_merge_mode: str = "union"  # union | overwrite

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True

    @property
    def effective_database_url(self) -> str:
        """Return the configured DB URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/pulsesync.db"
        return "sqlite:///./pulsesync.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
