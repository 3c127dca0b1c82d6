from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings

ROOT_DIR = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "PULSE_",
        "extra": "ignore",
    }

    # Endpoint registry (falls back to the built-in set when missing)
    endpoints_path: Path = ROOT_DIR / "endpoints.yaml"

    # Probing
    user_agent: str = "Pulse-Sync-Monitor"
    probe_timeout_seconds: float = 10.0

    # Scheduling: one pass per hour, matching the hour-bucket history
    check_interval_seconds: int = 3600
    scheduler_enabled: bool = True

    # Retention
    retention_days: int = 30

    # Storage backend: "sqlite" | "memory"
    store_backend: str = "sqlite"
    sqlite_path: Path = ROOT_DIR / "data" / "pulse.db"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"

    @property
    def probe_deadline_seconds(self) -> float:
        """Per-probe deadline. A probe must never outlive the interval between passes."""
        return min(self.probe_timeout_seconds, float(self.check_interval_seconds))

    @property
    def retention_ms(self) -> int:
        return self.retention_days * 24 * 60 * 60 * 1000


settings = Settings()
