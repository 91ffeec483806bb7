"""Application settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from maa_flow.config.paths import default_config_dir, default_state_dir

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "maa-flow"
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=8000, ge=1, le=65535)

    engine_mode: str = "cli"
    maa_bin: str = "maa"
    maa_config_dir: Path = Field(default_factory=default_config_dir)
    maa_state_dir: Path = Field(default_factory=default_state_dir)
    engine_base_url: str = "http://127.0.0.1:3000/api/maa"
    engine_timeout_s: float = Field(default=5.0, ge=0.1)
    realtime_log_lines: int = Field(default=2000, ge=10)

    storage_backend: str = "sqlite"
    sqlite_path: Path = PROJECT_ROOT / "data" / "maa_flow.sqlite3"
    database_url: str = ""

    poll_interval_s: float = Field(default=1.0, ge=0.0)
    poll_backoff_max_s: float = Field(default=8.0, ge=0.0)
    lost_contact_after_s: float = Field(default=120.0, ge=0.0)
    stale_after_s: float = Field(default=300.0, ge=1.0)
    stop_timeout_s: float = Field(default=5.0, ge=0.0)
    stop_grace_s: float = Field(default=3.0, ge=0.0)
    settle_default_s: float = Field(default=2.0, ge=0.0)
    settle_scale: float = Field(default=1.0, ge=0.0)

    schedule_timezone: str = "Asia/Shanghai"
    scheduler_tick_s: float = Field(default=20.0, ge=0.05)
    scheduler_enabled: bool = True

    reference_dir: Path | None = None
    reference_remote_base: str = (
        "https://raw.githubusercontent.com/MaaAssistantArknights/MaaAssistantArknights/dev/resource"
    )
    reference_timeout_s: float = Field(default=10.0, ge=0.5)
    log_retention_mb: float = Field(default=10.0, ge=0.0)

    model_config = SettingsConfigDict(
        env_prefix="MAA_FLOW_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_reference_dir(self) -> Path:
        return self.reference_dir or (self.maa_config_dir / "resource")

    def engine_log_dir(self) -> Path:
        return self.maa_state_dir / "debug"

    def engine_log_path(self) -> Path:
        return self.engine_log_dir() / "asst.log"

    def engine_tasks_dir(self) -> Path:
        return self.maa_config_dir / "tasks"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
