"""Central configuration for the door terminal service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class DoorSettings(BaseModel):
    """Gate, search and check-in timing rules."""
    debounce_ms: int = Field(250, description="Quiet period after the last keystroke before a prefix lookup")
    suggestion_min_digits: int = Field(3, description="Minimum CI digits before suggestions are requested")
    suggestion_limit: int = Field(12, description="Maximum suggestions returned per prefix lookup")
    pin_min_digits: int = Field(4, description="Shortest accepted PIN")
    pin_max_digits: int = Field(8, description="Longest accepted PIN")
    ci_lengths: Tuple[int, ...] = Field((7, 8), description="Accepted CI lengths for exact search")
    checked_in_display_seconds: float = Field(2.0, description="How long a confirmed check-in stays on screen")


class PerformanceSettings(BaseModel):
    """Queue tuning."""
    ui_event_queue_size: int = Field(8, description="Max buffered UI events per subscriber")


class Settings(BaseSettings):
    """Environment-driven settings for the terminal."""

    # Remote store
    store_api_url: str = Field(..., description="PostgREST base URL (e.g. https://xyz.supabase.co)")
    store_api_key: str = Field(..., description="Anon API key sent with every store request")
    store_timeout_seconds: float = Field(10.0, description="Per-request timeout for the remote store")

    # Terminal HTTP Server
    terminal_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    terminal_port: int = Field(5000, description="Port for FastAPI server")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    door: DoorSettings = Field(default_factory=DoorSettings, description="Gate and search rules")
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")

    @field_validator("store_api_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
