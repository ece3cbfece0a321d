"""
Configuration settings for the review engine.

Uses Pydantic Settings for environment variable management with .env file support.
Scheduler constants are nested: override one with SCHEDULER__<FIELD>, e.g.

    SCHEDULER__MAX_INTERVAL=3650
    SCHEDULER__LEARNING_STEPS=[1, 10, 60]
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.review.config import SchedulerConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Storage
    # ========================================
    state_db_path: Path = Field(
        default=Path.home() / ".review-engine" / "state.db",
        description="SQLite database holding cards, mistakes and the review log",
    )

    # ========================================
    # Sessions
    # ========================================
    default_session_size: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Session size when none is given",
    )
    default_incorrect_ratio: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Share of a session reserved for recent mistakes",
    )

    # ========================================
    # Scheduler
    # ========================================
    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig,
        description="Scoring, memory and scheduling constants",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
