"""
Configuration settings for the study planner service.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STATE_DIR = Path.home() / ".study_planner"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_STATE_DIR / 'state.db'}",
        description="SQLAlchemy connection string for the per-user state table",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default="logs/study_planner.log",
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # API Server
    # ========================================
    api_host: str = Field(
        default="127.0.0.1",
        description="API server host",
    )
    api_port: int = Field(
        default=8100,
        description="API server port",
    )
    default_user_id: str = Field(
        default="default-user",
        description="User key used when a request carries neither X-User-Id nor userId",
    )

    # ========================================
    # Plan Generation
    # ========================================
    plan_generator_url: str | None = Field(
        default=None,
        description="Base URL of the remote plan generator (None = fallback plans only)",
    )
    plan_generator_timeout_ms: int = Field(
        default=30000,
        description="Request timeout for the remote plan generator",
    )
    plan_generator_retry_attempts: int = Field(
        default=3,
        description="Attempts before the remote plan generator is considered failed",
    )

    # ─── Fallback plan ───────────────────────────────────────────────────────
    fallback_plan_max_tasks: int = Field(
        default=4,
        description="Topics taken from the review queue when building a fallback plan",
    )
    fallback_task_minutes: int = Field(
        default=45,
        description="Estimated minutes for each fallback review task",
    )
    fallback_task_priority: int = Field(
        default=4,
        ge=1,
        le=5,
        description="Priority assigned to each fallback review task",
    )

    def has_plan_generator(self) -> bool:
        """Check if a remote plan generator is configured."""
        return bool(self.plan_generator_url)

    def get_fallback_config(self) -> dict[str, int]:
        """Get fallback plan configuration as a dictionary."""
        return {
            "max_tasks": self.fallback_plan_max_tasks,
            "task_minutes": self.fallback_task_minutes,
            "task_priority": self.fallback_task_priority,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
