"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")
    log_dir: Optional[Path] = Field(default=None)

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Candidate window
    date_window_days: int = Field(default=10, ge=0)
    amount_tolerance_cents: int = Field(default=1, ge=0)
    strict_sign_match: bool = Field(default=False)

    # Scoring weights
    weight_amount: float = Field(default=0.60, ge=0.0, le=1.0)
    weight_date: float = Field(default=0.25, ge=0.0, le=1.0)
    weight_description: float = Field(default=0.15, ge=0.0, le=1.0)
    token_fuzzy_ratio: int = Field(default=85, ge=0, le=100)

    # Decision thresholds
    review_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    auto_match_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    tie_margin: float = Field(default=0.05, ge=0.0, le=1.0)

    # Execution
    scoring_workers: int = Field(default=1, ge=1)

    # Reporting
    aging_alert_days: int = Field(default=14, ge=0)
    default_list_limit: int = Field(default=50, ge=1)
    max_list_limit: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if self.review_threshold > self.auto_match_threshold:
            raise ValueError("review_threshold must not exceed auto_match_threshold")
        if self.default_list_limit > self.max_list_limit:
            raise ValueError("default_list_limit must not exceed max_list_limit")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
