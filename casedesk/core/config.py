"""
Casedesk Configuration
Pydantic Settings for environment-based configuration.
Single source of truth for jurisdiction, rule-table paths and thresholds.
"""

from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Use .env file for local development, env vars for production.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # App Identity
    # ==========================================================================
    app_name: str = "Casedesk"
    app_version: str = "1.0.0"
    app_description: str = """
## Casedesk - Derived Case Facts

Deadlines, litigation stage guidance, priority scoring and risk flags
computed from a case's extracted facts.

All endpoints are pure computations over the submitted snapshot.
Nothing is stored.
"""
    debug: bool = False
    enable_docs: bool = True

    # ==========================================================================
    # Server
    # ==========================================================================
    host: str = "0.0.0.0"
    port: int = 8000

    # ==========================================================================
    # Calendar & Rule Tables
    # ==========================================================================
    # Holiday table key, e.g. "england-and-wales"
    jurisdiction: str = "england-and-wales"
    # Optional JSON overrides. Empty means the packaged defaults.
    holidays_path: Optional[str] = None
    deadline_rules_path: Optional[str] = None
    scoring_weights_path: Optional[str] = None

    @field_validator("holidays_path", "deadline_rules_path", "scoring_weights_path", mode="before")
    @classmethod
    def blank_path_is_none(cls, v):
        """Treat an empty env var as 'use packaged defaults'."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # ==========================================================================
    # Thresholds
    # ==========================================================================
    at_risk_window_days: int = 3  # working days before due date
    limitation_warning_days: int = 90
    correspondence_gap_days: int = 20  # working days without a reply
    stalled_intake_days: int = 90
    hearing_warning_days: int = 14

    @field_validator(
        "at_risk_window_days",
        "limitation_warning_days",
        "correspondence_gap_days",
        "stalled_intake_days",
        "hearing_warning_days",
    )
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("threshold must be zero or positive")
        return v

    # ==========================================================================
    # Observability
    # ==========================================================================
    log_level: str = "INFO"
    log_json_format: bool = False
    log_file: Optional[str] = None

    # ==========================================================================
    # Deployment
    # ==========================================================================
    cors_origins: str = ""  # Comma-separated list of allowed origins.

    @property
    def cors_origins_list(self) -> list[str]:
        """
        Parse CORS origins into a list with secure defaults.
        - If explicit origins set: use those
        - If empty: restrict to localhost only
        """
        if self.cors_origins:
            if self.cors_origins == "*":
                return ["*"]
            return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

        return [
            "http://localhost:8000",
            "http://127.0.0.1:8000",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Use dependency injection: Depends(get_settings)
    """
    return Settings()
