"""Centralized configuration for radaccess.

Uses Pydantic BaseSettings with environment variable loading and validation.
All RA_* environment variables are validated at import time.
"""

from __future__ import annotations

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage
    db_path: str = Field(default="radaccess.db", description="SQLite account store path")
    db_timeout: float = Field(
        default=30.0, gt=0, description="Seconds to wait on a locked SQLite database"
    )

    # Logging
    log_format: str = Field(default="text", description="Log format: text or json")
    log_level: str = Field(default="INFO", description="Python log level")

    model_config = {"env_prefix": "RA_", "case_sensitive": False, "extra": "ignore"}

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"RA_LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if not isinstance(getattr(logging, v, None), int):
            msg = f"RA_LOG_LEVEL must be a valid Python log level, got '{v}'"
            raise ValueError(msg)
        return v


# Singleton, validated at import time.
settings = Settings()
