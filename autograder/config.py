"""
Configuration management for the grading engine.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every variable is prefixed with ``AUTOGRADER_`` (for example
    ``AUTOGRADER_DATABASE_URL``).
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTOGRADER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Question Store Configuration
    # ==========================================================================
    database_url: str = Field(
        default="sqlite:///./autograder.db",
        description="SQLAlchemy URL of the Question Store database",
    )

    sql_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log",
    )

    # ==========================================================================
    # Grading Configuration
    # ==========================================================================
    default_similarity_threshold: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Similarity needed for full short-answer credit when a question sets none",
    )

    partial_credit_band: float = Field(
        default=0.7,
        gt=0.0,
        lt=1.0,
        description="Fraction of the threshold above which a short answer earns partial credit",
    )

    partial_credit_factor: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Share of the points awarded inside the partial-credit band",
    )

    score_decimal_places: int = Field(
        default=2,
        ge=0,
        le=6,
        description="Decimal places kept when rounding proportional scores",
    )

    # ==========================================================================
    # Logging Configuration
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level used by the CLI",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept log levels in any case."""
        return v.upper() if isinstance(v, str) else v


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
