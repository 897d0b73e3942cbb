"""Configuration management using Pydantic Settings."""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ScoringSettings(BaseSettings):
    """Confidence-scoring constants shared by all engines.

    These are tunable heuristics, not derived statistics.  Every value can
    be overridden with an ``EVSYN_CONFIDENCE_<NAME>`` environment variable.
    """

    model_config = SettingsConfigDict(
        env_prefix="EVSYN_CONFIDENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    base: float = Field(0.7, ge=0.0, le=1.0, description="Starting confidence for every assessment")
    minor_penalty: float = Field(0.1, ge=0.0, le=1.0)
    major_penalty: float = Field(0.2, ge=0.0, le=1.0)
    severe_penalty: float = Field(0.3, ge=0.0, le=1.0)
    floor: float = Field(0.1, ge=0.0, le=1.0)
    ceiling: float = Field(0.9, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScoringSettings":
        if self.floor > self.ceiling:
            raise ValueError("confidence floor must not exceed ceiling")
        return self


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="EVSYN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field("INFO")
    log_format: str = Field("json", pattern="^(json|text)$")

    # Publication bias: significance level for Egger's and Begg's tests
    bias_alpha: float = Field(0.10, gt=0.0, lt=1.0)

    # Incomplete beta evaluation used by the t-distribution CDF
    t_cdf_method: Literal["continued_fraction", "simple"] = Field(
        "continued_fraction",
        description="'continued_fraction' (accurate) or 'simple' (closed-form approximation)",
    )

    scoring: ScoringSettings = Field(default_factory=ScoringSettings)


# Instantiate global settings
settings = Settings()
