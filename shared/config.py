"""
Shared configuration management for the Points service.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RULES_PATH = str(
    Path(__file__).resolve().parent.parent / "service_points" / "app" / "rules" / "default_rules.json"
)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="POINTS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Observability
    metrics_enabled: bool = Field(default=True)
    metrics_port: Optional[int] = Field(default=None)


class PointsConfig(BaseConfig):
    """Points engine configuration."""

    service_name: str = "points"

    # Rule source
    rules_path: str = Field(default=DEFAULT_RULES_PATH)

    # Cap tracker
    cap_lock_shards: int = Field(default=64, ge=1)

    # Applied to capped rules that declare no reset interval of their own
    default_reset_interval_days: Optional[int] = Field(default=None, ge=1)


def get_config(**overrides) -> PointsConfig:
    """Get configuration for the points service."""
    return PointsConfig(**overrides)
