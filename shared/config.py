"""
Shared configuration management for the Fiscal Tracker client.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FiscalConfig(BaseSettings):
    """Client configuration loaded from the environment (FISCAL_*)."""

    model_config = SettingsConfigDict(
        env_prefix="FISCAL_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend API
    api_base_url: Optional[str] = Field(default=None)
    api_origin: Optional[str] = Field(default=None)
    http_timeout: float = Field(default=10.0)

    # Request cache
    cache_ttl_seconds: float = Field(default=120.0)

    # Session
    session_file: Optional[str] = Field(default=None)

    # Observability
    enable_metrics: bool = Field(default=True)


def get_config(**overrides) -> FiscalConfig:
    """Get client configuration; keyword overrides win over the environment."""
    return FiscalConfig(**overrides)
