"""
Shared configuration management for the Clinic API.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    app_env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Key-value store; no host means caching is disabled
    redis_host: Optional[str] = Field(default=None)
    redis_port: int = Field(default=6379)
    redis_password: Optional[str] = Field(default=None)
    redis_db: int = Field(default=0)

    # Store client resilience
    store_retry_attempts: int = Field(default=3, ge=0)
    store_retry_base_delay: float = Field(default=0.05, gt=0)
    store_retry_max_delay: float = Field(default=2.0, gt=0)
    store_socket_timeout: float = Field(default=1.0, gt=0)
    store_scan_batch_size: int = Field(default=500, ge=1)

    # Response cache
    cache_ttl_seconds: int = Field(default=300, ge=1)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
