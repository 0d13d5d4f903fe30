"""
Shared configuration management for the Payments Access Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PAYMENTS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # QPay gateway
    qpay_base_url: str = Field(default="https://sandbox-quickqr.qpay.mn")
    qpay_timeout_seconds: float = Field(default=30.0, gt=0)
    qpay_token_max_ttl_seconds: int = Field(default=3600, gt=0)
    qpay_token_min_ttl_seconds: int = Field(default=60, gt=0)
    qpay_default_expires_in: int = Field(default=3600, gt=0)
    qpay_tenants_file: Optional[str] = Field(default=None)

    # Security
    master_key: Optional[str] = Field(default=None)
    admin_api_key: Optional[str] = Field(default=None)

    # Docs
    enable_docs: bool = Field(default=True)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
