"""Shared configuration management for the invoicing service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_STORE_BACKEND=redis
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="fleet-invoicing",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Record store configuration
    store_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Record store backend: memory (single process), redis (shared)",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (record store and job queue)",
    )
    store_namespace: str = Field(
        default="invoicing",
        description="Key prefix for every collection kept in Redis",
    )
    store_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every record store call",
        gt=0,
    )
    store_retry_attempts: int = Field(
        default=3,
        description="Attempts for idempotent store reads on transient failures",
        ge=1,
    )
    store_retry_initial_wait: float = Field(
        default=0.5,
        description="Initial backoff (seconds) between store read retries",
        ge=0,
    )
    store_retry_max_wait: float = Field(
        default=5.0,
        description="Maximum backoff (seconds) between store read retries",
        ge=0,
    )
    lock_timeout_seconds: float = Field(
        default=60.0,
        description="Lease of the per company/month generation lock",
        gt=0,
    )

    # Invoicing rules
    vat_rate: Decimal = Field(
        default=Decimal("15"),
        description="VAT rate in percent, assumed to be embedded in order totals",
        ge=0,
    )
    invoice_number_max_attempts: int = Field(
        default=10,
        description="Random draws before falling back to a timestamp invoice number",
        ge=1,
    )
    backfill_concurrency: int = Field(
        default=8,
        description="Concurrent client/company tasks during backfill runs",
        ge=1,
    )

    # Queue configuration (arq)
    queue_enabled: bool = Field(
        default=False,
        description="Run batch jobs through the arq worker instead of inline",
    )
    queue_max_jobs: int = Field(
        default=10,
        description="Maximum concurrent jobs per worker",
    )
    queue_job_timeout: int = Field(
        default=3600,
        description="Job timeout in seconds",
    )
    monthly_close_day: int = Field(
        default=1,
        description="Day of month on which the previous month is invoiced",
        ge=1,
        le=28,
    )
    monthly_close_hour: int = Field(
        default=2,
        description="Hour (UTC) at which the monthly close runs",
        ge=0,
        le=23,
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
