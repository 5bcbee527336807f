"""Unit tests for configuration management."""

import os
from collections.abc import Generator
from decimal import Decimal

import pytest
from pydantic import ValidationError

from services.shared.config import Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.startswith("APP_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings()

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "fleet-invoicing"
    assert settings.service_version == "0.1.0"


def test_store_and_invoicing_defaults(clean_env: None) -> None:
    """Store policy and invoicing rules default to the documented values."""
    settings = Settings()

    assert settings.store_backend == "memory"
    assert settings.redis_url == "redis://localhost:6379/0"
    assert settings.store_namespace == "invoicing"
    assert settings.store_timeout_seconds == 10.0
    assert settings.store_retry_attempts == 3
    assert settings.lock_timeout_seconds == 60.0
    assert settings.vat_rate == Decimal("15")
    assert settings.invoice_number_max_attempts == 10
    assert settings.backfill_concurrency == 8
    assert settings.queue_enabled is False
    assert settings.monthly_close_day == 1


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["APP_ENVIRONMENT"] = "production"
    os.environ["APP_LOG_LEVEL"] = "ERROR"
    os.environ["APP_STORE_BACKEND"] = "redis"
    os.environ["APP_VAT_RATE"] = "5"

    settings = Settings()

    assert settings.environment == "production"
    assert settings.log_level == "ERROR"
    assert settings.store_backend == "redis"
    assert settings.vat_rate == Decimal("5")


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["app_log_level"] = "DEBUG"

    settings = Settings()

    assert settings.log_level == "DEBUG"


def test_unknown_store_backend_rejected(clean_env: None) -> None:
    """Only the memory and redis backends are accepted."""
    with pytest.raises(ValidationError):
        Settings(store_backend="firestore")


def test_monthly_close_day_bounds(clean_env: None) -> None:
    """The close day must exist in every month."""
    with pytest.raises(ValidationError):
        Settings(monthly_close_day=31)


def test_get_settings_factory(clean_env: None) -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service_name == "fleet-invoicing"
