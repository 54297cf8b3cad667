"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
Components never read this module directly; the engine builder passes values in.
"""

from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings


class CreditCoreConfig(BaseSettings):
    """Credit core engine configuration"""

    # Database configuration
    database_url: str = "sqlite:///credit_core.db"  # or "memory://"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Business rules configuration
    max_operation_amount: Decimal = Decimal("1000000000.00")
    max_credit_amount: Decimal = Decimal("100000000.00")
    max_term_months: int = 360

    # Key rate provider (central bank SOAP service)
    rate_provider_url: str = "https://www.cbr.ru/DailyInfoWebServ/DailyInfo.asmx"
    rate_provider_timeout: float = 30.0
    rate_provider_enabled: bool = True
    fallback_annual_rate: Decimal = Decimal("16.0")  # Used when the provider is down
    bank_margin: Decimal = Decimal("5.0")

    # Overdue payment scheduler
    scheduler_interval_seconds: float = 12 * 60 * 60
    scheduler_penalty_rate: Decimal = Decimal("0.10")  # Fraction of the scheduled payment
    shutdown_timeout_seconds: float = 30.0

    # Notifications
    notification_webhook_url: Optional[str] = None  # If None, notifications are logged
    notification_timeout: float = 10.0

    class Config:
        env_prefix = "CREDIT_CORE_"
        env_file = ".env"
        case_sensitive = False


_config: Optional[CreditCoreConfig] = None


def get_config() -> CreditCoreConfig:
    """Get configuration instance, loading it from the environment on first use"""
    global _config
    if _config is None:
        _config = CreditCoreConfig()
    return _config


def reload_config() -> CreditCoreConfig:
    """Reload configuration from environment"""
    global _config
    _config = CreditCoreConfig()
    return _config
