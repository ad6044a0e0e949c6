"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class BankingConfig(BaseSettings):
    """Personal banking core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="BANKING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    database_url: str = "sqlite:///personal_banking.db"  # or memory://

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    owner_header: str = "X-Owner-Id"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    max_conflict_retries: int = 3
    lock_timeout_seconds: Optional[float] = 10.0  # None waits forever
    default_history_limit: int = 10  # Dashboard shows the last 10
    currency_symbol: str = "₹"
    opening_balance_memo: str = "Opening balance"

    # Feature flags
    enable_events: bool = True


# Global configuration instance
config = BankingConfig()


def get_config() -> BankingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankingConfig:
    """Reload configuration from environment"""
    global config
    config = BankingConfig()
    return config
