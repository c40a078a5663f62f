"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class WalletConfig(BaseSettings):
    """Wallet ledger service configuration"""

    env: str = "development"

    # Database configuration
    database_url: str = "sqlite:///wallet.db"  # memory://, sqlite:///path, postgresql://...
    database_pool_size: int = 5

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Deadline for one balance mutation, lock wait included
    transaction_timeout_seconds: Optional[float] = 5.0

    # Migration and bootstrap configuration
    auto_migrate: bool = True
    seed_accounts: str = "1:100.00,2:50.00,3:75.00"  # id:balance pairs

    class Config:
        env_prefix = "WALLET_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = WalletConfig()


def get_config() -> WalletConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> WalletConfig:
    """Reload configuration from environment"""
    global config
    config = WalletConfig()
    return config
