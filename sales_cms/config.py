"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class SalesCMSConfig(BaseSettings):
    """Sales case management configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "sales_cms.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_workers: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    base_currency: str = "MXN"
    default_reservation_amount: str = "50000.00"
    default_final_payment_pct: str = "10"
    down_payment_offset_days: int = 30
    monthly_start_offset_months: int = 2
    final_payment_offset_months: int = 3

    # Case identifiers (MANA88-AK-0001)
    case_id_prefix: str = "MANA88-AK-"
    case_id_width: int = 4

    # Concurrency
    allocation_max_retries: int = 3

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "SALES_CMS_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = SalesCMSConfig()


def get_config() -> SalesCMSConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SalesCMSConfig:
    """Reload configuration from environment"""
    global config
    config = SalesCMSConfig()
    return config
