"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MerchPlanningConfig(BaseSettings):
    """Approval workflow service configuration"""

    # Database configuration
    database_url: str = "sqlite:///merch_planning.db"  # "memory" for in-process storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # SLA monitoring
    sla_warning_hours: float = 4.0
    sla_scan_interval_seconds: int = 300  # 0 disables the background scanner
    sla_warning_notifications: bool = True

    # Notification sink
    notification_webhook_url: str = ""  # Empty = store in-app notifications
    notification_webhook_timeout: float = 10.0

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "MERCH_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = MerchPlanningConfig()


def get_config() -> MerchPlanningConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MerchPlanningConfig:
    """Reload configuration from environment"""
    global config
    config = MerchPlanningConfig()
    return config
