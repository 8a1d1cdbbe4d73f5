"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Custody ledger configuration"""
    
    # Ledger limits (fixed for the lifetime of an instance)
    withdraw_limit: int = 100
    bank_cap: int = 1000
    owner: str = "custodian"
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Audit configuration
    audit_enabled: bool = True
    audit_database_path: Optional[str] = None  # If None, audit events stay in memory
    
    # Transfer gateway configuration
    transfer_gateway_url: str = ""  # Empty = in-process recording gateway
    transfer_timeout: float = 2.0
    transfer_api_key: str = ""
    
    class Config:
        env_prefix = "CUSTODY_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
