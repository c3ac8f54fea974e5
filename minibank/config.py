"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MiniBankConfig(BaseSettings):
    """MiniBank ledger service configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///minibank.db"  # memory:// for a throwaway store
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_title: str = "MiniBank API"
    
    # Security configuration
    jwt_secret: str = "change-me-in-production-minibank-signing-key"
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"
    password_min_length: int = 8
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr
    
    # Ledger configuration
    account_number_max_attempts: int = 5
    
    class Config:
        env_prefix = "MINIBANK_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = MiniBankConfig()


def get_config() -> MiniBankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MiniBankConfig:
    """Reload configuration from environment"""
    global config
    config = MiniBankConfig()
    return config
