"""
Configuration Management

This module handles all application configuration using environment variables.
Values from a local .env file are loaded first.
"""

import os
from functools import lru_cache
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _int_setting(name: str, default: str) -> int:
    """
    Read an integer environment variable.

    Inline comments ("5000  # five seconds") are stripped before parsing.

    Raises:
        ValueError: If the value is not a number
    """
    raw = os.getenv(name, default)
    try:
        return int(raw.split('#')[0].strip())
    except ValueError as e:
        raise ValueError(f"Invalid {name} value: '{raw}'. Must be a number without comments.") from e


class Settings:
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    """

    def __init__(self):
        # Database Configuration
        self.database_url: str = os.getenv('DATABASE_URL', 'sqlite:///bingo.db')

        # Application Settings
        self.debug: bool = os.getenv('DEBUG', 'false').lower() == 'true'
        self.log_level: str = os.getenv('LOG_LEVEL', 'INFO')
        self.environment: str = os.getenv('ENVIRONMENT', 'development')

        # Realtime server
        self.host: str = os.getenv('HOST', '0.0.0.0')
        self.port: int = _int_setting('PORT', '3000')
        origins = os.getenv('CORS_ALLOWED_ORIGINS', '*')
        self.cors_allowed_origins: List[str] = [o.strip() for o in origins.split(',') if o.strip()]

        # Game Configuration
        self.default_board: str = os.getenv('DEFAULT_BOARD', 'bingo90')
        self.max_players_per_session: int = _int_setting('MAX_PLAYERS_PER_SESSION', '200')

        # Auto caller bounds (milliseconds)
        self.auto_call_default_interval_ms: int = _int_setting('AUTO_CALL_DEFAULT_INTERVAL_MS', '5000')
        self.auto_call_min_interval_ms: int = _int_setting('AUTO_CALL_MIN_INTERVAL_MS', '2000')
        self.auto_call_max_interval_ms: int = _int_setting('AUTO_CALL_MAX_INTERVAL_MS', '30000')
        if self.auto_call_min_interval_ms > self.auto_call_max_interval_ms:
            raise ValueError("AUTO_CALL_MIN_INTERVAL_MS must not exceed AUTO_CALL_MAX_INTERVAL_MS")

        # Cleanup
        self.disconnect_grace_minutes: int = _int_setting('DISCONNECT_GRACE_MINUTES', '30')
        self.cleanup_interval_seconds: int = _int_setting('CLEANUP_INTERVAL_SECONDS', '60')
        self.finished_session_ttl_minutes: int = _int_setting('FINISHED_SESSION_TTL_MINUTES', '60')
        self.finished_session_retention_days: int = _int_setting('FINISHED_SESSION_RETENTION_DAYS', '7')


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings with caching.

    Uses LRU cache to avoid reloading settings on every call.
    Cache is cleared when the process restarts.

    Returns:
        Settings: Application configuration settings
    """
    return Settings()


def is_development() -> bool:
    """
    Check if running in development environment.

    Returns:
        bool: True if in development, False otherwise
    """
    settings = get_settings()
    return settings.environment.lower() in ["development", "dev", "local"]


def is_production() -> bool:
    """
    Check if running in production environment.

    Returns:
        bool: True if in production, False otherwise
    """
    settings = get_settings()
    return settings.environment.lower() in ["production", "prod"]
