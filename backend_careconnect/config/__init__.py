"""
Configuration management for Backend CareConnect.

Loads settings from environment variables and an optional .env file.
Exposes a single source of truth for database, money and worker settings.
"""

from backend_careconnect.config.settings import Settings, get_settings, reset_settings_cache

__all__ = ["Settings", "get_settings", "reset_settings_cache"]
