"""
Feature Flags and Settings

Centralized configuration for the engine.
All values are loaded from environment variables.
"""
import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_float_env(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return float(value)


def get_list_env(key: str) -> List[str]:
    return [item.strip() for item in os.getenv(key, "").split(",") if item.strip()]


class FeatureFlags:
    """
    Feature flags for the application.

    To add a new feature flag:
    1. Add it here as a class property
    2. Load it from environment variable
    3. Use it in your code
    """

    # Playoff: play a match for third place between the semifinal losers
    FEATURE_THIRD_PLACE_MATCH: bool = get_bool_env('FEATURE_THIRD_PLACE_MATCH', True)

    # Start a tournament once it is full, if the organizer asked for it
    FEATURE_AUTO_START: bool = get_bool_env('FEATURE_AUTO_START', True)

    # League: announce final standings to every team when all matches are played
    FEATURE_COMPLETION_ANNOUNCEMENTS: bool = get_bool_env('FEATURE_COMPLETION_ANNOUNCEMENTS', True)

    @classmethod
    def is_enabled(cls, flag_name: str) -> bool:
        """Check if a feature flag is enabled by name."""
        return getattr(cls, flag_name, False)

    @classmethod
    def get_all_flags(cls) -> dict:
        """Get all feature flags as a dictionary."""
        return {
            key: value
            for key, value in cls.__dict__.items()
            if key.startswith('FEATURE_') and isinstance(value, bool)
        }


class Settings:
    """Non-boolean runtime settings."""

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    CORS_ORIGINS: List[str] = get_list_env("CORS_ORIGINS")
    NOTIFY_WEBHOOK_URL: str = os.getenv("NOTIFY_WEBHOOK_URL", "")
    NOTIFY_WEBHOOK_TIMEOUT: float = get_float_env("NOTIFY_WEBHOOK_TIMEOUT", 10.0)

    # Delay before the post-commit league completion check re-reads the tournament
    COMPLETION_CHECK_DELAY_SECONDS: float = get_float_env("COMPLETION_CHECK_DELAY_SECONDS", 0.5)


# Singleton instances for easy importing
feature_flags = FeatureFlags()
settings = Settings()
