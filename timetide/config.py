"""Configuration module centralizing environment access.

A plain Settings object read from environment variables; call
``get_settings(refresh=True)`` after changing the environment in tests.
"""
import os
from typing import Optional


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


class Settings:
    def __init__(self) -> None:
        # Core
        inferred_testing = (
            os.getenv("PYTEST_CURRENT_TEST")
            or os.getenv("ENVIRONMENT") == "testing"
            or os.getenv("TESTING") == "1"
        )
        self.environment: str = "testing" if inferred_testing else os.getenv("ENVIRONMENT", "development")
        self.port: int = _int_env("PORT", 8000)

        # Database
        self.database_url: str = os.getenv("DATABASE_URL") or "sqlite:///./timetide.db"

        # Calendar collaborator
        self.calendar_failure_policy: str = os.getenv("CALENDAR_FAILURE_POLICY", "fail_closed").lower()
        if self.calendar_failure_policy not in ("fail_closed", "fail_open"):
            self.calendar_failure_policy = "fail_closed"
        self.calendar_timeout_seconds: float = _float_env("CALENDAR_TIMEOUT_SECONDS", 10.0)

        # Engine safety caps
        self.max_slots_per_day: int = _int_env("MAX_SLOTS_PER_DAY", 100)
        self.max_days_to_process: int = _int_env("MAX_DAYS_TO_PROCESS", 90)

        # Hosts
        self.default_host_timezone: str = os.getenv("DEFAULT_HOST_TIMEZONE", "UTC")

        # Configuration routes protection
        self.admin_api_key: Optional[str] = os.getenv("ADMIN_API_KEY")


_SETTINGS_CACHE: Optional[Settings] = None


def get_settings(refresh: bool = False) -> Settings:
    """Return a (possibly cached) Settings instance.

    Pass refresh=True (or set env FORCE_SETTINGS_REFRESH=1) in tests after
    modifying environment variables to force re-evaluation.
    """
    global _SETTINGS_CACHE
    if refresh or os.getenv("FORCE_SETTINGS_REFRESH") == "1" or _SETTINGS_CACHE is None:
        _SETTINGS_CACHE = Settings()
    return _SETTINGS_CACHE
