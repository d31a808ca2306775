"""Environment variable validation and engine settings."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class EnvironmentConfigError(Exception):
    """Raised when engine environment variables are malformed."""
    pass


@dataclass(frozen=True)
class EngineSettings:
    """Tunable engine parameters read from the environment."""

    log_level: str = "INFO"
    default_ease_factor: float = 2.5
    trend_window: int = 10
    trend_margin: float = 10.0
    streak_bonus_days: int = 7
    streak_bonus_multiplier: float = 1.1
    weekly_goal_target: int = 10
    branch_min_incorrect_streak: int = 0
    branch_min_correct_streak: int = 0
    badge_catalog_path: Optional[str] = None


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise EnvironmentConfigError(f"{name} must be an integer, got {value!r}") from exc


def get_env_float(name: str, default: float) -> float:
    """Get float value from environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise EnvironmentConfigError(f"{name} must be a number, got {value!r}") from exc


def validate_environment() -> None:
    """Validate engine environment variables.

    Raises EnvironmentConfigError if validation fails.
    """
    level = os.getenv("ADAPTIVE_LOG_LEVEL")
    if level and level.upper() not in _LOG_LEVELS:
        raise EnvironmentConfigError(f"Invalid ADAPTIVE_LOG_LEVEL: {level}")

    positive_ints = {
        "ADAPTIVE_TREND_WINDOW": "Number of graded responses in the trend window",
        "ADAPTIVE_STREAK_BONUS_DAYS": "Streak length that unlocks the XP bonus",
        "ADAPTIVE_WEEKLY_GOAL_TARGET": "Default weekly goal target",
    }
    for var, description in positive_ints.items():
        if get_env_int(var, 1) <= 0:
            raise EnvironmentConfigError(f"{var} ({description}) must be positive")

    for var in ("ADAPTIVE_BRANCH_MIN_INCORRECT_STREAK", "ADAPTIVE_BRANCH_MIN_CORRECT_STREAK"):
        if get_env_int(var, 0) < 0:
            raise EnvironmentConfigError(f"{var} may not be negative")

    if get_env_float("ADAPTIVE_DEFAULT_EASE_FACTOR", 2.5) < 1.3:
        raise EnvironmentConfigError("ADAPTIVE_DEFAULT_EASE_FACTOR must be at least 1.3")
    if get_env_float("ADAPTIVE_STREAK_BONUS_MULTIPLIER", 1.1) < 1.0:
        raise EnvironmentConfigError("ADAPTIVE_STREAK_BONUS_MULTIPLIER must be at least 1.0")
    if get_env_float("ADAPTIVE_TREND_MARGIN", 10.0) < 0:
        raise EnvironmentConfigError("ADAPTIVE_TREND_MARGIN may not be negative")

    optional_vars: Dict[str, str] = {
        "ADAPTIVE_BADGE_CATALOG": "Path to a JSON/YAML badge catalog overriding the defaults",
    }
    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.debug("Optional environment variable not set: %s (%s)", var, description)


@lru_cache(maxsize=1)
def load_settings() -> EngineSettings:
    """Return validated settings; call ``load_settings.cache_clear()`` after env changes."""
    validate_environment()
    return EngineSettings(
        log_level=(os.getenv("ADAPTIVE_LOG_LEVEL") or "INFO").upper(),
        default_ease_factor=get_env_float("ADAPTIVE_DEFAULT_EASE_FACTOR", 2.5),
        trend_window=get_env_int("ADAPTIVE_TREND_WINDOW", 10),
        trend_margin=get_env_float("ADAPTIVE_TREND_MARGIN", 10.0),
        streak_bonus_days=get_env_int("ADAPTIVE_STREAK_BONUS_DAYS", 7),
        streak_bonus_multiplier=get_env_float("ADAPTIVE_STREAK_BONUS_MULTIPLIER", 1.1),
        weekly_goal_target=get_env_int("ADAPTIVE_WEEKLY_GOAL_TARGET", 10),
        branch_min_incorrect_streak=get_env_int("ADAPTIVE_BRANCH_MIN_INCORRECT_STREAK", 0),
        branch_min_correct_streak=get_env_int("ADAPTIVE_BRANCH_MIN_CORRECT_STREAK", 0),
        badge_catalog_path=os.getenv("ADAPTIVE_BADGE_CATALOG") or None,
    )
