"""Environment variable validation and management."""

import os
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Nothing is strictly required: storage and session lifetime have
    # defaults and LLM hints are opt-in.
    required_vars: Dict[str, str] = {}

    defaults = {
        "TIER_DB_PATH": os.getenv("TIER_DB_PATH") or "practice.db",
        "SESSION_TTL_SECONDS": os.getenv("SESSION_TTL_SECONDS") or "3600",
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "PRACTICE_HINT_LLM_URL": "Chat-completions endpoint for generated hints",
        "PRACTICE_HINT_MODEL": "Model name sent to the hint endpoint",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    url_vars = {"PRACTICE_HINT_LLM_URL"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    ttl = get_env_int("SESSION_TTL_SECONDS", 3600)
    if ttl <= 0:
        raise EnvironmentError(f"SESSION_TTL_SECONDS must be positive, got {ttl}")

    if get_env_bool("PRACTICE_HINTS_USE_LLM"):
        for var, description in optional_vars.items():
            if not os.getenv(var):
                logger.warning(f"Optional environment variable not set: {var} ({description})")

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}

def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable.

    Raises EnvironmentError when the variable is set but not an integer.
    """
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as exc:
        raise EnvironmentError(f"{name} must be an integer, got {value!r}") from exc

def get_env_float(name: str, default: float) -> float:
    """Get float value from environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as exc:
        raise EnvironmentError(f"{name} must be a number, got {value!r}") from exc

def get_env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()

def get_env_mapping(name: str) -> Dict[str, str]:
    """Parse ``key:value`` pairs separated by commas, e.g. ``tok-1:alice,tok-2:bob``.

    Raises EnvironmentError on a pair without both parts.
    """
    value = os.getenv(name)
    if value is None or not value.strip():
        return {}
    mapping: Dict[str, str] = {}
    for pair in value.split(","):
        if not pair.strip():
            continue
        key, sep, item = pair.partition(":")
        if not sep or not key.strip() or not item.strip():
            raise EnvironmentError(f"{name} entries must look like key:value, got {pair.strip()!r}")
        mapping[key.strip()] = item.strip()
    return mapping
