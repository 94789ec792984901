"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

DEFAULTS: Dict[str, str] = {
    "DB_PATH": "data.db",
    "QUESTION_BANK_PATH": os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "system_design_questions.json"),
    "PRACTICE_CATEGORY": "system-design",
}

OPTIONAL_VARS: Dict[str, str] = {
    "EVENTS_WEBHOOK_URL": "Receiver for forwarded practice events",
    "EVENTS_WEBHOOK_TOKEN": "Bearer token sent to the event receiver",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "enabled"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", "disabled"})

def validate_environment() -> None:
    """Apply defaults and validate configuration.

    Raises EnvironmentError if validation fails.
    """
    for var, value in DEFAULTS.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    category = os.environ["PRACTICE_CATEGORY"].strip()
    if not category:
        raise EnvironmentError("PRACTICE_CATEGORY must not be blank")

    webhook = os.getenv("EVENTS_WEBHOOK_URL")
    if webhook and not (webhook.startswith("http://") or webhook.startswith("https://")):
        raise EnvironmentError(f"Invalid URL format for EVENTS_WEBHOOK_URL: {webhook}")

    for var in ("SEED_QUESTIONS_ON_STARTUP",):
        value = os.getenv(var)
        if value is not None and value.strip().lower() not in _TRUE_VALUES | _FALSE_VALUES:
            raise EnvironmentError(f"{var} must be a boolean flag, got '{value}'")

    for var, description in OPTIONAL_VARS.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES
