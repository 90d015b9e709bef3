"""Configuration loader.

Reads environment variables and `.env` to configure the service.
"""

from __future__ import annotations

import os
from typing import List, Optional
from pathlib import Path

from dotenv import load_dotenv

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


def parse_drug_list(raw: Optional[str]) -> List[str]:
    """Split a comma-separated drug list, trimming names and dropping blanks."""
    return [s.strip() for s in (raw or "").split(",") if s.strip()]


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid.

    Carries every violation found, not only the first one.
    """

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


# ---- Telegram ----------------------------------------------------------------

TELEGRAM_BOT_TOKEN: Optional[str] = _get_env("TELEGRAM_BOT_TOKEN")

TELEGRAM_API_URL: str = _get_env("TELEGRAM_API_URL", "https://api.telegram.org")

# Long-poll timeout for getUpdates (seconds).
TELEGRAM_POLL_TIMEOUT_SECONDS: int = _parse_int(_get_env("TELEGRAM_POLL_TIMEOUT_SECONDS", "30"), 30)

# ---- Drugs & schedule --------------------------------------------------------

DRUGS_TO_CHECK_RAW: Optional[str] = _get_env("DRUGS_TO_CHECK")
DRUGS_TO_CHECK: List[str] = parse_drug_list(DRUGS_TO_CHECK_RAW)

# Standard crontab expression, optionally with a leading seconds field.
CRON_SCHEDULE: Optional[str] = _get_env("CRON_SCHEDULE")

# IANA zone name for the schedule. Blank means the host's local zone.
CRON_TIMEZONE: Optional[str] = _get_env("CRON_TIMEZONE") or None

# Delay before the single retry wave for drugs whose query failed.
RETRY_DELAY_SECONDS: float = _parse_float(_get_env("RETRY_DELAY_SECONDS", "60"), 60.0)

# ---- Availability source -----------------------------------------------------

PHARMACY_SEARCH_URL: str = _get_env(
    "PHARMACY_SEARCH_URL",
    "https://gorzdrav.spb.ru/_api/api/v2/medication/pharmacies/search",
)

# Public page linked from every notification.
PHARMACY_REFERENCE_URL: str = _get_env(
    "PHARMACY_REFERENCE_URL",
    "https://gorzdrav.spb.ru/pharm-drug-search?tab=lgot",
)

REQUEST_TIMEOUT_SECONDS: float = _parse_float(_get_env("REQUEST_TIMEOUT_SECONDS", "30"), 30.0)

# ---- Storage & logging -------------------------------------------------------

# Path to SQLite database.
SQLITE_DB_PATH: str = _get_env("SQLITE_DB_PATH", "subscribers.db")

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO")


# ---- Validation --------------------------------------------------------------

def collect_errors() -> List[str]:
    """Return every configuration violation (empty list when valid)."""
    from .scheduling import build_cron_trigger

    errors: List[str] = []
    if not TELEGRAM_BOT_TOKEN:
        errors.append("TELEGRAM_BOT_TOKEN is not set")
    if not DRUGS_TO_CHECK:
        errors.append("DRUGS_TO_CHECK is not set")
    if not CRON_SCHEDULE:
        errors.append("CRON_SCHEDULE is not set")
    else:
        try:
            build_cron_trigger(CRON_SCHEDULE, timezone=CRON_TIMEZONE)
        except (ValueError, LookupError) as e:
            # unknown zone names surface as KeyError subclasses
            errors.append(f'CRON_SCHEDULE "{CRON_SCHEDULE}" is not valid: {e}')
    return errors


def validate() -> None:
    """Validate required configuration parameters."""
    errors = collect_errors()
    if errors:
        raise ConfigError(errors)


__all__ = [
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_API_URL",
    "TELEGRAM_POLL_TIMEOUT_SECONDS",
    "DRUGS_TO_CHECK",
    "CRON_SCHEDULE",
    "CRON_TIMEZONE",
    "RETRY_DELAY_SECONDS",
    "PHARMACY_SEARCH_URL",
    "PHARMACY_REFERENCE_URL",
    "REQUEST_TIMEOUT_SECONDS",
    "SQLITE_DB_PATH",
    "LOG_LEVEL",
    # Helpers
    "ConfigError",
    "collect_errors",
    "parse_drug_list",
    "validate",
]
