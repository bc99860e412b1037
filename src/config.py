"""Configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import holidays
from dotenv import load_dotenv

from models import Config

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "pr-pulse"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _parse_bool(name: str, default: str) -> bool:
    value = os.getenv(name, default).lower()
    if value not in {"true", "false"}:
        msg = f"Invalid {name} '{value}'. Must be 'true' or 'false'"
        raise ValueError(msg)
    return value == "true"


def _parse_int(name: str, default: str, minimum: int, maximum: int) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as e:
        msg = f"Invalid {name} '{raw}'. Must be between {minimum} and {maximum}."
        raise ValueError(msg) from e
    if not minimum <= value <= maximum:
        msg = f"Invalid {name} '{raw}'. Must be between {minimum} and {maximum}."
        raise ValueError(msg)
    return value


def load_config() -> Config:
    """
    Load and validate configuration from environment variables.

    Loads from .env file if present, then reads optional environment variables.
    The GitHub token is deliberately not part of the configuration; it is read
    from the secret store.

    Returns:
        Config object with validated configuration values

    Raises:
        ValueError: If an environment variable has an invalid value
    """
    load_dotenv()

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    if log_level not in VALID_LOG_LEVELS:
        msg = (
            f"Invalid LOG_LEVEL '{log_level}'. "
            "Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )
        raise ValueError(msg)

    data_dir = os.getenv("PR_PULSE_DATA_DIR") or str(DEFAULT_DATA_DIR)
    data_dir = str(Path(data_dir).expanduser())

    use_mock_client = _parse_bool("PR_PULSE_USE_MOCK", "false")

    slack_webhook_url = os.getenv("SLACK_WEBHOOK_URL") or None
    if slack_webhook_url and not slack_webhook_url.startswith("https://hooks.slack.com/"):
        msg = (
            "SLACK_WEBHOOK_URL must be a valid Slack webhook URL "
            "(should start with 'https://hooks.slack.com/')."
        )
        raise ValueError(msg)

    # Holidays country configuration for next-business-day snoozes
    # See https://pypi.org/project/holidays/ for full list of supported countries
    holidays_country = os.getenv("HOLIDAYS_COUNTRY", "US").upper()
    try:
        holidays.country_holidays(holidays_country)
    except NotImplementedError as e:
        msg = (
            f"Invalid HOLIDAYS_COUNTRY '{holidays_country}'. "
            "Must be a valid country code supported by the holidays library. "
            "Common codes: US, GB, CA, AU, FR, DE, JP, KR, CN, IN, BR, MX."
        )
        raise ValueError(msg) from e

    page_size = _parse_int("GH_PAGE_SIZE", "20", 1, 100)
    api_timeout = _parse_int("API_TIMEOUT", "30", 1, 300)

    return Config(
        data_dir=data_dir,
        log_level=log_level,
        use_mock_client=use_mock_client,
        slack_webhook_url=slack_webhook_url,
        holidays_country=holidays_country,
        page_size=page_size,
        api_timeout=api_timeout,
    )
