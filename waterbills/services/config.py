"""Configuration loading for the water bills ledger.

Loads settings from .env file and environment variables with sensible defaults.
Validates billing parameters and provides clear error messages.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

from waterbills.services.errors import ConfigurationError


@dataclass(frozen=True)
class PenaltyConfig:
    """Overdue penalty parameters for water bills."""

    monthly_rate_percent: Decimal = Decimal("5")
    """Penalty rate per overdue month, in percent of the unpaid base"""

    grace_days: int = 10
    """Days after the due date before a penalty applies"""

    compounding: bool = False
    """Apply the rate to principal plus already accrued penalty each month"""


@dataclass(frozen=True)
class LedgerConfig:
    """Configuration for the ledger engine."""

    database_url: str = "sqlite:///./waterbills.db"
    """SQLAlchemy database URL (default: local SQLite)"""

    log_file: str = "logs/ledger.log"
    """Path to log file (default: logs/ledger.log)"""

    log_level: str = "INFO"
    """Root log level name (DEBUG, INFO, WARNING, ERROR)"""

    locale: str = "en_US"
    """Babel locale used when formatting amounts in descriptions"""

    currency: str = "USD"
    """ISO 4217 currency code; the ledger is single-currency"""

    fiscal_year_start_month: int = 7
    """Calendar month (1-12) in which the fiscal year starts (default: July)"""

    penalty: PenaltyConfig = field(default_factory=PenaltyConfig)
    """Penalty calculation parameters"""


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def validate_penalty_config(config: PenaltyConfig) -> PenaltyConfig:
    """Reject penalty parameters the calculator cannot use.

    Raises:
        ConfigurationError: If rate or grace days are out of range
    """
    errors = []
    if config.monthly_rate_percent < 0:
        errors.append("monthly_rate_percent must not be negative")
    if config.grace_days < 0:
        errors.append("grace_days must not be negative")
    if errors:
        raise ConfigurationError(f"Invalid penalty configuration: {', '.join(errors)}")
    return config


def load_config(env_file: str | None = ".env") -> LedgerConfig:
    """
    Load configuration from .env file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (DATABASE_URL, PENALTY_RATE_PERCENT, etc.)
    2. .env file in project root
    3. Default values

    Args:
        env_file: Path of the .env file to load, or None to skip it

    Returns:
        LedgerConfig with all settings

    Raises:
        ConfigurationError: If a value is present but invalid

    Example:
        Create .env file:
        ```
        DATABASE_URL=postgresql://ledger@localhost/waterbills
        PENALTY_RATE_PERCENT=5
        PENALTY_GRACE_DAYS=10
        ```

        Then call:
        ```
        config = load_config()
        ```
    """
    if env_file:
        env_path = Path(env_file)
        if env_path.exists():
            load_dotenv(env_path)

    database_url = os.getenv("DATABASE_URL", "sqlite:///./waterbills.db")
    log_file = os.getenv("LOG_FILE", "logs/ledger.log")
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    locale = os.getenv("LOCALE", "en_US")
    currency = os.getenv("CURRENCY", "USD").upper()

    start_month_raw = os.getenv("FISCAL_YEAR_START_MONTH", "7")
    try:
        fiscal_year_start_month = int(start_month_raw)
    except ValueError as e:
        raise ConfigurationError(
            f"FISCAL_YEAR_START_MONTH must be an integer, got '{start_month_raw}'"
        ) from e
    if not 1 <= fiscal_year_start_month <= 12:
        raise ConfigurationError(
            f"FISCAL_YEAR_START_MONTH must be between 1 and 12, got {fiscal_year_start_month}"
        )

    rate_raw = os.getenv("PENALTY_RATE_PERCENT", "5")
    try:
        rate = Decimal(rate_raw)
    except InvalidOperation as e:
        raise ConfigurationError(f"PENALTY_RATE_PERCENT is not a number: '{rate_raw}'") from e

    grace_raw = os.getenv("PENALTY_GRACE_DAYS", "10")
    try:
        grace_days = int(grace_raw)
    except ValueError as e:
        raise ConfigurationError(f"PENALTY_GRACE_DAYS must be an integer, got '{grace_raw}'") from e

    penalty = validate_penalty_config(
        PenaltyConfig(
            monthly_rate_percent=rate,
            grace_days=grace_days,
            compounding=_parse_bool(os.getenv("PENALTY_COMPOUNDING", "false")),
        )
    )

    return LedgerConfig(
        database_url=database_url,
        log_file=log_file,
        log_level=log_level,
        locale=locale,
        currency=currency,
        fiscal_year_start_month=fiscal_year_start_month,
        penalty=penalty,
    )


__all__ = ["LedgerConfig", "PenaltyConfig", "load_config", "validate_penalty_config"]
