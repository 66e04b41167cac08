"""Currency formatting for ledger descriptions and credit history notes.

Amounts are stored as integer cents; this module is the only place that
turns them into display strings. Uses babel so the same code serves any
locale configured through LedgerConfig.

Example:
    >>> format_cents(440000)
    '$4,400.00'
"""

import logging
from decimal import Decimal

from babel import Locale, UnknownLocaleError
from babel.numbers import format_currency as babel_format_currency

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en_US"
DEFAULT_CURRENCY = "USD"


def resolve_locale(locale_str: str | None) -> str:
    """Validate a locale string, falling back to the default.

    Args:
        locale_str: Locale such as 'en_US' or 'es_MX'

    Returns:
        A locale babel can parse
    """
    if not locale_str:
        return DEFAULT_LOCALE
    try:
        Locale.parse(locale_str)
        return locale_str
    except (UnknownLocaleError, ValueError) as e:
        logger.warning(f"Invalid locale '{locale_str}': {e}. Falling back to '{DEFAULT_LOCALE}'")
        return DEFAULT_LOCALE


def cents_to_decimal(cents: int) -> Decimal:
    """Convert integer cents to a two-place Decimal amount."""
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def format_cents(
    cents: int,
    locale: str | None = DEFAULT_LOCALE,
    currency: str = DEFAULT_CURRENCY,
) -> str:
    """Format an amount in cents as a currency string.

    Args:
        cents: Amount in cents (may be negative)
        locale: Babel locale
        currency: ISO 4217 currency code

    Returns:
        Formatted currency string (e.g., '$4,400.00')
    """
    return babel_format_currency(cents_to_decimal(cents), currency, locale=resolve_locale(locale))


__all__ = ["cents_to_decimal", "format_cents", "resolve_locale"]
