"""Typed exceptions for the water bills ledger.

Every failure aborts the whole operation, so callers never see a
partially applied payment or reversal. Each exception carries a stable
``code`` that callers can map to user-facing messages without parsing text.
"""


class LedgerError(Exception):
    """Base class for all ledger errors."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class InvalidAmount(LedgerError):
    """Amount is negative, or not positive where a positive amount is required."""

    code = "INVALID_AMOUNT"


class InsufficientCredit(LedgerError):
    """Requested credit use exceeds the unit's credit balance."""

    code = "INSUFFICIENT_CREDIT"

    def __init__(self, message: str, available_cents: int, requested_cents: int, **details):
        super().__init__(
            message,
            available_cents=available_cents,
            requested_cents=requested_cents,
            **details,
        )
        self.available_cents = available_cents
        self.requested_cents = requested_cents


class NotFound(LedgerError):
    """Unknown bill, period or transaction."""

    code = "NOT_FOUND"


class InvalidPeriod(LedgerError):
    """Malformed fiscal period identifier."""

    code = "INVALID_PERIOD"


class ConcurrentModification(LedgerError):
    """Optimistic lock conflict; the caller should retry the whole call."""

    code = "CONCURRENT_MODIFICATION"


class CacheRebuildFailure(LedgerError):
    """Surgical cache rebuild failed after a mutation was staged."""

    code = "CACHE_REBUILD_FAILURE"


class PaymentFailed(LedgerError):
    """A payment or reversal could not complete and was rolled back."""

    code = "PAYMENT_FAILED"


class LedgerIntegrityError(LedgerError):
    """Stored state does not match what a recorded transaction expects."""

    code = "LEDGER_INTEGRITY"


class ConfigurationError(LedgerError):
    """Missing or invalid billing configuration."""

    code = "CONFIG_ERROR"


__all__ = [
    "LedgerError",
    "InvalidAmount",
    "InsufficientCredit",
    "NotFound",
    "InvalidPeriod",
    "ConcurrentModification",
    "CacheRebuildFailure",
    "PaymentFailed",
    "LedgerIntegrityError",
    "ConfigurationError",
]
