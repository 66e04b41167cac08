"""Overdue penalty calculation and periodic penalty assessment.

Business rule: a bill falls due on its due date; after the grace period a
penalty of the configured monthly rate applies to the unpaid base charge for
every month (or part month) that has started since the grace period ended.

calculate_penalty() is the only implementation of that formula. Penalty
assessment, payment recording, reversal and the aggregation cache all go
through it, via assessed_penalty() and display_penalty().
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

from waterbills.models.bill import Bill, BillStatus
from waterbills.services.config import PenaltyConfig
from waterbills.services.fiscal_calendar import months_between

logger = logging.getLogger(__name__)


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def months_overdue(due_date: date, as_of: date | datetime, grace_days: int) -> int:
    """Penalty months elapsed since the grace period ended (0 while in grace).

    Months are counted by calendar month, with a minimum of one once the
    grace period is over.

    Example:
        due 2025-07-01, grace 10: as_of 2025-07-11 => 0, 2025-07-12 => 1,
        2025-08-31 => 1, 2025-09-01 => 2
    """
    as_of_day = _as_date(as_of)
    grace_end = due_date + timedelta(days=grace_days)
    if as_of_day <= grace_end:
        return 0
    return max(1, months_between(grace_end, as_of_day))


def penalty_for_principal(principal_cents: int, months: int, config: PenaltyConfig) -> int:
    """Penalty on a principal for a number of overdue months, rounded half-up."""
    if principal_cents <= 0 or months <= 0:
        return 0

    rate = Decimal(config.monthly_rate_percent) / Decimal(100)
    principal = Decimal(principal_cents)

    if config.compounding:
        running = principal
        for _ in range(months):
            running += running * rate
        penalty = running - principal
    else:
        penalty = principal * rate * months

    return int(penalty.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_penalty(bill: Bill, as_of: date | datetime, config: PenaltyConfig) -> int:
    """Penalty in cents owed on a bill as of a date.

    The principal is the remaining unpaid base, so a partial payment of the
    base lowers the penalty from then on.
    """
    months = months_overdue(bill.due_date, as_of, config.grace_days)
    return penalty_for_principal(bill.unpaid_base_cents, months, config)


def assessed_penalty(bill: Bill, as_of: date | datetime, config: PenaltyConfig) -> int:
    """Penalty charge a bill should carry as of a date.

    Paid bills and bills whose base is fully paid keep their stored
    penalty. Otherwise the formula result, never below what has already
    been paid towards the penalty.
    """
    if bill.status == BillStatus.PAID or bill.unpaid_base_cents <= 0:
        return bill.penalty_cents
    return max(calculate_penalty(bill, as_of, config), bill.paid_penalty_cents)


def display_penalty(bill: Bill, as_of: date | datetime, config: PenaltyConfig) -> int:
    """Penalty shown for a bill; a paid bill always shows 0."""
    if bill.status == BillStatus.PAID:
        return 0
    return assessed_penalty(bill, as_of, config)


class AssessmentResult(NamedTuple):
    """Summary of one penalty assessment run."""

    processed: int
    updated: int
    skipped_paid: int
    total_penalty_cents: int
    touched: dict[str, list[str]]  # unit_id -> period ids whose penalty changed

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "skippedPaid": self.skipped_paid,
            "totalPenaltyCents": self.total_penalty_cents,
        }


class PenaltyAssessmentService:
    """Writes assessed penalties into stored bills.

    Runs periodically (bulk, every unit) or for selected units (surgical)
    and then refreshes the aggregation cache cells it touched.
    """

    def __init__(self, store, config: PenaltyConfig, clock, cache_builder):
        """Initialize with ledger store, penalty config, clock and cache builder."""
        self.store = store
        self.config = config
        self.clock = clock
        self.cache_builder = cache_builder

    def assess(self, as_of: date | None = None, unit_ids: list[str] | None = None) -> AssessmentResult:
        """Recalculate stored penalties.

        Args:
            as_of: Assessment date (default: clock today)
            unit_ids: Units to assess, or None for every unit

        Returns:
            AssessmentResult summary
        """
        as_of_day = as_of or self.clock.today()
        now = self.clock.now()
        bills = self.store.list_bills(unit_ids=unit_ids, lock=True)

        processed = updated = skipped_paid = total_penalty = 0
        touched: dict[str, list[str]] = defaultdict(list)

        for bill in bills:
            if bill.status == BillStatus.PAID:
                skipped_paid += 1
                continue
            processed += 1

            new_penalty = assessed_penalty(bill, as_of_day, self.config)
            total_penalty += new_penalty
            if new_penalty == bill.penalty_cents:
                continue

            logger.debug(
                f"Penalty for unit {bill.unit_id} period {bill.period_id}: "
                f"{bill.penalty_cents} -> {new_penalty}"
            )
            bill.penalty_cents = new_penalty
            bill.penalty_applied = new_penalty > 0
            bill.last_penalty_update = now
            bill.recompute_status()
            updated += 1
            touched[bill.unit_id].append(bill.period_id)

        self.store.flush()

        for unit_id, period_ids in touched.items():
            self.cache_builder.refresh_unit(unit_id, period_ids)

        logger.info(
            f"Penalty assessment as of {as_of_day}: processed={processed}, "
            f"updated={updated}, skipped_paid={skipped_paid}, total={total_penalty}"
        )
        return AssessmentResult(
            processed=processed,
            updated=updated,
            skipped_paid=skipped_paid,
            total_penalty_cents=total_penalty,
            touched=dict(touched),
        )


__all__ = [
    "AssessmentResult",
    "PenaltyAssessmentService",
    "assessed_penalty",
    "calculate_penalty",
    "display_penalty",
    "months_overdue",
    "penalty_for_principal",
]
