"""Aggregation cache: per-fiscal-year display projection of water bills.

The cache holds one cell per (period, unit) with the amounts shown to
users. Cells are pure functions of the Bill row and today's date, so a
rebuild can always be repeated and never needs to read the cache back.

Bulk and surgical rebuilds run the same per-cell derivation; bulk is the
surgical rebuild applied to every unit. Rebuilds write only cache rows and
never lock bills, so a running bulk rebuild does not block payments.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import NamedTuple

from sqlalchemy import select

from waterbills.models.aggregated_view import AggregatedViewCell, AggregatedViewHeader
from waterbills.models.bill import Bill, BillStatus
from waterbills.services.clock import Clock, SystemClock
from waterbills.services.config import PenaltyConfig
from waterbills.services.errors import CacheRebuildFailure
from waterbills.services.fiscal_calendar import parse_period_id
from waterbills.services.ledger_store import LedgerStore
from waterbills.services.penalty_service import display_penalty

logger = logging.getLogger(__name__)

ALL_UNITS = "ALL_UNITS"


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class UnitScope:
    """Surgical rebuild scope: one unit, optionally limited to some periods.

    An empty period_ids means every period of the fiscal year.
    """

    unit_id: str
    period_ids: tuple[str, ...] = ()


class CellValues(NamedTuple):
    """Derived display values of one bill."""

    display_due_cents: int
    display_penalty_cents: int
    unpaid_base_cents: int
    status: str


def derive_cell(bill: Bill, as_of: date, config: PenaltyConfig) -> CellValues:
    """Display values of a bill as of a date.

    Paid bills show nothing due and no penalty. Otherwise the penalty is
    recalculated against the remaining unpaid base and only its unpaid
    portion counts towards the amount due.
    """
    if bill.status == BillStatus.PAID:
        return CellValues(0, 0, 0, bill.status.value)

    penalty = display_penalty(bill, as_of, config)
    unpaid_base = max(0, bill.unpaid_base_cents)
    unpaid_penalty = max(0, penalty - bill.paid_penalty_cents)
    return CellValues(unpaid_base + unpaid_penalty, penalty, unpaid_base, bill.status.value)


@dataclass
class AggregatedView:
    """Assembled cache content of one fiscal year."""

    client_id: str
    fiscal_year: int
    per_month: dict[str, dict[str, dict]] = field(default_factory=dict)
    last_recomputed_at: datetime | None = None

    def unit_totals(self) -> dict[str, dict[str, int]]:
        """Fiscal year totals per unit (paid bills contribute no penalty)."""
        totals: dict[str, dict[str, int]] = defaultdict(lambda: {"displayDue": 0, "displayPenalties": 0})
        for units in self.per_month.values():
            for unit_id, cell in units.items():
                totals[unit_id]["displayDue"] += cell["displayDue"]
                totals[unit_id]["displayPenalties"] += cell["displayPenalties"]
        return dict(totals)

    def snapshot(self) -> dict:
        """View content without the recompute timestamp, for comparisons."""
        return {"fiscalYear": self.fiscal_year, "perMonth": self.per_month}

    def to_dict(self) -> dict:
        return {
            "fiscalYear": self.fiscal_year,
            "perMonth": self.per_month,
            "unitTotals": self.unit_totals(),
            "lastRecomputedAt": self.last_recomputed_at.isoformat() if self.last_recomputed_at else None,
        }


class AggregationCacheBuilder:
    """Rebuilds and reads the aggregation cache of one client."""

    def __init__(self, store: LedgerStore, config: PenaltyConfig, clock: Clock | None = None):
        self.store = store
        self.db = store.db
        self.client_id = store.client_id
        self.config = config
        self.clock = clock or SystemClock()

    def rebuild(self, fiscal_year: int, scope=ALL_UNITS) -> int:
        """Recompute cache cells of a fiscal year.

        Args:
            fiscal_year: Fiscal year to rebuild
            scope: ALL_UNITS for a bulk rebuild, or a UnitScope

        Returns:
            Number of cells written
        """
        as_of = self.clock.today()
        now = self.clock.now()

        if scope == ALL_UNITS:
            bills = self.store.list_bills(fiscal_year=fiscal_year)
            existing_stmt = select(AggregatedViewCell).where(
                AggregatedViewCell.client_id == self.client_id,
                AggregatedViewCell.fiscal_year == fiscal_year,
            )
        elif isinstance(scope, UnitScope):
            period_ids = list(scope.period_ids) or None
            bills = self.store.list_bills(
                fiscal_year=fiscal_year, unit_ids=[scope.unit_id], period_ids=period_ids
            )
            existing_stmt = select(AggregatedViewCell).where(
                AggregatedViewCell.client_id == self.client_id,
                AggregatedViewCell.fiscal_year == fiscal_year,
                AggregatedViewCell.unit_id == scope.unit_id,
            )
            if period_ids:
                existing_stmt = existing_stmt.where(AggregatedViewCell.period_id.in_(period_ids))
        else:
            raise TypeError(f"Unsupported rebuild scope: {scope!r}")

        existing = {
            (cell.period_id, cell.unit_id): cell for cell in self.db.execute(existing_stmt).scalars().all()
        }

        written = 0
        for bill in bills:
            values = derive_cell(bill, as_of, self.config)
            cell = existing.pop((bill.period_id, bill.unit_id), None)
            if cell is None:
                cell = AggregatedViewCell(
                    client_id=self.client_id,
                    fiscal_year=fiscal_year,
                    period_id=bill.period_id,
                    unit_id=bill.unit_id,
                )
                self.db.add(cell)
            cell.display_due_cents = values.display_due_cents
            cell.display_penalty_cents = values.display_penalty_cents
            cell.unpaid_base_cents = values.unpaid_base_cents
            cell.status = values.status
            cell.recomputed_at = now
            written += 1

        # Whatever is left in scope has no bill behind it any more
        for cell in existing.values():
            self.db.delete(cell)

        if scope == ALL_UNITS:
            header = self._get_header(fiscal_year)
            if header is None:
                header = AggregatedViewHeader(client_id=self.client_id, fiscal_year=fiscal_year)
                self.db.add(header)
            header.last_recomputed_at = now

        self.db.flush()
        logger.debug(
            f"Rebuilt aggregation cache for {self.client_id} FY{fiscal_year} "
            f"scope={scope}: {written} cells, {len(existing)} dropped"
        )
        return written

    def rebuild_unit(self, unit_id: str, period_ids: list[str]) -> int:
        """Surgical rebuild of a unit's periods, which may span fiscal years."""
        by_year: dict[int, list[str]] = defaultdict(list)
        for period_id in period_ids:
            fiscal_year, _ = parse_period_id(period_id)
            if period_id not in by_year[fiscal_year]:
                by_year[fiscal_year].append(period_id)

        written = 0
        for fiscal_year in sorted(by_year):
            written += self.rebuild(fiscal_year, UnitScope(unit_id, tuple(by_year[fiscal_year])))
        return written

    def refresh_unit(self, unit_id: str, period_ids: list[str]) -> None:
        """Surgical rebuild run as the last step of a ledger mutation.

        Raises:
            CacheRebuildFailure: Wrapping whatever the rebuild raised, so the
                caller rolls the mutation back
        """
        if not period_ids:
            return
        try:
            self.rebuild_unit(unit_id, period_ids)
        except Exception as e:
            raise CacheRebuildFailure(
                f"Cache rebuild failed for unit {unit_id} periods {period_ids}: {e}",
                unit_id=unit_id,
                period_ids=list(period_ids),
            ) from e

    def get_view(self, fiscal_year: int) -> AggregatedView:
        """Assemble the cached view of a fiscal year."""
        cells = self.db.execute(
            select(AggregatedViewCell)
            .where(
                AggregatedViewCell.client_id == self.client_id,
                AggregatedViewCell.fiscal_year == fiscal_year,
            )
            .order_by(AggregatedViewCell.period_id, AggregatedViewCell.unit_id)
        ).scalars().all()

        view = AggregatedView(client_id=self.client_id, fiscal_year=fiscal_year)
        stamps = []
        for cell in cells:
            view.per_month.setdefault(cell.period_id, {})[cell.unit_id] = {
                "displayDue": cell.display_due_cents,
                "displayPenalties": cell.display_penalty_cents,
                "unpaidBase": cell.unpaid_base_cents,
                "status": cell.status,
            }
            if cell.recomputed_at is not None:
                stamps.append(_aware(cell.recomputed_at))

        header = self._get_header(fiscal_year)
        if header is not None and header.last_recomputed_at is not None:
            stamps.append(_aware(header.last_recomputed_at))
        view.last_recomputed_at = max(stamps) if stamps else None
        return view

    def _get_header(self, fiscal_year: int) -> AggregatedViewHeader | None:
        return self.db.execute(
            select(AggregatedViewHeader).where(
                AggregatedViewHeader.client_id == self.client_id,
                AggregatedViewHeader.fiscal_year == fiscal_year,
            )
        ).scalar_one_or_none()


__all__ = [
    "ALL_UNITS",
    "AggregatedView",
    "AggregationCacheBuilder",
    "CellValues",
    "UnitScope",
    "derive_cell",
]
