"""Durable store for water bills, credit ledgers and ledger transactions.

All reads that precede a write can take row locks (SELECT ... FOR UPDATE on
dialects that support it). Bill and CreditLedger rows also carry a version
counter, so a write based on a stale read fails at flush time instead of
silently overwriting a concurrent change.
"""

import logging
from collections.abc import Iterable
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from waterbills.models.bill import Bill, BillStatus, derive_status
from waterbills.models.credit_ledger import CreditLedger
from waterbills.models.ledger_transaction import LedgerTransaction
from waterbills.services.errors import InvalidAmount, NotFound
from waterbills.services.fiscal_calendar import parse_period_id, period_start

logger = logging.getLogger(__name__)


class LedgerStore:
    """Data access for one client's water bills ledger.

    Encapsulates every query the ledger services run, so services never
    build SQL themselves. The caller owns the session and its transaction.
    """

    def __init__(self, db: Session, client_id: str, fiscal_year_start_month: int = 7):
        """Initialize with database session and client scope."""
        self.db = db
        self.client_id = client_id
        self.fiscal_year_start_month = fiscal_year_start_month

    # ------------------------------------------------------------------
    # Bills
    # ------------------------------------------------------------------

    def add_bill(
        self,
        unit_id: str,
        period_id: str,
        base_charge_cents: int,
        due_date: date | None = None,
        penalty_cents: int = 0,
    ) -> Bill:
        """Insert a newly generated bill.

        Bill generation itself lives outside the ledger; this is the entry
        point that collaborator (and the test suite) uses.

        Raises:
            InvalidPeriod: If period_id is malformed
            InvalidAmount: If a charge is negative
        """
        fiscal_year, _ = parse_period_id(period_id)
        if base_charge_cents < 0 or penalty_cents < 0:
            raise InvalidAmount(
                f"Bill charges must not be negative (base={base_charge_cents}, penalty={penalty_cents})"
            )

        bill = Bill(
            client_id=self.client_id,
            fiscal_year=fiscal_year,
            period_id=period_id,
            unit_id=unit_id,
            base_charge_cents=base_charge_cents,
            penalty_cents=penalty_cents,
            paid_base_cents=0,
            paid_penalty_cents=0,
            status=derive_status(base_charge_cents, penalty_cents, 0, 0),
            due_date=due_date or period_start(period_id, self.fiscal_year_start_month),
            penalty_applied=penalty_cents > 0,
        )
        self.db.add(bill)
        logger.debug(f"Added bill {period_id} for unit {unit_id}: base={base_charge_cents}")
        return bill

    def get_bill(self, unit_id: str, period_id: str, lock: bool = False) -> Bill | None:
        """Get one unit's bill for a period."""
        fiscal_year, _ = parse_period_id(period_id)
        stmt = select(Bill).where(
            Bill.client_id == self.client_id,
            Bill.fiscal_year == fiscal_year,
            Bill.period_id == period_id,
            Bill.unit_id == unit_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def require_bill(self, unit_id: str, period_id: str, lock: bool = False) -> Bill:
        """Get a bill or raise NotFound."""
        bill = self.get_bill(unit_id, period_id, lock=lock)
        if bill is None:
            raise NotFound(
                f"No bill for unit {unit_id} in period {period_id}",
                unit_id=unit_id,
                period_id=period_id,
            )
        return bill

    def list_bills(
        self,
        fiscal_year: int | None = None,
        unit_ids: Iterable[str] | None = None,
        period_ids: Iterable[str] | None = None,
        lock: bool = False,
    ) -> list[Bill]:
        """List bills oldest-first, optionally filtered.

        Args:
            fiscal_year: Restrict to one fiscal year
            unit_ids: Restrict to these units
            period_ids: Restrict to these periods
            lock: Take row locks on the returned bills

        Returns:
            Bills ordered by fiscal year, period, then unit
        """
        stmt = select(Bill).where(Bill.client_id == self.client_id)
        if fiscal_year is not None:
            stmt = stmt.where(Bill.fiscal_year == fiscal_year)
        if unit_ids is not None:
            stmt = stmt.where(Bill.unit_id.in_(list(unit_ids)))
        if period_ids is not None:
            stmt = stmt.where(Bill.period_id.in_(list(period_ids)))
        stmt = stmt.order_by(Bill.fiscal_year, Bill.period_id, Bill.unit_id)
        if lock:
            stmt = stmt.with_for_update()
        return list(self.db.execute(stmt).scalars().all())

    def outstanding_bills(self, unit_id: str, lock: bool = False) -> list[Bill]:
        """Bills of a unit with any unpaid base or penalty, oldest first.

        Selection is by unpaid amount, not by status or by whether the
        current period has a charge, so a unit that only owes for earlier
        periods is still payable.
        """
        stmt = (
            select(Bill)
            .where(
                Bill.client_id == self.client_id,
                Bill.unit_id == unit_id,
                Bill.status != BillStatus.PAID,
            )
            .order_by(Bill.fiscal_year, Bill.period_id, Bill.due_date)
        )
        if lock:
            stmt = stmt.with_for_update()
        bills = self.db.execute(stmt).scalars().all()
        return [bill for bill in bills if bill.unpaid_cents > 0]

    # ------------------------------------------------------------------
    # Credit ledgers
    # ------------------------------------------------------------------

    def get_credit_ledger(self, unit_id: str, fiscal_year: int, lock: bool = False) -> CreditLedger | None:
        """Get a unit's credit ledger for a fiscal year."""
        stmt = select(CreditLedger).where(
            CreditLedger.client_id == self.client_id,
            CreditLedger.unit_id == unit_id,
            CreditLedger.fiscal_year == fiscal_year,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def create_credit_ledger(self, unit_id: str, fiscal_year: int) -> CreditLedger:
        """Create an empty credit ledger.

        A concurrent creation of the same ledger fails on the unique key
        when the session flushes.
        """
        ledger = CreditLedger(
            client_id=self.client_id,
            unit_id=unit_id,
            fiscal_year=fiscal_year,
            balance_cents=0,
        )
        self.db.add(ledger)
        return ledger

    def delete_credit_ledger(self, ledger: CreditLedger) -> None:
        self.db.delete(ledger)

    # ------------------------------------------------------------------
    # Ledger transactions
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: str, lock: bool = False) -> LedgerTransaction | None:
        """Get a recorded transaction of this client."""
        stmt = select(LedgerTransaction).where(
            LedgerTransaction.transaction_id == transaction_id,
            LedgerTransaction.client_id == self.client_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def add_transaction(self, transaction: LedgerTransaction) -> None:
        self.db.add(transaction)

    def delete_transaction(self, transaction: LedgerTransaction) -> None:
        self.db.delete(transaction)

    def flush(self) -> None:
        """Write pending changes; raises on optimistic lock or key conflicts."""
        self.db.flush()


__all__ = ["LedgerStore"]
