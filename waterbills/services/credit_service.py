"""Credit balance service for water bill units.

A unit's credit is kept per fiscal year as a balance plus an append-only
history. Payments that overpay add a positive entry, payments that use
credit add a negative one. Every entry written for a payment carries the
payment's transaction id and its own entry id, and reversal removes
entries by that id only.
"""

import logging
import uuid

from waterbills.models.credit_ledger import CreditHistoryEntry, CreditLedger
from waterbills.services.clock import Clock, SystemClock
from waterbills.services.errors import InsufficientCredit, LedgerIntegrityError
from waterbills.services.fiscal_calendar import fiscal_year_for
from waterbills.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def new_entry_id() -> str:
    """Generate a credit history entry id."""
    return f"credit_{uuid.uuid4().hex}"


class CreditService:
    """Read and mutate unit credit ledgers through the ledger store."""

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock | None = None,
        fiscal_year_start_month: int = 7,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.fiscal_year_start_month = fiscal_year_start_month

    def current_fiscal_year(self) -> int:
        """Fiscal year whose credit ledger payments use today."""
        return fiscal_year_for(self.clock.today(), self.fiscal_year_start_month)

    def get_ledger(
        self,
        unit_id: str,
        fiscal_year: int | None = None,
        lock: bool = False,
        create: bool = False,
    ) -> CreditLedger | None:
        """Get a unit's credit ledger, optionally creating an empty one.

        Args:
            unit_id: Unit identifier
            fiscal_year: Ledger fiscal year (default: current fiscal year)
            lock: Lock the ledger row for update
            create: Create the ledger when it does not exist yet

        Returns:
            CreditLedger, or None when absent and create is False
        """
        year = fiscal_year if fiscal_year is not None else self.current_fiscal_year()
        ledger = self.store.get_credit_ledger(unit_id, year, lock=lock)
        if ledger is None and create:
            ledger = self.store.create_credit_ledger(unit_id, year)
        return ledger

    def get_balance(self, unit_id: str, fiscal_year: int | None = None) -> int:
        """Current credit balance in cents (0 when the unit has no ledger)."""
        ledger = self.get_ledger(unit_id, fiscal_year)
        return ledger.balance_cents if ledger else 0

    def append_entry(
        self,
        ledger: CreditLedger,
        delta_cents: int,
        reason: str,
        transaction_id: str | None = None,
        source: str = "waterBills",
    ) -> CreditHistoryEntry:
        """Append a signed entry and update the materialized balance.

        Raises:
            InsufficientCredit: If the entry would make the balance negative
        """
        new_balance = ledger.balance_cents + delta_cents
        if new_balance < 0:
            raise InsufficientCredit(
                f"Insufficient credit for unit {ledger.unit_id}: "
                f"available {ledger.balance_cents}, requested {-delta_cents}",
                available_cents=ledger.balance_cents,
                requested_cents=-delta_cents,
                unit_id=ledger.unit_id,
            )

        entry = CreditHistoryEntry(
            entry_id=new_entry_id(),
            sequence=ledger.next_sequence(),
            delta_cents=delta_cents,
            resulting_balance_cents=new_balance,
            transaction_id=transaction_id,
            reason=reason,
            source=source,
            timestamp=self.clock.now(),
        )
        ledger.history.append(entry)
        ledger.balance_cents = new_balance

        logger.debug(
            f"Credit entry {entry.entry_id} for unit {ledger.unit_id}: "
            f"delta={delta_cents}, balance={new_balance}"
        )
        return entry

    def remove_entries(self, ledger: CreditLedger, entry_ids: list[str]) -> None:
        """Remove specific entries by id and recompute the balance.

        Running balances of the remaining entries are recomputed in sequence
        order and the ledger balance becomes their sum. Nothing changes if
        an entry is missing or if the remaining history would dip below zero
        (a later payment already spent the credit being removed).

        Raises:
            LedgerIntegrityError: If an entry id is not in this ledger
            InsufficientCredit: If the remaining history goes negative
        """
        wanted = set(entry_ids)
        present = {entry.entry_id for entry in ledger.history}
        missing = wanted - present
        if missing:
            raise LedgerIntegrityError(
                f"Credit entries {sorted(missing)} not found for unit {ledger.unit_id}",
                unit_id=ledger.unit_id,
                entry_ids=sorted(missing),
            )

        remaining = [entry for entry in ledger.history if entry.entry_id not in wanted]
        running = 0
        for entry in remaining:
            running += entry.delta_cents
            if running < 0:
                raise InsufficientCredit(
                    f"Cannot remove credit for unit {ledger.unit_id}: "
                    f"entry {entry.entry_id} already spent it",
                    available_cents=running - entry.delta_cents,
                    requested_cents=-entry.delta_cents,
                    unit_id=ledger.unit_id,
                )

        for entry in list(ledger.history):
            if entry.entry_id in wanted:
                ledger.history.remove(entry)

        running = 0
        for entry in remaining:
            running += entry.delta_cents
            entry.resulting_balance_cents = running
        ledger.balance_cents = running

        logger.debug(
            f"Removed {len(wanted)} credit entries for unit {ledger.unit_id}, balance={running}"
        )

    def get_history(
        self,
        unit_id: str,
        fiscal_year: int | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[CreditHistoryEntry]:
        """History entries, most recent first."""
        ledger = self.get_ledger(unit_id, fiscal_year)
        if ledger is None:
            return []
        entries = sorted(ledger.history, key=lambda entry: entry.sequence, reverse=True)
        return entries[:limit]

    def adjust(
        self,
        unit_id: str,
        delta_cents: int,
        reason: str,
        source: str = "admin",
    ) -> CreditHistoryEntry:
        """Manual credit adjustment on the current fiscal year ledger.

        Raises:
            InsufficientCredit: If a negative adjustment exceeds the balance
        """
        ledger = self.get_ledger(unit_id, lock=True, create=True)
        return self.append_entry(ledger, delta_cents, reason, source=source)


__all__ = ["CreditService", "DEFAULT_HISTORY_LIMIT", "new_entry_id"]
