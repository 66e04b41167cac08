"""Records a water bill payment as one atomic multi-allocation transaction.

A payment touches several rows: each bill it pays, the unit's credit
ledger (credit used and/or overpayment credit), the transaction record and
the aggregation cache. All of them are written inside the caller's database
transaction, so either every change becomes visible or none does.
"""

import logging
import uuid
from datetime import date
from typing import NamedTuple

from waterbills.models.bill import Bill, BillPayment
from waterbills.models.ledger_transaction import LedgerTransaction, TransactionAllocation
from waterbills.services.aggregation_service import AggregationCacheBuilder
from waterbills.services.allocation_service import AllocationPlan, PaymentAllocator
from waterbills.services.audit_service import AuditService
from waterbills.services.clock import Clock, SystemClock
from waterbills.services.config import PenaltyConfig
from waterbills.services.credit_service import CreditService
from waterbills.services.errors import InsufficientCredit, InvalidAmount, NotFound
from waterbills.services.fiscal_calendar import parse_period_id, period_label
from waterbills.services.ledger_store import LedgerStore
from waterbills.services.locale_service import format_cents
from waterbills.services.penalty_service import assessed_penalty

logger = logging.getLogger(__name__)


def new_transaction_id(payment_date: date) -> str:
    """Generate a transaction id such as '2025-08-03_5f0c2a9e41b7'."""
    return f"{payment_date.isoformat()}_{uuid.uuid4().hex[:12]}"


class RecordedPayment(NamedTuple):
    """Outcome of recording a payment."""

    transaction: LedgerTransaction
    plan: AllocationPlan
    affected_periods: list[str]


class TransactionRecorder:
    """Applies an allocation plan to bills and credit and persists the record."""

    def __init__(
        self,
        store: LedgerStore,
        credit_service: CreditService,
        cache_builder: AggregationCacheBuilder,
        allocator: PaymentAllocator | None = None,
        clock: Clock | None = None,
        penalty_config: PenaltyConfig | None = None,
        locale: str = "en_US",
        currency: str = "USD",
    ):
        self.store = store
        self.credit_service = credit_service
        self.cache_builder = cache_builder
        self.allocator = allocator or PaymentAllocator()
        self.clock = clock or SystemClock()
        self.penalty_config = penalty_config or PenaltyConfig()
        self.locale = locale
        self.currency = currency

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def validate_amounts(self, payment_cents: int, use_credit_cents: int) -> None:
        """Reject negative amounts and payments that bring in no funds.

        Raises:
            InvalidAmount: If either amount is negative or both are zero
        """
        if payment_cents < 0:
            raise InvalidAmount(f"Payment amount must not be negative, got {payment_cents}")
        if use_credit_cents < 0:
            raise InvalidAmount(f"Credit to use must not be negative, got {use_credit_cents}")
        if payment_cents + use_credit_cents == 0:
            raise InvalidAmount("Payment amount and credit used are both zero")

    def select_bills(self, unit_id: str, bills_hint: list[str] | None = None, lock: bool = False) -> list[Bill]:
        """Outstanding bills of a unit, optionally limited to some periods.

        Raises:
            NotFound: If a hinted period has no bill for the unit
        """
        bills = self.store.outstanding_bills(unit_id, lock=lock)
        if bills_hint is None:
            return bills

        hinted = []
        for period_id in bills_hint:
            parse_period_id(period_id)
            if period_id not in hinted:
                hinted.append(period_id)
        for period_id in hinted:
            if self.store.get_bill(unit_id, period_id) is None:
                raise NotFound(
                    f"No bill for unit {unit_id} in period {period_id}",
                    unit_id=unit_id,
                    period_id=period_id,
                )
        return [bill for bill in bills if bill.period_id in hinted]

    def plan(
        self,
        unit_id: str,
        payment_cents: int,
        use_credit_cents: int,
        bills_hint: list[str] | None = None,
        lock: bool = False,
    ) -> AllocationPlan:
        """Validate a payment and compute its allocation without writing.

        Raises:
            InvalidAmount: If amounts are invalid
            InsufficientCredit: If use_credit_cents exceeds the credit balance
            NotFound: If a hinted period is unknown
        """
        self.validate_amounts(payment_cents, use_credit_cents)

        if use_credit_cents > 0:
            ledger = self.credit_service.get_ledger(unit_id, lock=lock)
            available = ledger.balance_cents if ledger else 0
            if use_credit_cents > available:
                raise InsufficientCredit(
                    f"Unit {unit_id} has {available} cents of credit, {use_credit_cents} requested",
                    available_cents=available,
                    requested_cents=use_credit_cents,
                    unit_id=unit_id,
                )

        bills = self.select_bills(unit_id, bills_hint, lock=lock)
        return self.allocator.allocate(bills, payment_cents + use_credit_cents)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(
        self,
        unit_id: str,
        payment_cents: int,
        use_credit_cents: int = 0,
        bills_hint: list[str] | None = None,
        payment_date: date | None = None,
        payment_method: str = "cash",
        reference: str = "",
        notes: str = "",
    ) -> RecordedPayment:
        """Record a payment.

        Steps, all inside the caller's transaction:
        1. Allocate payment + credit across outstanding bills (locked)
        2. Add each allocation to its bill, re-assess the bill penalty against
           the remaining base and append a payment line
        3. Debit the credit ledger for credit used
        4. Credit the ledger with any overpayment
        5. Persist the transaction with refs to the credit entries
        6. Rebuild the aggregation cache for the touched periods

        Raises:
            InvalidAmount, InsufficientCredit, NotFound: Request rejected
            CacheRebuildFailure: Step 6 failed; the caller must roll back
        """
        plan = self.plan(unit_id, payment_cents, use_credit_cents, bills_hint, lock=True)

        now = self.clock.now()
        payment_date = payment_date or now.date()
        transaction_id = new_transaction_id(payment_date)
        credit_fiscal_year = self.credit_service.current_fiscal_year()

        for allocation in plan.allocations:
            bill = allocation.bill
            bill.paid_base_cents += allocation.base_cents
            bill.paid_penalty_cents += allocation.penalty_cents
            penalty_before = bill.penalty_cents
            # The charge follows the remaining base, as the display cache does
            bill.penalty_cents = assessed_penalty(bill, now.date(), self.penalty_config)
            bill.payments.append(
                BillPayment(
                    transaction_id=transaction_id,
                    base_cents=allocation.base_cents,
                    penalty_cents=allocation.penalty_cents,
                    penalty_before_cents=penalty_before,
                    penalty_after_cents=bill.penalty_cents,
                    applied_at=now,
                )
            )
            bill.recompute_status()

        periods_text = self._periods_text(plan)
        credit_refs: list[str] = []

        if use_credit_cents > 0 or plan.credit_created_cents > 0:
            ledger = self.credit_service.get_ledger(
                unit_id, credit_fiscal_year, lock=True, create=True
            )
            if use_credit_cents > 0:
                entry = self.credit_service.append_entry(
                    ledger,
                    -use_credit_cents,
                    f"Used for water bills: {periods_text}" if periods_text else "Used for water bill payment",
                    transaction_id=transaction_id,
                )
                credit_refs.append(entry.entry_id)
            if plan.credit_created_cents > 0:
                reason = (
                    "Water bill overpayment - no bills due"
                    if not plan.allocations
                    else f"Water bill overpayment after paying {periods_text}"
                )
                entry = self.credit_service.append_entry(
                    ledger,
                    plan.credit_created_cents,
                    reason,
                    transaction_id=transaction_id,
                )
                credit_refs.append(entry.entry_id)

        transaction = LedgerTransaction(
            transaction_id=transaction_id,
            client_id=self.store.client_id,
            unit_id=unit_id,
            amount_cents=payment_cents,
            credit_used_cents=use_credit_cents,
            credit_created_cents=plan.credit_created_cents,
            credit_fiscal_year=credit_fiscal_year,
            credit_history_refs=credit_refs,
            payment_date=payment_date,
            payment_method=payment_method,
            reference=reference,
            notes=self.describe_notes(unit_id, plan, notes, payment_cents + use_credit_cents),
            description=(
                f"Water bill payment - Unit {unit_id}"
                if plan.allocations
                else f"Water bill credit - Unit {unit_id}"
            ),
        )
        for line_no, allocation in enumerate(plan.allocations, start=1):
            transaction.allocations.append(
                TransactionAllocation(
                    line_no=line_no,
                    fiscal_year=allocation.fiscal_year,
                    period_id=allocation.period_id,
                    base_cents=allocation.base_cents,
                    penalty_cents=allocation.penalty_cents,
                )
            )
        self.store.add_transaction(transaction)

        AuditService.log(
            self.store.db,
            self.store.client_id,
            "transaction",
            transaction_id,
            "record",
            {
                "unit_id": unit_id,
                "amount_cents": payment_cents,
                "credit_used_cents": use_credit_cents,
                "credit_created_cents": plan.credit_created_cents,
                "periods": [allocation.period_id for allocation in plan.allocations],
            },
        )

        # Conflicting concurrent writes surface here, before the cache is touched
        self.store.flush()

        affected_periods = [allocation.period_id for allocation in plan.allocations]
        self.cache_builder.refresh_unit(unit_id, affected_periods)

        logger.info(
            f"Recorded payment {transaction_id} for unit {unit_id}: "
            f"amount={payment_cents}, credit_used={use_credit_cents}, "
            f"allocated={plan.allocated_cents}, credit_created={plan.credit_created_cents}"
        )
        return RecordedPayment(transaction, plan, affected_periods)

    # ------------------------------------------------------------------
    # Descriptions
    # ------------------------------------------------------------------

    def _periods_text(self, plan: AllocationPlan) -> str:
        start_month = self.store.fiscal_year_start_month
        return ", ".join(period_label(allocation.period_id, start_month) for allocation in plan.allocations)

    def describe_notes(self, unit_id: str, plan: AllocationPlan, user_notes: str, total_cents: int) -> str:
        """Readable notes, e.g.
        'Water bill payment for Unit 203 - Jul 2025, Aug 2025 - $4,400.00 charges + $600.00 penalties'
        """
        user_notes_text = f" - {user_notes}" if user_notes else ""
        if not plan.allocations:
            amount = format_cents(total_cents, self.locale, self.currency)
            return f"Water bill payment for Unit {unit_id} - No bills due{user_notes_text} - {amount} credit"

        parts = []
        if plan.base_cents > 0:
            parts.append(f"{format_cents(plan.base_cents, self.locale, self.currency)} charges")
        if plan.penalty_cents > 0:
            parts.append(f"{format_cents(plan.penalty_cents, self.locale, self.currency)} penalties")
        breakdown = " + ".join(parts)
        if plan.credit_created_cents > 0:
            breakdown += f" ({format_cents(plan.credit_created_cents, self.locale, self.currency)} to credit)"

        return f"Water bill payment for Unit {unit_id} - {self._periods_text(plan)}{user_notes_text} - {breakdown}"


__all__ = ["RecordedPayment", "TransactionRecorder", "new_transaction_id"]
