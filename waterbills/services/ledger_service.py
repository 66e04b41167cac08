"""Water bills ledger: the entry point for payments, reversals and views.

WaterBillsLedger owns the database transaction of every call. Each public
method opens one session, runs the whole read-allocate-write sequence
inside it and commits only if every step succeeded, including the
surgical cache rebuild. Errors are logged here once and re-raised as
typed LedgerError subclasses.

Example:
    engine = create_db_engine("sqlite:///./waterbills.db")
    ledger = WaterBillsLedger(create_session_factory(engine), "AVII")
    result = ledger.record_payment("203", payment_cents=500000, use_credit_cents=0)
    ledger.reverse_transaction(result.transaction_id)
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Iterator, NamedTuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from waterbills.services.aggregation_service import ALL_UNITS, AggregatedView, AggregationCacheBuilder
from waterbills.services.allocation_service import AllocationPlan, PaymentAllocator
from waterbills.services.audit_service import AuditService
from waterbills.services.clock import Clock, SystemClock
from waterbills.services.config import LedgerConfig, validate_penalty_config
from waterbills.services.credit_service import DEFAULT_HISTORY_LIMIT, CreditService
from waterbills.services.errors import (
    CacheRebuildFailure,
    ConcurrentModification,
    InvalidAmount,
    LedgerError,
    NotFound,
    PaymentFailed,
)
from waterbills.services.ledger_store import LedgerStore
from waterbills.services.penalty_service import AssessmentResult, PenaltyAssessmentService
from waterbills.services.reversal_service import ReversalEngine
from waterbills.services.transaction_recorder import TransactionRecorder

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    """Result of record_payment (and, without an id, preview_payment)."""

    transaction_id: str | None
    allocations: list[dict]
    credit_created_cents: int
    credit_used_cents: int
    affected_periods: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "allocations": self.allocations,
            "creditCreatedCents": self.credit_created_cents,
            "creditUsedCents": self.credit_used_cents,
            "affectedPeriods": self.affected_periods,
        }


@dataclass
class ReversalResult:
    transaction_id: str
    affected_periods: list[str]
    reversed: bool

    def to_dict(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "affectedPeriods": self.affected_periods,
            "reversed": self.reversed,
        }


@dataclass
class OutstandingBill:
    """Unpaid amounts of one billing period."""

    period_id: str
    fiscal_year: int
    unpaid_base_cents: int
    unpaid_penalty_cents: int
    due_date: date

    def to_dict(self) -> dict:
        return {
            "periodId": self.period_id,
            "fiscalYear": self.fiscal_year,
            "unpaidBase": self.unpaid_base_cents,
            "unpaidPenalty": self.unpaid_penalty_cents,
            "dueDate": self.due_date.isoformat(),
        }


class _Services(NamedTuple):
    store: LedgerStore
    credit: CreditService
    cache: AggregationCacheBuilder
    recorder: TransactionRecorder
    reversal: ReversalEngine
    assessment: PenaltyAssessmentService


def _plan_allocations(plan: AllocationPlan) -> list[dict]:
    return [allocation.to_dict() for allocation in plan.allocations]


class WaterBillsLedger:
    """Ledger reconciliation engine for one client's water bills."""

    def __init__(
        self,
        session_factory: sessionmaker,
        client_id: str,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        cache_builder_cls: type[AggregationCacheBuilder] = AggregationCacheBuilder,
    ):
        """Initialize the ledger.

        Args:
            session_factory: Factory for database sessions
            client_id: Client whose ledger this instance operates on
            config: Ledger configuration (default: LedgerConfig())
            clock: Time source (default: system UTC clock)
            cache_builder_cls: Aggregation cache builder implementation
        """
        self.session_factory = session_factory
        self.client_id = client_id
        self.config = config or LedgerConfig()
        validate_penalty_config(self.config.penalty)
        self.clock = clock or SystemClock()
        self.cache_builder_cls = cache_builder_cls

    def _services(self, session, client_id: str | None = None) -> _Services:
        store = LedgerStore(session, client_id or self.client_id, self.config.fiscal_year_start_month)
        credit = CreditService(store, self.clock, self.config.fiscal_year_start_month)
        cache = self.cache_builder_cls(store, self.config.penalty, self.clock)
        recorder = TransactionRecorder(
            store,
            credit,
            cache,
            allocator=PaymentAllocator(),
            clock=self.clock,
            penalty_config=self.config.penalty,
            locale=self.config.locale,
            currency=self.config.currency,
        )
        reversal = ReversalEngine(store, credit, cache, clock=self.clock, penalty_config=self.config.penalty)
        assessment = PenaltyAssessmentService(store, self.config.penalty, self.clock, cache)
        return _Services(store, credit, cache, recorder, reversal, assessment)

    @contextmanager
    def _unit_of_work(self, operation: str, client_id: str | None = None) -> Iterator[_Services]:
        """One database transaction around a ledger operation.

        Commits when the block completes, rolls back on any exception and
        translates persistence conflicts into ledger errors.
        """
        session = self.session_factory()
        try:
            with session.begin():
                yield self._services(session, client_id)
        except CacheRebuildFailure as e:
            logger.error(f"{operation} rolled back: {e}", exc_info=True)
            raise PaymentFailed(f"{operation} failed and was rolled back: {e}", operation=operation) from e
        except (StaleDataError, IntegrityError) as e:
            logger.warning(f"{operation} conflicted with a concurrent change: {e}")
            raise ConcurrentModification(
                f"{operation} conflicted with a concurrent change; retry the request",
                operation=operation,
            ) from e
        except LedgerError as e:
            logger.warning(f"{operation} rejected [{e.code}]: {e}")
            raise
        except Exception as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def record_payment(
        self,
        unit_id: str,
        payment_cents: int,
        use_credit_cents: int = 0,
        bills_hint: list[str] | None = None,
        payment_date: date | None = None,
        payment_method: str = "cash",
        reference: str = "",
        notes: str = "",
    ) -> PaymentResult:
        """Record a payment for a unit.

        Funds (payment plus credit used) go to the unit's outstanding bills
        oldest first, base before penalty; any remainder becomes credit.

        Args:
            unit_id: Paying unit
            payment_cents: New money received (>= 0)
            use_credit_cents: Existing credit to apply (>= 0, <= balance)
            bills_hint: Period ids the payment may be applied to
            payment_date: Date of payment (default: today)
            payment_method: e.g. "cash", "transfer"
            reference: External reference such as a bank confirmation
            notes: Free-form user notes

        Returns:
            PaymentResult

        Raises:
            InvalidAmount: Negative amounts, or nothing to allocate
            InsufficientCredit: use_credit_cents exceeds the balance
            NotFound: A hinted period has no bill
            ConcurrentModification: A concurrent change won; retry
            PaymentFailed: The cache rebuild failed; nothing was written
        """
        with self._unit_of_work("record_payment") as services:
            recorded = services.recorder.record(
                unit_id,
                payment_cents,
                use_credit_cents,
                bills_hint=bills_hint,
                payment_date=payment_date,
                payment_method=payment_method,
                reference=reference,
                notes=notes,
            )
            return PaymentResult(
                transaction_id=recorded.transaction.transaction_id,
                allocations=_plan_allocations(recorded.plan),
                credit_created_cents=recorded.plan.credit_created_cents,
                credit_used_cents=use_credit_cents,
                affected_periods=recorded.affected_periods,
            )

    def preview_payment(
        self,
        unit_id: str,
        payment_cents: int,
        use_credit_cents: int = 0,
        bills_hint: list[str] | None = None,
    ) -> PaymentResult:
        """Allocation a payment would produce, without writing anything."""
        with self._unit_of_work("preview_payment") as services:
            plan = services.recorder.plan(unit_id, payment_cents, use_credit_cents, bills_hint)
            return PaymentResult(
                transaction_id=None,
                allocations=_plan_allocations(plan),
                credit_created_cents=plan.credit_created_cents,
                credit_used_cents=use_credit_cents,
                affected_periods=[allocation.period_id for allocation in plan.allocations],
            )

    def reverse_transaction(self, transaction_id: str, missing_ok: bool = True) -> ReversalResult:
        """Exactly undo a recorded payment.

        Raises:
            NotFound: Unknown transaction and missing_ok is False
            InsufficientCredit: Credit created by the payment was spent since
            LedgerIntegrityError: Bills or credit no longer match the record
            ConcurrentModification: A concurrent change won; retry
            PaymentFailed: The cache rebuild failed; nothing was changed
        """
        with self._unit_of_work("reverse_transaction") as services:
            reversed_txn = services.reversal.reverse(transaction_id, missing_ok=missing_ok)
            return ReversalResult(
                transaction_id=reversed_txn.transaction_id,
                affected_periods=reversed_txn.affected_periods,
                reversed=reversed_txn.reversed,
            )

    def get_transaction(self, transaction_id: str) -> dict:
        """Recorded transaction with its allocation lines.

        Raises:
            NotFound: Unknown transaction
        """
        with self._unit_of_work("get_transaction") as services:
            transaction = services.store.get_transaction(transaction_id)
            if transaction is None:
                raise NotFound(f"Transaction {transaction_id} not found", transaction_id=transaction_id)
            return {
                "transactionId": transaction.transaction_id,
                "unitId": transaction.unit_id,
                "amountCents": transaction.amount_cents,
                "creditUsedCents": transaction.credit_used_cents,
                "creditCreatedCents": transaction.credit_created_cents,
                "creditFiscalYear": transaction.credit_fiscal_year,
                "creditHistoryRefs": list(transaction.credit_history_refs),
                "paymentDate": transaction.payment_date.isoformat(),
                "paymentMethod": transaction.payment_method,
                "reference": transaction.reference,
                "notes": transaction.notes,
                "description": transaction.description,
                "allocations": [
                    {
                        "periodId": line.period_id,
                        "fiscalYear": line.fiscal_year,
                        "baseCents": line.base_cents,
                        "penaltyCents": line.penalty_cents,
                    }
                    for line in transaction.allocations
                ],
            }

    # ------------------------------------------------------------------
    # Bills and penalties
    # ------------------------------------------------------------------

    def add_bill(
        self,
        unit_id: str,
        period_id: str,
        base_charge_cents: int,
        due_date: date | None = None,
        penalty_cents: int = 0,
    ) -> dict:
        """Store a generated bill and refresh its cache cell.

        Raises:
            InvalidPeriod: Malformed period id
            InvalidAmount: Negative charge
            ConcurrentModification: The bill already exists
        """
        with self._unit_of_work("add_bill") as services:
            bill = services.store.add_bill(unit_id, period_id, base_charge_cents, due_date, penalty_cents)
            services.store.flush()
            services.cache.refresh_unit(unit_id, [period_id])
            return self._bill_dict(bill)

    def get_bill(self, unit_id: str, period_id: str) -> dict:
        """Stored state of one bill.

        Raises:
            NotFound: No bill for the unit in that period
        """
        with self._unit_of_work("get_bill") as services:
            return self._bill_dict(services.store.require_bill(unit_id, period_id))

    @staticmethod
    def _bill_dict(bill) -> dict:
        return {
            "periodId": bill.period_id,
            "fiscalYear": bill.fiscal_year,
            "unitId": bill.unit_id,
            "baseChargeCents": bill.base_charge_cents,
            "penaltyCents": bill.penalty_cents,
            "paidBaseCents": bill.paid_base_cents,
            "paidPenaltyCents": bill.paid_penalty_cents,
            "status": bill.status.value,
            "dueDate": bill.due_date.isoformat(),
            "payments": [
                {
                    "transactionId": payment.transaction_id,
                    "baseCents": payment.base_cents,
                    "penaltyCents": payment.penalty_cents,
                }
                for payment in bill.payments
            ],
        }

    def get_outstanding(self, unit_id: str) -> list[OutstandingBill]:
        """Every period of a unit with an unpaid amount, oldest first."""
        with self._unit_of_work("get_outstanding") as services:
            return [
                OutstandingBill(
                    period_id=bill.period_id,
                    fiscal_year=bill.fiscal_year,
                    unpaid_base_cents=bill.unpaid_base_cents,
                    unpaid_penalty_cents=bill.unpaid_penalty_cents,
                    due_date=bill.due_date,
                )
                for bill in services.store.outstanding_bills(unit_id)
            ]

    def assess_penalties(self, scope=ALL_UNITS, as_of: date | None = None) -> AssessmentResult:
        """Write current penalties into stored bills.

        Args:
            scope: ALL_UNITS, or a list of unit ids
            as_of: Assessment date (default: today)
        """
        unit_ids = None if scope == ALL_UNITS else list(scope)
        with self._unit_of_work("assess_penalties") as services:
            result = services.assessment.assess(as_of=as_of, unit_ids=unit_ids)
            AuditService.log(
                services.store.db,
                self.client_id,
                "penalty",
                "ALL" if unit_ids is None else ",".join(unit_ids)[:64],
                "assess",
                result.to_dict(),
            )
            return result

    # ------------------------------------------------------------------
    # Aggregation cache
    # ------------------------------------------------------------------

    def rebuild_aggregation(self, client_id: str, fiscal_year: int, scope=ALL_UNITS) -> AggregatedView:
        """Rebuild the aggregation cache (bulk with ALL_UNITS, else surgical)."""
        with self._unit_of_work("rebuild_aggregation", client_id=client_id) as services:
            written = services.cache.rebuild(fiscal_year, scope)
            logger.info(f"Rebuilt aggregation for {client_id} FY{fiscal_year} ({scope}): {written} cells")
            return services.cache.get_view(fiscal_year)

    def get_aggregated_view(self, fiscal_year: int) -> AggregatedView:
        with self._unit_of_work("get_aggregated_view") as services:
            return services.cache.get_view(fiscal_year)

    # ------------------------------------------------------------------
    # Credit
    # ------------------------------------------------------------------

    def get_credit_balance(self, unit_id: str) -> int:
        with self._unit_of_work("get_credit_balance") as services:
            return services.credit.get_balance(unit_id)

    def get_credit_history(self, unit_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> list[dict]:
        """Credit history of the current fiscal year, most recent first."""
        with self._unit_of_work("get_credit_history") as services:
            return [
                {
                    "id": entry.entry_id,
                    "amount": entry.delta_cents,
                    "balance": entry.resulting_balance_cents,
                    "transactionId": entry.transaction_id,
                    "note": entry.reason,
                    "source": entry.source,
                    "timestamp": entry.timestamp.isoformat(),
                }
                for entry in services.credit.get_history(unit_id, limit=limit)
            ]

    def adjust_credit(self, unit_id: str, delta_cents: int, reason: str) -> int:
        """Manually add or remove credit; returns the new balance.

        Raises:
            InvalidAmount: delta_cents is zero
            InsufficientCredit: The adjustment would make the balance negative
        """
        if delta_cents == 0:
            raise InvalidAmount("Credit adjustment must not be zero")
        with self._unit_of_work("adjust_credit") as services:
            entry = services.credit.adjust(unit_id, delta_cents, reason)
            AuditService.log(
                services.store.db,
                self.client_id,
                "credit",
                entry.entry_id,
                "adjust",
                {"unit_id": unit_id, "delta_cents": delta_cents, "reason": reason},
            )
            logger.info(
                f"Adjusted credit for unit {unit_id} by {delta_cents}: "
                f"balance={entry.resulting_balance_cents}"
            )
            return entry.resulting_balance_cents


__all__ = [
    "OutstandingBill",
    "PaymentResult",
    "ReversalResult",
    "WaterBillsLedger",
]
