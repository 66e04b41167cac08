"""Reversal of recorded water bill payments.

A reversal is the exact inverse of recording. Every amount the payment
added to a bill is subtracted again and the penalty charge it re-assessed
is restored. Its payment lines, the credit history entries it created
(by id) and the transaction record are deleted. Rebuilding the cache
afterwards yields the same view as if the payment had never been made.

Failure modes:
    - NotFound: unknown transaction id (only when missing_ok is False)
    - LedgerIntegrityError: bills or credit entries no longer match the record
    - InsufficientCredit: the credit created by the payment was already spent
"""

import logging
from typing import NamedTuple

from waterbills.models.bill import Bill, BillPayment
from waterbills.models.ledger_transaction import LedgerTransaction
from waterbills.services.aggregation_service import AggregationCacheBuilder
from waterbills.services.audit_service import AuditService
from waterbills.services.clock import Clock, SystemClock
from waterbills.services.config import PenaltyConfig
from waterbills.services.credit_service import CreditService
from waterbills.services.errors import LedgerIntegrityError, NotFound
from waterbills.services.ledger_store import LedgerStore
from waterbills.services.penalty_service import assessed_penalty

logger = logging.getLogger(__name__)


class ReversedTransaction(NamedTuple):
    """Outcome of a reversal request."""

    transaction_id: str
    affected_periods: list[str]
    reversed: bool


class ReversalEngine:
    """Undoes a recorded payment inside the caller's transaction."""

    def __init__(
        self,
        store: LedgerStore,
        credit_service: CreditService,
        cache_builder: AggregationCacheBuilder,
        clock: Clock | None = None,
        penalty_config: PenaltyConfig | None = None,
    ):
        self.store = store
        self.credit_service = credit_service
        self.cache_builder = cache_builder
        self.clock = clock or SystemClock()
        self.penalty_config = penalty_config or PenaltyConfig()

    def reverse(self, transaction_id: str, missing_ok: bool = True) -> ReversedTransaction:
        """Reverse a transaction.

        Args:
            transaction_id: Transaction to reverse
            missing_ok: Treat an unknown id as an already reversed payment

        Returns:
            ReversedTransaction; reversed is False when nothing was found

        Raises:
            NotFound: Unknown id and missing_ok is False
            LedgerIntegrityError: Stored state does not match the record
            InsufficientCredit: Created credit has been spent since
            CacheRebuildFailure: Cache refresh failed; the caller must roll back
        """
        transaction = self.store.get_transaction(transaction_id, lock=True)
        if transaction is None:
            if not missing_ok:
                raise NotFound(f"Transaction {transaction_id} not found", transaction_id=transaction_id)
            logger.info(f"Transaction {transaction_id} not found, nothing to reverse")
            return ReversedTransaction(transaction_id, [], False)

        unit_id = transaction.unit_id
        reversals = self._match_bill_payments(transaction)

        for bill, payment in reversals:
            latest = bill.payments[-1] is payment
            bill.paid_base_cents -= payment.base_cents
            bill.paid_penalty_cents -= payment.penalty_cents
            bill.payments.remove(payment)
            self._restore_penalty(bill, payment, latest)

        if transaction.credit_history_refs:
            ledger = self.credit_service.get_ledger(unit_id, transaction.credit_fiscal_year, lock=True)
            if ledger is None:
                raise LedgerIntegrityError(
                    f"Credit ledger FY{transaction.credit_fiscal_year} of unit {unit_id} "
                    f"missing for transaction {transaction_id}",
                    transaction_id=transaction_id,
                )
            self.credit_service.remove_entries(ledger, list(transaction.credit_history_refs))
            if not ledger.history:
                self.store.delete_credit_ledger(ledger)

        affected_periods = [line.period_id for line in transaction.allocations]
        AuditService.log(
            self.store.db,
            self.store.client_id,
            "transaction",
            transaction_id,
            "reverse",
            {
                "unit_id": unit_id,
                "amount_cents": transaction.amount_cents,
                "credit_used_cents": transaction.credit_used_cents,
                "credit_created_cents": transaction.credit_created_cents,
                "periods": affected_periods,
            },
        )
        self.store.delete_transaction(transaction)

        self.store.flush()
        self.cache_builder.refresh_unit(unit_id, affected_periods)

        logger.info(
            f"Reversed transaction {transaction_id} for unit {unit_id}: "
            f"periods={affected_periods}, credit_refs={len(transaction.credit_history_refs)}"
        )
        return ReversedTransaction(transaction_id, affected_periods, True)

    def _restore_penalty(self, bill: Bill, payment: BillPayment, latest: bool) -> None:
        """Undo the penalty re-assessment the payment made, then refresh status.

        The earlier charge comes back only if this was the bill's latest
        payment and nothing has changed the penalty since; otherwise the bill
        is re-assessed against its restored base.
        """
        if latest and bill.penalty_cents == payment.penalty_after_cents:
            bill.penalty_cents = max(payment.penalty_before_cents, bill.paid_penalty_cents)
        else:
            bill.recompute_status()
            bill.penalty_cents = assessed_penalty(bill, self.clock.today(), self.penalty_config)
        bill.recompute_status()

    def _match_bill_payments(self, transaction: LedgerTransaction) -> list[tuple]:
        """Pair every allocation line with its bill and payment line.

        Checks everything before anything is changed.
        """
        pairs = []
        for line in transaction.allocations:
            bill = self.store.get_bill(transaction.unit_id, line.period_id, lock=True)
            if bill is None:
                raise LedgerIntegrityError(
                    f"Bill {line.period_id} of unit {transaction.unit_id} missing "
                    f"for transaction {transaction.transaction_id}",
                    transaction_id=transaction.transaction_id,
                    period_id=line.period_id,
                )

            payment: BillPayment | None = next(
                (
                    p
                    for p in bill.payments
                    if p.transaction_id == transaction.transaction_id
                    and p.base_cents == line.base_cents
                    and p.penalty_cents == line.penalty_cents
                ),
                None,
            )
            if payment is None:
                raise LedgerIntegrityError(
                    f"Payment line of transaction {transaction.transaction_id} "
                    f"not found on bill {line.period_id}",
                    transaction_id=transaction.transaction_id,
                    period_id=line.period_id,
                )
            if payment.base_cents > bill.paid_base_cents or payment.penalty_cents > bill.paid_penalty_cents:
                raise LedgerIntegrityError(
                    f"Bill {line.period_id} paid totals are below the amounts of "
                    f"transaction {transaction.transaction_id}",
                    transaction_id=transaction.transaction_id,
                    period_id=line.period_id,
                )
            pairs.append((bill, payment))
        return pairs


__all__ = ["ReversalEngine", "ReversedTransaction"]
