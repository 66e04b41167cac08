"""Integration tests for recording water bill payments."""

from datetime import date

import pytest
from sqlalchemy import func, select

from waterbills.models.audit_log import AuditLog
from waterbills.models.ledger_transaction import LedgerTransaction
from waterbills.services.errors import InsufficientCredit, InvalidAmount, InvalidPeriod, NotFound


@pytest.mark.integration
class TestRecordPayment:
    def test_partial_payment_applies_to_base_only(self, ledger):
        """15000 paid on base 30000 with a 2813 penalty."""
        ledger.add_bill("101", "2026-00", 30000, penalty_cents=2813)

        result = ledger.record_payment("101", 15000)

        assert result.allocations == [
            {
                "periodId": "2026-00",
                "fiscalYear": 2026,
                "baseCents": 15000,
                "penaltyCents": 0,
                "resultingStatus": "partial",
            }
        ]
        assert result.credit_created_cents == 0

        bill = ledger.get_bill("101", "2026-00")
        assert bill["paidBaseCents"] == 15000
        assert bill["paidPenaltyCents"] == 0
        assert bill["status"] == "partial"

        outstanding = ledger.get_outstanding("101")
        assert [(o.period_id, o.unpaid_base_cents) for o in outstanding] == [("2026-00", 15000)]

    def test_penalty_on_remaining_base_after_partial_payment(self, ledger):
        ledger.add_bill("101", "2026-00", 30000, penalty_cents=2813)
        ledger.record_payment("101", 15000)

        cell = ledger.get_aggregated_view(2026).per_month["2026-00"]["101"]
        # 5% of the remaining 15000 base for one overdue month
        assert cell["displayPenalties"] == 750
        assert cell["unpaidBase"] == 15000
        assert cell["displayDue"] == 15750
        assert cell["status"] == "partial"

    def test_outstanding_matches_cache_after_partial_payment(self, ledger):
        ledger.add_bill("101", "2026-00", 30000, penalty_cents=2813)
        ledger.record_payment("101", 15000)

        assert ledger.get_bill("101", "2026-00")["penaltyCents"] == 750
        cell = ledger.get_aggregated_view(2026).per_month["2026-00"]["101"]
        [owed] = ledger.get_outstanding("101")
        assert (owed.unpaid_base_cents, owed.unpaid_penalty_cents) == (15000, 750)
        assert owed.unpaid_penalty_cents == cell["displayPenalties"]
        assert owed.unpaid_base_cents + owed.unpaid_penalty_cents == cell["displayDue"]

    def test_paying_displayed_due_settles_bill(self, ledger):
        ledger.add_bill("101", "2026-00", 30000, penalty_cents=2813)
        ledger.record_payment("101", 15000)
        due = ledger.get_aggregated_view(2026).per_month["2026-00"]["101"]["displayDue"]

        result = ledger.record_payment("101", due)

        assert result.allocations[0]["baseCents"] == 15000
        assert result.allocations[0]["penaltyCents"] == 750
        assert result.allocations[0]["resultingStatus"] == "paid"
        assert result.credit_created_cents == 0
        assert ledger.get_bill("101", "2026-00")["status"] == "paid"
        assert ledger.get_outstanding("101") == []
        cell = ledger.get_aggregated_view(2026).per_month["2026-00"]["101"]
        assert (cell["displayDue"], cell["status"]) == (0, "paid")

    def test_overpayment_pays_both_bills_and_creates_credit(self, ledger):
        """Bills due 22050 and 21000, payment 108050."""
        ledger.add_bill("101", "2026-00", 21000, penalty_cents=1050)
        ledger.add_bill("101", "2026-01", 21000)

        result = ledger.record_payment("101", 108050)

        assert [(a["periodId"], a["baseCents"], a["penaltyCents"]) for a in result.allocations] == [
            ("2026-00", 21000, 1050),
            ("2026-01", 21000, 0),
        ]
        assert result.credit_created_cents == 65000
        assert result.affected_periods == ["2026-00", "2026-01"]
        assert ledger.get_bill("101", "2026-00")["status"] == "paid"
        assert ledger.get_bill("101", "2026-01")["status"] == "paid"
        assert ledger.get_credit_balance("101") == 65000
        assert ledger.get_outstanding("101") == []

    def test_prior_period_debt_payable_without_current_charge(self, ledger):
        """Nothing billed this period, 80000 overdue from before."""
        ledger.add_bill("101", "2026-00", 80000)
        ledger.add_bill("101", "2026-01", 0)

        outstanding = ledger.get_outstanding("101")
        assert [(o.period_id, o.unpaid_base_cents) for o in outstanding] == [("2026-00", 80000)]

        result = ledger.record_payment("101", 80000)
        assert [a["periodId"] for a in result.allocations] == ["2026-00"]
        assert result.credit_created_cents == 0
        assert ledger.get_outstanding("101") == []

    def test_oldest_bill_paid_first_newer_untouched(self, ledger):
        ledger.add_bill("101", "2026-00", 10000)
        ledger.add_bill("101", "2026-01", 10000)

        ledger.record_payment("101", 10000)

        assert ledger.get_bill("101", "2026-00")["status"] == "paid"
        newer = ledger.get_bill("101", "2026-01")
        assert newer["paidBaseCents"] == 0
        assert newer["status"] == "unpaid"
        assert newer["payments"] == []

    @pytest.mark.parametrize("payment", [1, 9999, 10500, 25000, 100000])
    def test_money_is_conserved(self, ledger, payment):
        ledger.adjust_credit("101", 3000, "Opening credit")
        ledger.add_bill("101", "2026-00", 10000, penalty_cents=500)
        ledger.add_bill("101", "2026-01", 10000)

        result = ledger.record_payment("101", payment, use_credit_cents=3000)

        allocated = sum(a["baseCents"] + a["penaltyCents"] for a in result.allocations)
        assert allocated + result.credit_created_cents == payment + 3000
        assert ledger.get_credit_balance("101") == result.credit_created_cents

    def test_bills_hint_limits_allocation(self, ledger):
        ledger.add_bill("101", "2026-00", 10000)
        ledger.add_bill("101", "2026-01", 10000)

        result = ledger.record_payment("101", 10000, bills_hint=["2026-01"])

        assert [a["periodId"] for a in result.allocations] == ["2026-01"]
        assert ledger.get_bill("101", "2026-00")["status"] == "unpaid"

    def test_unknown_hinted_period_rejected(self, ledger):
        ledger.add_bill("101", "2026-00", 10000)
        with pytest.raises(NotFound):
            ledger.record_payment("101", 10000, bills_hint=["2026-05"])
        with pytest.raises(InvalidPeriod):
            ledger.record_payment("101", 10000, bills_hint=["July"])

    def test_no_bills_everything_becomes_credit(self, ledger):
        result = ledger.record_payment("101", 5000, notes="Advance")

        assert result.allocations == []
        assert result.credit_created_cents == 5000
        transaction = ledger.get_transaction(result.transaction_id)
        assert transaction["description"] == "Water bill credit - Unit 101"
        assert transaction["notes"] == "Water bill payment for Unit 101 - No bills due - Advance - $50.00 credit"

    def test_transaction_metadata_and_notes(self, ledger):
        ledger.add_bill("203", "2026-00", 440000, penalty_cents=60000)

        result = ledger.record_payment(
            "203",
            500000,
            payment_date=date(2025, 8, 3),
            payment_method="transfer",
            reference="BANK-991",
            notes="Test payment",
        )

        transaction = ledger.get_transaction(result.transaction_id)
        assert transaction["paymentDate"] == "2025-08-03"
        assert transaction["paymentMethod"] == "transfer"
        assert transaction["reference"] == "BANK-991"
        assert transaction["description"] == "Water bill payment - Unit 203"
        assert transaction["notes"] == (
            "Water bill payment for Unit 203 - Jul 2025 - Test payment - $4,400.00 charges + $600.00 penalties"
        )
        assert result.transaction_id.startswith("2025-08-03_")

    def test_credit_use_records_linked_history_entry(self, ledger):
        ledger.adjust_credit("101", 50000, "Opening credit")
        ledger.add_bill("101", "2026-01", 10000)

        result = ledger.record_payment("101", 0, use_credit_cents=10000)

        transaction = ledger.get_transaction(result.transaction_id)
        history = ledger.get_credit_history("101")
        assert history[0]["amount"] == -10000
        assert history[0]["balance"] == 40000
        assert history[0]["transactionId"] == result.transaction_id
        assert transaction["creditHistoryRefs"] == [history[0]["id"]]
        assert transaction["creditUsedCents"] == 10000

    def test_audit_row_written(self, ledger, db_session):
        ledger.add_bill("101", "2026-00", 10000)
        result = ledger.record_payment("101", 10000)

        audit = db_session.execute(
            select(AuditLog).where(AuditLog.entity_id == result.transaction_id)
        ).scalar_one()
        assert audit.action == "record"
        assert audit.changes["periods"] == ["2026-00"]


@pytest.mark.integration
class TestRecordPaymentRejections:
    def test_negative_amounts(self, ledger):
        with pytest.raises(InvalidAmount):
            ledger.record_payment("101", -1)
        with pytest.raises(InvalidAmount):
            ledger.record_payment("101", 100, use_credit_cents=-1)

    def test_nothing_to_allocate(self, ledger):
        with pytest.raises(InvalidAmount):
            ledger.record_payment("101", 0, use_credit_cents=0)

    def test_insufficient_credit_writes_nothing(self, ledger, db_session):
        ledger.adjust_credit("101", 5000, "Opening credit")
        ledger.add_bill("101", "2026-00", 10000)

        with pytest.raises(InsufficientCredit) as exc_info:
            ledger.record_payment("101", 1000, use_credit_cents=6000)

        assert exc_info.value.available_cents == 5000
        assert exc_info.value.requested_cents == 6000
        assert ledger.get_bill("101", "2026-00")["paidBaseCents"] == 0
        assert ledger.get_credit_balance("101") == 5000
        count = db_session.execute(select(func.count()).select_from(LedgerTransaction)).scalar_one()
        assert count == 0

    def test_preview_does_not_write(self, ledger):
        ledger.add_bill("101", "2026-00", 10000)

        preview = ledger.preview_payment("101", 15000)

        assert preview.transaction_id is None
        assert preview.credit_created_cents == 5000
        assert ledger.get_bill("101", "2026-00")["status"] == "unpaid"
        assert ledger.get_credit_balance("101") == 0
