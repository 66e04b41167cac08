"""Unit tests for the payment allocator cascade."""

from datetime import date

import pytest

from waterbills.models.bill import Bill, BillStatus, derive_status
from waterbills.services.allocation_service import PaymentAllocator
from waterbills.services.errors import InvalidAmount


def make_bill(period_id, base, penalty=0, paid_base=0, paid_penalty=0):
    fiscal_year = int(period_id[:4])
    return Bill(
        client_id="AVII",
        fiscal_year=fiscal_year,
        period_id=period_id,
        unit_id="203",
        base_charge_cents=base,
        penalty_cents=penalty,
        paid_base_cents=paid_base,
        paid_penalty_cents=paid_penalty,
        status=derive_status(base, penalty, paid_base, paid_penalty),
        due_date=date(2025, 7, 1),
    )


@pytest.fixture
def allocator():
    return PaymentAllocator()


@pytest.mark.unit
class TestPaymentAllocator:
    def test_partial_payment_goes_to_base_only(self, allocator):
        """15000 against base 30000 + penalty 2813."""
        bill = make_bill("2026-00", 30000, penalty=2813)
        plan = allocator.allocate([bill], 15000)

        assert len(plan.allocations) == 1
        line = plan.allocations[0]
        assert line.base_cents == 15000
        assert line.penalty_cents == 0
        assert line.resulting_status == BillStatus.PARTIAL
        assert plan.credit_created_cents == 0

    def test_overpayment_becomes_credit(self, allocator):
        """Two bills due 22050 and 21000, payment 108050."""
        older = make_bill("2026-00", 21000, penalty=1050)
        newer = make_bill("2026-01", 21000)
        plan = allocator.allocate([newer, older], 108050)

        assert [(a.period_id, a.base_cents, a.penalty_cents) for a in plan.allocations] == [
            ("2026-00", 21000, 1050),
            ("2026-01", 21000, 0),
        ]
        assert all(a.resulting_status == BillStatus.PAID for a in plan.allocations)
        assert plan.credit_created_cents == 65000

    def test_oldest_first_leaves_newer_untouched(self, allocator):
        older = make_bill("2026-00", 10000)
        newer = make_bill("2026-01", 10000)
        plan = allocator.allocate([newer, older], 10000)

        assert [a.period_id for a in plan.allocations] == ["2026-00"]
        assert plan.credit_created_cents == 0

    def test_orders_across_fiscal_years(self, allocator):
        previous_year = make_bill("2025-11", 5000)
        current = make_bill("2026-00", 5000)
        plan = allocator.allocate([current, previous_year], 7000)

        assert [(a.period_id, a.base_cents) for a in plan.allocations] == [
            ("2025-11", 5000),
            ("2026-00", 2000),
        ]

    def test_base_before_penalty_within_bill(self, allocator):
        bill = make_bill("2026-00", 10000, penalty=500)
        plan = allocator.allocate([bill], 10200)

        line = plan.allocations[0]
        assert (line.base_cents, line.penalty_cents) == (10000, 200)
        assert line.resulting_status == BillStatus.PARTIAL

    def test_continues_from_previous_partial_payment(self, allocator):
        bill = make_bill("2026-00", 10000, penalty=500, paid_base=10000, paid_penalty=100)
        plan = allocator.allocate([bill], 1000)

        line = plan.allocations[0]
        assert (line.base_cents, line.penalty_cents) == (0, 400)
        assert line.resulting_status == BillStatus.PAID
        assert plan.credit_created_cents == 600

    def test_zero_funds_returns_empty_plan(self, allocator):
        plan = allocator.allocate([make_bill("2026-00", 10000)], 0)
        assert plan.allocations == []
        assert plan.credit_created_cents == 0

    def test_negative_funds_rejected(self, allocator):
        with pytest.raises(InvalidAmount):
            allocator.allocate([make_bill("2026-00", 10000)], -1)

    def test_no_bills_everything_to_credit(self, allocator):
        plan = allocator.allocate([], 2500)
        assert plan.allocations == []
        assert plan.credit_created_cents == 2500

    def test_skips_bills_with_nothing_owed(self, allocator):
        settled = make_bill("2026-00", 10000, paid_base=10000)
        open_bill = make_bill("2026-01", 10000)
        plan = allocator.allocate([settled, open_bill], 4000)

        assert [a.period_id for a in plan.allocations] == ["2026-01"]

    @pytest.mark.parametrize("funds", [1, 999, 10000, 10500, 20499, 20500, 50000])
    def test_conserves_money_and_never_overpays_a_bill(self, allocator, funds):
        bills = [make_bill("2026-00", 10000, penalty=500), make_bill("2026-01", 10000)]
        due = {b.period_id: b.unpaid_cents for b in bills}
        plan = allocator.allocate(bills, funds)

        assert plan.allocated_cents + plan.credit_created_cents == funds
        for line in plan.allocations:
            assert line.total_cents <= due[line.period_id]
