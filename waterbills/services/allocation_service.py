"""Payment allocation across a unit's outstanding water bills.

Cascade order:
- Oldest bill first (fiscal year, then fiscal period)
- Within a bill, unpaid base charge before unpaid penalty
- Funds left after every bill is satisfied become new credit

The allocator is pure: it reads bill amounts and returns a plan. Applying
the plan is the transaction recorder's job.
"""

from typing import NamedTuple

from waterbills.models.bill import Bill, BillStatus, derive_status
from waterbills.services.errors import InvalidAmount


class Allocation(NamedTuple):
    """Portion of the available funds applied to one bill."""

    bill: Bill
    base_cents: int
    penalty_cents: int
    resulting_status: BillStatus

    @property
    def period_id(self) -> str:
        return self.bill.period_id

    @property
    def fiscal_year(self) -> int:
        return self.bill.fiscal_year

    @property
    def total_cents(self) -> int:
        return self.base_cents + self.penalty_cents

    def to_dict(self) -> dict:
        return {
            "periodId": self.bill.period_id,
            "fiscalYear": self.bill.fiscal_year,
            "baseCents": self.base_cents,
            "penaltyCents": self.penalty_cents,
            "resultingStatus": self.resulting_status.value,
        }


class AllocationPlan(NamedTuple):
    """Allocator output: allocation lines plus leftover credit."""

    allocations: list[Allocation]
    credit_created_cents: int

    @property
    def allocated_cents(self) -> int:
        return sum(line.total_cents for line in self.allocations)

    @property
    def base_cents(self) -> int:
        return sum(line.base_cents for line in self.allocations)

    @property
    def penalty_cents(self) -> int:
        return sum(line.penalty_cents for line in self.allocations)


def _bill_age_key(bill: Bill):
    return (bill.fiscal_year, bill.period_id, bill.due_date)


class PaymentAllocator:
    """Cascades funds across outstanding bills."""

    def allocate(self, bills: list[Bill], funds_cents: int) -> AllocationPlan:
        """Distribute funds oldest-first, base before penalty.

        Ensures: allocated + credit_created == funds_cents (no money lost or
        created), and no line exceeds what its bill still owes.

        Args:
            bills: Outstanding bills of one unit (any order)
            funds_cents: New payment plus credit authorized for use

        Returns:
            AllocationPlan; zero funds yields an empty plan

        Raises:
            InvalidAmount: If funds_cents is negative
        """
        if funds_cents < 0:
            raise InvalidAmount(f"Funds to allocate must not be negative, got {funds_cents}")

        remaining = funds_cents
        allocations: list[Allocation] = []

        for bill in sorted(bills, key=_bill_age_key):
            if remaining == 0:
                break

            base = min(remaining, max(0, bill.unpaid_base_cents))
            remaining -= base
            penalty = min(remaining, max(0, bill.unpaid_penalty_cents))
            remaining -= penalty

            if base == 0 and penalty == 0:
                continue

            status = derive_status(
                bill.base_charge_cents,
                bill.penalty_cents,
                bill.paid_base_cents + base,
                bill.paid_penalty_cents + penalty,
            )
            allocations.append(Allocation(bill, base, penalty, status))

        return AllocationPlan(allocations=allocations, credit_created_cents=remaining)


__all__ = ["Allocation", "AllocationPlan", "PaymentAllocator"]
