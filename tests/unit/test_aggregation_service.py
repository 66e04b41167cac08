"""Unit tests for cache cell derivation and view assembly."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from waterbills.models.bill import Bill, derive_status
from waterbills.services.aggregation_service import AggregatedView, derive_cell
from waterbills.services.config import PenaltyConfig

CONFIG = PenaltyConfig(monthly_rate_percent=Decimal("5"), grace_days=10)
AS_OF = date(2025, 8, 5)


def make_bill(base, penalty=0, paid_base=0, paid_penalty=0, due=date(2025, 7, 1)):
    return Bill(
        client_id="AVII",
        fiscal_year=2026,
        period_id="2026-00",
        unit_id="101",
        base_charge_cents=base,
        penalty_cents=penalty,
        paid_base_cents=paid_base,
        paid_penalty_cents=paid_penalty,
        status=derive_status(base, penalty, paid_base, paid_penalty),
        due_date=due,
    )


@pytest.mark.unit
class TestDeriveCell:
    def test_paid_bill(self):
        assert tuple(derive_cell(make_bill(10000, 500, 10000, 500), AS_OF, CONFIG)) == (0, 0, 0, "paid")

    def test_overdue_bill(self):
        cell = derive_cell(make_bill(30000), AS_OF, CONFIG)
        assert cell.display_penalty_cents == 1500
        assert cell.display_due_cents == 31500
        assert cell.unpaid_base_cents == 30000

    def test_penalty_follows_remaining_base(self):
        cell = derive_cell(make_bill(30000, penalty=2813, paid_base=15000), AS_OF, CONFIG)
        assert cell.display_penalty_cents == 750
        assert cell.display_due_cents == 15750
        assert cell.status == "partial"

    def test_paid_penalty_not_due_again(self):
        cell = derive_cell(make_bill(30000, penalty=1500, paid_penalty=1000), AS_OF, CONFIG)
        assert cell.display_penalty_cents == 1500
        assert cell.display_due_cents == 30500

    def test_within_grace_period(self):
        cell = derive_cell(make_bill(10000, due=date(2025, 8, 1)), AS_OF, CONFIG)
        assert tuple(cell) == (10000, 0, 10000, "unpaid")


@pytest.mark.unit
class TestAggregatedView:
    @pytest.fixture
    def view(self):
        return AggregatedView(
            client_id="AVII",
            fiscal_year=2026,
            per_month={
                "2026-00": {
                    "101": {"displayDue": 0, "displayPenalties": 0, "unpaidBase": 0, "status": "paid"},
                    "102": {"displayDue": 21000, "displayPenalties": 1000, "unpaidBase": 20000, "status": "unpaid"},
                },
                "2026-01": {
                    "101": {"displayDue": 30000, "displayPenalties": 0, "unpaidBase": 30000, "status": "unpaid"},
                },
            },
            last_recomputed_at=datetime(2025, 8, 5, 12, 0, tzinfo=timezone.utc),
        )

    def test_unit_totals(self, view):
        assert view.unit_totals() == {
            "101": {"displayDue": 30000, "displayPenalties": 0},
            "102": {"displayDue": 21000, "displayPenalties": 1000},
        }

    def test_snapshot_excludes_timestamp(self, view):
        other = AggregatedView(client_id="AVII", fiscal_year=2026, per_month=view.per_month)
        assert view.snapshot() == other.snapshot()

    def test_to_dict(self, view):
        data = view.to_dict()
        assert set(data) == {"fiscalYear", "perMonth", "unitTotals", "lastRecomputedAt"}
        assert data["lastRecomputedAt"] == "2025-08-05T12:00:00+00:00"
