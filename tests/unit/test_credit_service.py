"""Unit tests for credit ledger mutations."""

import pytest

from waterbills.services.credit_service import CreditService
from waterbills.services.errors import InsufficientCredit, LedgerIntegrityError


@pytest.fixture
def service(store, clock):
    return CreditService(store, clock)


@pytest.fixture
def ledger(service, db_session):
    ledger = service.get_ledger("101", create=True)
    db_session.flush()
    return ledger


@pytest.mark.unit
class TestCreditService:
    def test_current_fiscal_year_follows_clock(self, service):
        # 2025-08-05 falls in FY2026
        assert service.current_fiscal_year() == 2026

    def test_balance_is_zero_without_ledger(self, service):
        assert service.get_balance("999") == 0
        assert service.get_history("999") == []

    def test_append_updates_balance_and_running_total(self, service, ledger):
        first = service.append_entry(ledger, 50000, "Opening credit")
        second = service.append_entry(ledger, -12000, "Used", transaction_id="t-1")

        assert ledger.balance_cents == 38000
        assert (first.sequence, first.resulting_balance_cents) == (1, 50000)
        assert (second.sequence, second.resulting_balance_cents) == (2, 38000)
        assert second.transaction_id == "t-1"
        assert first.entry_id != second.entry_id

    def test_append_cannot_go_negative(self, service, ledger):
        service.append_entry(ledger, 1000, "Opening credit")
        with pytest.raises(InsufficientCredit) as exc_info:
            service.append_entry(ledger, -1500, "Too much")

        assert exc_info.value.available_cents == 1000
        assert exc_info.value.requested_cents == 1500
        assert ledger.balance_cents == 1000

    def test_remove_entries_by_id_recomputes_running_balances(self, service, ledger, db_session):
        opening = service.append_entry(ledger, 50000, "Opening credit")
        used = service.append_entry(ledger, -10000, "Used", transaction_id="t-1")
        later = service.append_entry(ledger, 2500, "Overpayment", transaction_id="t-2")
        db_session.flush()

        service.remove_entries(ledger, [used.entry_id])

        assert [entry.entry_id for entry in ledger.history] == [opening.entry_id, later.entry_id]
        assert [entry.resulting_balance_cents for entry in ledger.history] == [50000, 52500]
        assert ledger.balance_cents == 52500

    def test_remove_unknown_entry_changes_nothing(self, service, ledger):
        service.append_entry(ledger, 50000, "Opening credit")
        with pytest.raises(LedgerIntegrityError):
            service.remove_entries(ledger, ["credit_missing"])
        assert ledger.balance_cents == 50000
        assert len(ledger.history) == 1

    def test_remove_spent_credit_rejected(self, service, ledger):
        created = service.append_entry(ledger, 20000, "Overpayment", transaction_id="t-1")
        service.append_entry(ledger, -15000, "Used", transaction_id="t-2")

        with pytest.raises(InsufficientCredit):
            service.remove_entries(ledger, [created.entry_id])
        assert ledger.balance_cents == 5000
        assert len(ledger.history) == 2

    def test_history_most_recent_first_with_limit(self, service, ledger):
        for amount in (100, 200, 300):
            service.append_entry(ledger, amount, f"Credit {amount}")

        history = service.get_history("101", limit=2)
        assert [entry.delta_cents for entry in history] == [300, 200]

    def test_adjust_creates_ledger_and_entry(self, service, db_session):
        entry = service.adjust("202", 7500, "Refund of duplicate payment")
        db_session.flush()

        assert entry.source == "admin"
        assert service.get_balance("202") == 7500
