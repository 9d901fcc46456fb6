# Overview: Pytest coverage for ledger writing and verification.

from decimal import Decimal

import pytest

from hydroflow.errors import NotFound
from hydroflow.models import CustomerProfile, LedgerEntry
from hydroflow.services import ledger_service
from hydroflow.services.concurrency import run_in_transaction


def _post(customer_id, amount, description="entry"):
    def _op(uow):
        customer = uow.get(CustomerProfile, customer_id, lock=True)
        return ledger_service.post_customer_entry(uow, customer, Decimal(amount), description)
    return run_in_transaction(_op)


class TestCustomerLedger:

    def test_running_balance_chains(self, db_session, customer, reload):
        for amount in ("-200.00", "150.00", "-25.50"):
            _post(customer.id, amount)

        entries = LedgerEntry.query.filter_by(customer_id=customer.id).order_by(LedgerEntry.id).all()
        assert [e.balance_after for e in entries] == [Decimal("-200.00"), Decimal("-50.00"), Decimal("-75.50")]
        assert reload(customer).cash_balance == Decimal("-75.50")

    def test_reads_newest_first(self, db_session, customer):
        _post(customer.id, "-10.00", "first")
        _post(customer.id, "5.00", "second")

        entries = ledger_service.get_customer_ledger(customer.id)

        assert [e.description for e in entries] == ["second", "first"]

    def test_verify_detects_drift(self, db_session, customer):
        _post(customer.id, "-10.00")
        db_session.query(CustomerProfile).filter_by(id=customer.id).update({CustomerProfile.cash_balance: Decimal("99.00")})
        db_session.commit()

        check = ledger_service.verify_customer_ledger(customer.id)

        assert check["consistent"] is False
        assert check["drift"] == "109.00"

    def test_verify_detects_broken_chain(self, db_session, customer):
        entry = _post(customer.id, "-10.00")
        _post(customer.id, "-5.00")
        db_session.query(LedgerEntry).filter_by(id=entry.id).update({LedgerEntry.balance_after: Decimal("1.00")})
        db_session.commit()

        check = ledger_service.verify_customer_ledger(customer.id)

        assert check["broken_entry_ids"] == [entry.id]
        assert check["consistent"] is False

    def test_unknown_customer(self, db_session):
        with pytest.raises(NotFound):
            ledger_service.get_customer_ledger(31337)


class TestDriverLedger:

    def test_empty_driver_ledger_is_consistent(self, db_session, driver):
        check = ledger_service.verify_driver_ledger(driver.id)

        assert check["consistent"] is True
        assert check["entry_count"] == 0
