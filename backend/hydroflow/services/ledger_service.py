# Overview: Ledger Entry Writer for customer and driver running balances.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..errors import NotFound
from ..models import CustomerProfile, DriverProfile, LedgerEntry, DriverLedgerEntry
from ..money import to_money, ZERO
from .concurrency import UnitOfWork
"""
Ledger Invariants (authoritative)

- Entries are append-only; the running balance lives on the owner row
  (CustomerProfile.cash_balance / DriverProfile.ledger_balance).
- The owner row is locked and the entry appended in the same Unit of Work,
  so SUM(amount) == balance and balance_after chains entry to entry.
- Signed amounts: negative = debit (owner owes more), positive = credit.
- This module is the only writer of cash_balance and ledger_balance.
"""


def post_customer_entry(
    uow: UnitOfWork,
    customer: CustomerProfile,
    amount: Decimal,
    description: str,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> LedgerEntry:
    """
    Apply a signed amount to the customer's balance and append the entry.

    The caller must hold the customer row locked (``uow.get(..., lock=True)``).
    """
    amount = to_money(amount)
    balance_after = to_money(customer.cash_balance) + amount

    entry = LedgerEntry(
        customer_id=customer.id,
        amount=amount,
        balance_after=balance_after,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    uow.add(entry)
    customer.cash_balance = balance_after
    uow.flush()
    return entry


def post_driver_entry(
    uow: UnitOfWork,
    driver: DriverProfile,
    amount: Decimal,
    description: str,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> DriverLedgerEntry:
    """Driver-side twin of post_customer_entry (caller holds the driver lock)."""
    amount = to_money(amount)
    balance_after = to_money(driver.ledger_balance) + amount

    entry = DriverLedgerEntry(
        driver_id=driver.id,
        amount=amount,
        balance_after=balance_after,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    uow.add(entry)
    driver.ledger_balance = balance_after
    uow.flush()
    return entry


def get_customer_ledger(customer_id: int, limit: int = 200) -> list[LedgerEntry]:
    if db.session.get(CustomerProfile, customer_id) is None:
        raise NotFound("customer", customer_id)
    return (
        LedgerEntry.query.filter_by(customer_id=customer_id)
        .order_by(LedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def get_driver_ledger(driver_id: int, limit: int = 200) -> list[DriverLedgerEntry]:
    if db.session.get(DriverProfile, driver_id) is None:
        raise NotFound("driver", driver_id)
    return (
        DriverLedgerEntry.query.filter_by(driver_id=driver_id)
        .order_by(DriverLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def _check_chain(entries, stored_balance: Decimal) -> dict:
    running = ZERO
    broken_entry_ids = []
    for entry in entries:
        running += to_money(entry.amount)
        if to_money(entry.balance_after) != running:
            broken_entry_ids.append(entry.id)

    stored = to_money(stored_balance)
    return {
        "entry_count": len(entries),
        "ledger_sum": str(running),
        "stored_balance": str(stored),
        "drift": str(stored - running),
        "broken_entry_ids": broken_entry_ids,
        "consistent": stored == running and not broken_entry_ids,
    }


def verify_customer_ledger(customer_id: int) -> dict:
    """
    Recompute a customer's ledger and compare it with cash_balance.

    Reports drift between SUM(amount) and the stored balance, and every entry
    whose balance_after does not chain from its predecessor.
    """
    customer = db.session.get(CustomerProfile, customer_id)
    if customer is None:
        raise NotFound("customer", customer_id)
    entries = LedgerEntry.query.filter_by(customer_id=customer_id).order_by(LedgerEntry.id.asc()).all()
    result = _check_chain(entries, customer.cash_balance)
    result["customer_id"] = customer_id
    return result


def verify_driver_ledger(driver_id: int) -> dict:
    driver = db.session.get(DriverProfile, driver_id)
    if driver is None:
        raise NotFound("driver", driver_id)
    entries = DriverLedgerEntry.query.filter_by(driver_id=driver_id).order_by(DriverLedgerEntry.id.asc()).all()
    result = _check_chain(entries, driver.ledger_balance)
    result["driver_id"] = driver_id
    return result
