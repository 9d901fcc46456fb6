# Overview: Cash Handover Lifecycle (snapshot, submit, cancel, resolve).

"""
Cash Handover Service

WHY: A driver carries cash from completed CASH deliveries, minus cash-paid
approved expenses. A handover freezes that pool into one settleable unit so
every item is counted exactly once.

LIFECYCLE:
- PENDING -> VERIFIED | ADJUSTED: discrepancy posted to the driver ledger
- PENDING -> REJECTED: items unlinked back into the pool
- PENDING -> cancelled: items unlinked and the row deleted

INVARIANTS:
- At most one PENDING handover per driver (driver lock + check + partial index)
- Each order/expense links to at most one handover; linking happens in the
  same transaction as the insert, guarded by cash_handover_id IS NULL
- discrepancy = expected_cash - actual_cash (positive = shortage)
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import DuplicatePendingHandover, NotFound, NotPending
from ..models import CashHandover, DriverProfile, Expense, Order
from ..models.finance import (
    EXPENSE_APPROVED,
    EXPENSE_CASH_ON_HAND,
    EXPENSE_PENDING,
    HANDOVER_PENDING,
    HANDOVER_REJECTED,
    REF_HANDOVER,
)
from ..models.orders import ORDER_COMPLETED, PAYMENT_CASH
from ..money import to_money, ZERO
from ..validation import HandoverResolution, HandoverSubmission
from hydroflow.time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import UnitOfWork, run_in_transaction
from .ledger_service import post_driver_entry
from .notification_service import emit_handover_event


# =============================================================================
# SNAPSHOT
# =============================================================================

def _unlinked_cash_orders(query_factory, driver_id: int):
    return query_factory(Order).filter(
        Order.driver_id == driver_id,
        Order.status == ORDER_COMPLETED,
        Order.payment_method == PAYMENT_CASH,
        Order.cash_handover_id.is_(None),
    )


def _unlinked_cash_expenses(query_factory, driver_id: int, status: str = EXPENSE_APPROVED):
    return query_factory(Expense).filter(
        Expense.driver_id == driver_id,
        Expense.status == status,
        Expense.payment_method == EXPENSE_CASH_ON_HAND,
        Expense.cash_handover_id.is_(None),
    )


def _pending_handover(query_factory, driver_id: int) -> CashHandover | None:
    return query_factory(CashHandover).filter(
        CashHandover.driver_id == driver_id,
        CashHandover.status == HANDOVER_PENDING,
    ).first()


def _sum(values) -> Decimal:
    return to_money(sum((to_money(v) for v in values), ZERO))


def compute_pending_snapshot(driver_id: int) -> dict:
    """
    Read-only view of what a driver would hand over right now.

    The pool is every unlinked item regardless of date, so cash from earlier
    days that was never handed over is still counted.
    """
    uow = UnitOfWork()
    if uow.get(DriverProfile, driver_id) is None:
        raise NotFound("driver", driver_id)

    orders = _unlinked_cash_orders(uow.query, driver_id).order_by(Order.id).all()
    expenses = _unlinked_cash_expenses(uow.query, driver_id).order_by(Expense.id).all()
    unapproved = _unlinked_cash_expenses(uow.query, driver_id, EXPENSE_PENDING).all()
    pending = _pending_handover(uow.query, driver_id)

    gross = _sum(o.cash_collected for o in orders)
    expense_total = _sum(e.amount for e in expenses)

    return {
        "driver_id": driver_id,
        "gross_cash": str(gross),
        "expense_total": str(expense_total),
        "expected_cash": str(to_money(gross - expense_total)),
        "cash_order_count": len(orders),
        "expense_count": len(expenses),
        "pending_expense_total": str(_sum(e.amount for e in unapproved)),
        "pending_expense_count": len(unapproved),
        "pending_handover": pending.to_dict() if pending else None,
        "orders": [o.to_dict(include_items=False) for o in orders],
        "expenses": [e.to_dict() for e in expenses],
    }


# =============================================================================
# LINKING
# =============================================================================

def _link(uow: UnitOfWork, model, ids: list[int], handover_id: int):
    """Link rows still in the pool; a short count means another handover took some."""
    if not ids:
        return
    linked = uow.query(model).filter(
        model.id.in_(ids),
        model.cash_handover_id.is_(None),
    ).update({model.cash_handover_id: handover_id}, synchronize_session=False)
    if linked != len(ids):
        raise StaleDataError(
            f"{model.__tablename__}: linked {linked} of {len(ids)} snapshotted rows to handover {handover_id}"
        )


def _unlink_all(uow: UnitOfWork, handover_id: int) -> tuple[int, int]:
    orders = uow.query(Order).filter(Order.cash_handover_id == handover_id).update(
        {Order.cash_handover_id: None}, synchronize_session=False
    )
    expenses = uow.query(Expense).filter(Expense.cash_handover_id == handover_id).update(
        {Expense.cash_handover_id: None}, synchronize_session=False
    )
    return orders, expenses


def _handover_notice(handover: CashHandover) -> dict:
    return {
        "handover_id": handover.id,
        "driver_id": handover.driver_id,
        "status": handover.status,
        "discrepancy": str(to_money(handover.discrepancy)),
    }


# =============================================================================
# SUBMIT / CANCEL / RESOLVE
# =============================================================================

def submit_handover(request: HandoverSubmission) -> CashHandover:
    """
    Freeze the driver's unlinked cash pool into a PENDING handover.

    Raises:
        NotFound, DuplicatePendingHandover
    """
    def _op(uow: UnitOfWork) -> CashHandover:
        driver = uow.get(DriverProfile, request.driver_id, lock=True)
        if driver is None:
            raise NotFound("driver", request.driver_id)

        existing = _pending_handover(uow.query, driver.id)
        if existing is not None:
            raise DuplicatePendingHandover(driver.id, existing.id)

        orders = uow.lock(_unlinked_cash_orders(uow.query, driver.id)).all()
        expenses = uow.lock(_unlinked_cash_expenses(uow.query, driver.id)).all()

        gross = _sum(o.cash_collected for o in orders)
        expense_total = _sum(e.amount for e in expenses)
        expected = to_money(gross - expense_total)
        actual = to_money(request.actual_cash)

        handover = CashHandover(
            driver_id=driver.id,
            handover_date=utcnow().date(),
            status=HANDOVER_PENDING,
            gross_cash=gross,
            expense_total=expense_total,
            expected_cash=expected,
            actual_cash=actual,
            discrepancy=to_money(expected - actual),
            cash_order_count=len(orders),
            expense_count=len(expenses),
            driver_notes=request.notes,
            shift_start=request.shift_start,
            shift_end=request.shift_end,
            submitted_at=utcnow(),
        )
        uow.add(handover)
        try:
            uow.flush()
        except IntegrityError:
            raise DuplicatePendingHandover(driver.id) from None

        _link(uow, Order, [o.id for o in orders], handover.id)
        _link(uow, Expense, [e.id for e in expenses], handover.id)

        append_audit_event(
            uow,
            event_type="handover.submitted",
            entity_type="cash_handover",
            entity_id=handover.id,
            actor=str(driver.id),
            payload={
                "expected_cash": str(expected),
                "actual_cash": str(actual),
                "discrepancy": str(handover.discrepancy),
            },
        )
        notice = _handover_notice(handover)
        uow.on_commit(lambda: emit_handover_event("handover.submitted", **notice))
        return handover

    handover = run_in_transaction(_op)
    current_app.logger.info(
        "Cash handover %s submitted by driver %s (expected %s, actual %s)",
        handover.id, handover.driver_id, handover.expected_cash, handover.actual_cash,
    )
    return handover


def cancel_handover(handover_id: int, actor: str | None = None):
    """Withdraw a PENDING handover; its items return to the pool."""
    def _op(uow: UnitOfWork):
        handover = uow.get(CashHandover, handover_id, lock=True)
        if handover is None:
            raise NotFound("cash_handover", handover_id)
        if handover.status != HANDOVER_PENDING:
            raise NotPending("cash_handover", handover.id, handover.status)

        _unlink_all(uow, handover.id)
        notice = _handover_notice(handover)
        notice["status"] = "CANCELLED"
        append_audit_event(
            uow,
            event_type="handover.cancelled",
            entity_type="cash_handover",
            entity_id=handover.id,
            actor=actor,
        )
        uow.delete(handover)
        uow.flush()
        uow.on_commit(lambda: emit_handover_event("handover.cancelled", **notice))

    run_in_transaction(_op)
    current_app.logger.info("Cash handover %s cancelled", handover_id)


def resolve_handover(request: HandoverResolution) -> CashHandover:
    """
    Settle a PENDING handover.

    VERIFIED / ADJUSTED post the stored discrepancy to the driver ledger
    (shortage = debit, excess = credit, zero = nothing). REJECTED unlinks
    every item. adjustment_amount is recorded for ADJUSTED only.

    Raises:
        NotFound, NotPending
    """
    def _op(uow: UnitOfWork) -> CashHandover:
        handover = uow.get(CashHandover, request.handover_id, lock=True)
        if handover is None:
            raise NotFound("cash_handover", request.handover_id)
        if handover.status != HANDOVER_PENDING:
            raise NotPending("cash_handover", handover.id, handover.status)

        handover.status = request.decision
        handover.verified_by = request.verified_by
        handover.verified_at = utcnow()
        if request.admin_notes is not None:
            handover.admin_notes = request.admin_notes
        if request.adjustment_amount is not None:
            handover.adjustment_amount = request.adjustment_amount

        ledger_entry = None
        if request.decision == HANDOVER_REJECTED:
            _unlink_all(uow, handover.id)
        else:
            discrepancy = to_money(handover.discrepancy)
            day = handover.handover_date.isoformat()
            if discrepancy != ZERO:
                driver = uow.get(DriverProfile, handover.driver_id, lock=True)
                if discrepancy > 0:
                    ledger_entry = post_driver_entry(
                        uow, driver, -discrepancy, f"Cash Shortage - {day}",
                        reference_type=REF_HANDOVER, reference_id=handover.id,
                    )
                else:
                    ledger_entry = post_driver_entry(
                        uow, driver, abs(discrepancy), f"Cash Excess - {day}",
                        reference_type=REF_HANDOVER, reference_id=handover.id,
                    )

        uow.flush()
        append_audit_event(
            uow,
            event_type="handover.resolved",
            entity_type="cash_handover",
            entity_id=handover.id,
            actor=request.verified_by,
            note=request.admin_notes[:255] if request.admin_notes else None,
            payload={
                "decision": request.decision,
                "discrepancy": str(to_money(handover.discrepancy)),
                "adjustment_amount": str(request.adjustment_amount) if request.adjustment_amount is not None else None,
                "driver_ledger_entry_id": ledger_entry.id if ledger_entry else None,
            },
        )
        notice = _handover_notice(handover)
        uow.on_commit(lambda: emit_handover_event("handover.resolved", **notice))
        return handover

    handover = run_in_transaction(_op)
    current_app.logger.info("Cash handover %s resolved as %s", handover.id, handover.status)
    return handover


# =============================================================================
# READS
# =============================================================================

def list_handovers(
    *,
    status: str | None = None,
    driver_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    q = CashHandover.query
    if status:
        q = q.filter(CashHandover.status == status)
    if driver_id:
        q = q.filter(CashHandover.driver_id == driver_id)
    if start:
        q = q.filter(CashHandover.handover_date >= start)
    if end:
        q = q.filter(CashHandover.handover_date <= end)

    total = q.count()
    rows = (
        q.order_by(CashHandover.submitted_at.desc(), CashHandover.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [h.to_dict() for h in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


def get_handover(handover_id: int) -> CashHandover:
    handover = CashHandover.query.filter_by(id=handover_id).first()
    if handover is None:
        raise NotFound("cash_handover", handover_id)
    return handover
