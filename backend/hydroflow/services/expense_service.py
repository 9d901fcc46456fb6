# Overview: Driver expenses feeding the cash handover snapshot.

from __future__ import annotations

from datetime import date
from decimal import Decimal

from flask import current_app

from ..errors import NotFound, NotPending, IllegalStateTransition
from ..models import DriverProfile, Expense
from ..models.finance import EXPENSE_PENDING
from hydroflow.time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import UnitOfWork, run_in_transaction


def record_expense(
    *,
    driver_id: int,
    amount: Decimal,
    category: str,
    description: str | None,
    expense_date: date,
    payment_method: str,
) -> Expense:
    """Record a driver expense as PENDING; it counts toward handovers only once APPROVED."""
    def _op(uow: UnitOfWork) -> Expense:
        if uow.get(DriverProfile, driver_id) is None:
            raise NotFound("driver", driver_id)
        expense = uow.add(
            Expense(
                driver_id=driver_id,
                amount=amount,
                category=category,
                description=description,
                expense_date=expense_date,
                status=EXPENSE_PENDING,
                payment_method=payment_method,
            )
        )
        uow.flush()
        append_audit_event(
            uow,
            event_type="expense.recorded",
            entity_type="expense",
            entity_id=expense.id,
            actor=str(driver_id),
            payload={"amount": str(amount), "payment_method": payment_method},
        )
        return expense

    return run_in_transaction(_op)


def review_expense(expense_id: int, *, decision: str, reviewed_by: str | None = None) -> Expense:
    """
    Approve or reject a PENDING expense.

    An expense already swept into a handover cannot be reviewed again.
    """
    def _op(uow: UnitOfWork) -> Expense:
        expense = uow.get(Expense, expense_id, lock=True)
        if expense is None:
            raise NotFound("expense", expense_id)
        if expense.status != EXPENSE_PENDING:
            raise NotPending("expense", expense.id, expense.status)
        if expense.cash_handover_id is not None:
            raise IllegalStateTransition(
                f"expense {expense.id} is linked to cash handover {expense.cash_handover_id}",
                expense_id=expense.id,
                cash_handover_id=expense.cash_handover_id,
            )

        expense.status = decision
        expense.reviewed_by = reviewed_by
        expense.reviewed_at = utcnow()
        append_audit_event(
            uow,
            event_type=f"expense.{decision.lower()}",
            entity_type="expense",
            entity_id=expense.id,
            actor=reviewed_by,
        )
        uow.flush()
        return expense

    expense = run_in_transaction(_op)
    current_app.logger.info("Expense %s %s by %s", expense.id, expense.status, reviewed_by)
    return expense


def list_expenses(*, driver_id: int | None = None, status: str | None = None, limit: int = 200) -> list[Expense]:
    q = Expense.query
    if driver_id:
        q = q.filter(Expense.driver_id == driver_id)
    if status:
        q = q.filter(Expense.status == status)
    return q.order_by(Expense.expense_date.desc(), Expense.id.desc()).limit(limit).all()
