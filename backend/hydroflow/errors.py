# Overview: Domain error taxonomy for the reconciliation engine.
"""
Domain errors raised by the service layer.

Every error is raised before or during a Unit of Work and causes a full
rollback. None of them is retried: they are business-rule violations, not
transient faults. Routes map them to JSON responses via ``to_dict()`` and
``status_code``.

Kinds:
- PreconditionFailed: a check that runs before any mutation failed
- InvariantViolation: a mutation would break a stored invariant
- IllegalStateTransition: the entity is not in a state that allows the action
- NotFound: a referenced entity does not exist
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class DomainError(Exception):
    """Base class for business-rule failures."""

    status_code = 409
    kind = "DOMAIN_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        details = {
            key: (str(value) if isinstance(value, Decimal) else value)
            for key, value in self.details.items()
        }
        return {"error": self.message, "code": self.code, "kind": self.kind, "details": details}


# =============================================================================
# ERROR KINDS
# =============================================================================

class PreconditionFailed(DomainError):
    kind = "PRECONDITION_FAILED"


class InvariantViolation(DomainError):
    kind = "INVARIANT_VIOLATION"


class IllegalStateTransition(DomainError):
    kind = "ILLEGAL_STATE_TRANSITION"


class NotFound(DomainError):
    status_code = 404
    kind = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


# =============================================================================
# PRECONDITIONS
# =============================================================================

class InsufficientStock(PreconditionFailed):
    def __init__(self, product_id: int, available: int, requested: int, *, context: str = "cannot complete delivery"):
        super().__init__(
            f"{context}: insufficient stock for product {product_id}, "
            f"available {available}, required {requested}",
            product_id=product_id,
            available=available,
            requested=requested,
        )


class InsufficientEmptyStock(PreconditionFailed):
    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"cannot refill: insufficient empty stock for product {product_id}, "
            f"available {available}, requested {requested}",
            product_id=product_id,
            available=available,
            requested=requested,
        )


class InsufficientFilledStock(PreconditionFailed):
    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"cannot record damage/loss: insufficient filled stock for product {product_id}, "
            f"available {available}, requested {requested}",
            product_id=product_id,
            available=available,
            requested=requested,
        )


class CreditLimitExceeded(PreconditionFailed):
    def __init__(self, customer_id: int, balance: Decimal, order_amount: Decimal, credit_limit: Decimal):
        super().__init__(
            f"credit limit exceeded for customer {customer_id}: balance {balance} "
            f"minus order {order_amount} is below -{credit_limit}",
            customer_id=customer_id,
            balance=balance,
            order_amount=order_amount,
            credit_limit=credit_limit,
        )


class DuplicateOrder(PreconditionFailed):
    def __init__(self, customer_id: int, order_id: int, scheduled_date: str):
        super().__init__(
            f"an order (#{order_id}) already exists for customer {customer_id} on {scheduled_date}",
            customer_id=customer_id,
            order_id=order_id,
            scheduled_date=scheduled_date,
        )


# =============================================================================
# INVARIANTS
# =============================================================================

class NegativeContainerBalance(InvariantViolation):
    def __init__(self, customer_id: int, product_id: int, current: int, filled_given: int, empty_taken: int):
        super().__init__(
            f"invalid bottle exchange: customer {customer_id} holds {current} containers of product "
            f"{product_id}, returning {empty_taken} while receiving {filled_given} "
            f"would leave {current + filled_given - empty_taken}",
            customer_id=customer_id,
            product_id=product_id,
            current=current,
            filled_given=filled_given,
            empty_taken=empty_taken,
        )


class NegativeStock(InvariantViolation):
    def __init__(self, product_id: int, bucket: str, value: int):
        super().__init__(
            f"stock bucket {bucket} for product {product_id} would become {value}",
            product_id=product_id,
            bucket=bucket,
            value=value,
        )


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

class ImmutableCompletedOrder(IllegalStateTransition):
    def __init__(self, order_id: int, attempted: str):
        super().__init__(
            f"cannot modify COMPLETED order #{order_id} ({attempted}); "
            f"its ledger and inventory effects are already applied",
            order_id=order_id,
            attempted=attempted,
        )


class OrderNotCompletable(IllegalStateTransition):
    def __init__(self, order_id: int, status: str):
        super().__init__(
            f"cannot complete order {order_id} in status {status}",
            order_id=order_id,
            status=status,
        )


class NotPending(IllegalStateTransition):
    def __init__(self, entity: str, entity_id: int, status: str):
        super().__init__(
            f"{entity} {entity_id} is {status}; only PENDING {entity}s can be changed",
            entity=entity,
            entity_id=entity_id,
            status=status,
        )


class DuplicatePendingHandover(IllegalStateTransition):
    def __init__(self, driver_id: int, handover_id: int | None = None):
        super().__init__(
            f"driver {driver_id} already has a PENDING cash handover"
            + (f" ({handover_id})" if handover_id else ""),
            driver_id=driver_id,
            handover_id=handover_id,
        )


class NotAssignedDriver(IllegalStateTransition):
    status_code = 403

    def __init__(self, order_id: int, driver_id: int):
        super().__init__(
            f"driver {driver_id} is not assigned to order {order_id}",
            order_id=order_id,
            driver_id=driver_id,
        )
