# Overview: Credit/Stock Gate; pure pre-check before generating or creating orders.

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from ..errors import CreditLimitExceeded, DomainError, InsufficientStock, NotFound
from ..models import CustomerProfile, Product
from ..money import to_money
from .concurrency import UnitOfWork


@dataclass(frozen=True)
class GateLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class GateDecision:
    """Result of a gate evaluation: allow, or deny with a typed reason."""
    allowed: bool
    errors: tuple[DomainError, ...] = field(default_factory=tuple)

    @property
    def reason(self) -> DomainError | None:
        return self.errors[0] if self.errors else None

    def raise_if_denied(self):
        if self.errors:
            raise self.errors[0]


def check_stock(products: dict[int, Product], lines: Iterable[GateLine]) -> list[InsufficientStock]:
    """Required filled stock per product (lines aggregated) must fit stock_filled."""
    required: dict[int, int] = defaultdict(int)
    for line in lines:
        required[line.product_id] += line.quantity

    failures = []
    for product_id, needed in required.items():
        product = products.get(product_id)
        available = product.stock_filled if product else 0
        if available < needed:
            failures.append(InsufficientStock(product_id, available, needed, context="cannot create order"))
    return failures


def check_credit(customer: CustomerProfile, order_amount: Decimal) -> CreditLimitExceeded | None:
    """cash_balance - order_amount must stay >= -credit_limit."""
    balance = to_money(customer.cash_balance)
    limit = to_money(customer.credit_limit)
    amount = to_money(order_amount)
    if balance - amount < -limit:
        return CreditLimitExceeded(customer.id, balance, amount, limit)
    return None


def evaluate_order(
    uow: UnitOfWork,
    *,
    customer_id: int,
    lines: Iterable[GateLine],
    order_amount: Decimal,
    check_credit_limit: bool = True,
) -> GateDecision:
    """
    Evaluate a candidate order without side effects.

    Reads the customer and products through the caller's Unit of Work so the
    decision is taken on the same snapshot as the subsequent write. Whether a
    denial is advisory (skip and continue) or a hard failure is the caller's
    choice: use ``decision.raise_if_denied()`` for the strict variant.
    """
    lines = list(lines)
    customer = uow.get(CustomerProfile, customer_id)
    if customer is None:
        raise NotFound("customer", customer_id)

    product_ids = {line.product_id for line in lines}
    products = {
        p.id: p for p in uow.query(Product).filter(Product.id.in_(product_ids)).all()
    } if product_ids else {}
    missing = product_ids - set(products)
    if missing:
        raise NotFound("product", sorted(missing)[0])

    errors: list[DomainError] = list(check_stock(products, lines))
    if check_credit_limit:
        credit_error = check_credit(customer, order_amount)
        if credit_error is not None:
            errors.append(credit_error)

    return GateDecision(allowed=not errors, errors=tuple(errors))
