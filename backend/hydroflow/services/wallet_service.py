# Overview: Container Wallet Tracker (returnable containers held by customers).

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..errors import NegativeContainerBalance, NotFound
from ..models import CustomerBottleWallet, CustomerProfile
from .concurrency import UnitOfWork


def apply_container_exchange(
    uow: UnitOfWork,
    *,
    customer_id: int,
    product_id: int,
    filled_given: int,
    empty_taken: int,
) -> CustomerBottleWallet:
    """
    Apply net = filled_given - empty_taken to the (customer, product) wallet.

    Reads the wallet under a row lock, or creates it at zero for a first
    delivery. Raises NegativeContainerBalance if the result would be below
    zero; this covers both an over-drawn wallet and a first-time wallet
    starting negative. The caller's Unit of Work rolls everything back.
    """
    wallet = uow.lock(
        uow.query(CustomerBottleWallet).filter_by(customer_id=customer_id, product_id=product_id)
    ).first()

    current = wallet.balance if wallet else 0
    new_balance = current + filled_given - empty_taken
    if new_balance < 0:
        raise NegativeContainerBalance(customer_id, product_id, current, filled_given, empty_taken)

    if wallet is None:
        wallet = uow.add(CustomerBottleWallet(customer_id=customer_id, product_id=product_id, balance=new_balance))
    else:
        wallet.balance = new_balance
    uow.flush()
    return wallet


def get_customer_wallets(customer_id: int) -> list[CustomerBottleWallet]:
    if db.session.get(CustomerProfile, customer_id) is None:
        raise NotFound("customer", customer_id)
    return (
        CustomerBottleWallet.query.filter_by(customer_id=customer_id)
        .order_by(CustomerBottleWallet.product_id)
        .all()
    )


def containers_with_customers_by_product() -> dict[int, int]:
    """Total containers held by customers, keyed by product id."""
    rows = (
        db.session.query(
            CustomerBottleWallet.product_id,
            func.coalesce(func.sum(CustomerBottleWallet.balance), 0),
        )
        .group_by(CustomerBottleWallet.product_id)
        .all()
    )
    return {product_id: int(total or 0) for product_id, total in rows}


def get_bottles_with_customers(product_id: int | None = None) -> list[dict]:
    """Customers currently holding containers (positive balances only)."""
    q = (
        db.session.query(CustomerBottleWallet, CustomerProfile)
        .join(CustomerProfile, CustomerProfile.id == CustomerBottleWallet.customer_id)
        .filter(CustomerBottleWallet.balance > 0)
    )
    if product_id is not None:
        q = q.filter(CustomerBottleWallet.product_id == product_id)

    rows = q.order_by(CustomerBottleWallet.balance.desc(), CustomerBottleWallet.id).all()
    return [
        {
            "customer_id": customer.id,
            "customer_name": customer.name,
            "product_id": wallet.product_id,
            "balance": wallet.balance,
        }
        for wallet, customer in rows
    ]
