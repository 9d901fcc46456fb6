# Overview: Stock Ledger; warehouse bucket counters per product.

# backend/hydroflow/services/inventory_service.py

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import (
    InsufficientEmptyStock,
    InsufficientFilledStock,
    InsufficientStock,
    NegativeStock,
    NotFound,
)
from ..models import Product, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUST,
    MOVEMENT_DAMAGE,
    MOVEMENT_DELIVERY,
    MOVEMENT_LOSS,
    MOVEMENT_REFILL,
    MOVEMENT_RESTOCK,
)
from .audit_service import append_audit_event
from .concurrency import UnitOfWork, run_in_transaction
from .wallet_service import containers_with_customers_by_product
"""
Stock Ledger Invariants (authoritative)

Buckets (per product): stock_filled, stock_empty, stock_damaged, stock_reserved.

Business invariants:
- No bucket ever goes negative. Preconditions are checked before mutation and
  the table carries CHECK constraints as a backstop.
- Every mutation happens on a row read with lock_for_update inside the Unit of
  Work of the operation that causes it, never read-then-write across requests.
- Every mutation appends a StockMovement row with before/after snapshots.

Movements:
- RESTOCK: new supply; adds to filled and empty independently.
- REFILL: empty -> filled.
- DAMAGE: filled -> damaged (auditable).
- LOSS: filled decremented only; units leave the system.
- ADJUST: absolute overwrite of filled/empty/damaged (admin drift correction).
- DELIVERY: order completion; filled -= given, empty += taken,
  damaged += returned. Damaged returns never re-enter empty.
"""


def _get_product_locked(uow: UnitOfWork, product_id: int) -> Product:
    product = uow.get(Product, product_id, lock=True)
    if product is None:
        raise NotFound("product", product_id)
    return product


def _apply_buckets(
    uow: UnitOfWork,
    product: Product,
    *,
    movement_type: str,
    filled: int,
    empty: int,
    damaged: int,
    order_id: int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """Write new absolute bucket values and record the movement."""
    for bucket, value in (("stock_filled", filled), ("stock_empty", empty), ("stock_damaged", damaged)):
        if value < 0:
            raise NegativeStock(product.id, bucket, value)

    movement = StockMovement(
        product_id=product.id,
        movement_type=movement_type,
        filled_before=product.stock_filled,
        filled_after=filled,
        empty_before=product.stock_empty,
        empty_after=empty,
        damaged_before=product.stock_damaged,
        damaged_after=damaged,
        order_id=order_id,
        actor=actor,
        note=note,
    )
    product.stock_filled = filled
    product.stock_empty = empty
    product.stock_damaged = damaged
    uow.add(movement)
    uow.flush()
    return movement


# =============================================================================
# ORDER COMPLETION STEP
# =============================================================================

def apply_delivery(
    uow: UnitOfWork,
    *,
    product_id: int,
    filled_given: int,
    empty_taken: int,
    damaged_returned: int,
    order_id: int,
    actor: str | None = None,
) -> StockMovement:
    """
    Apply one delivered line to warehouse stock.

    Raises InsufficientStock (before any mutation) when stock_filled cannot
    cover filled_given.
    """
    product = _get_product_locked(uow, product_id)
    if product.stock_filled < filled_given:
        raise InsufficientStock(product.id, product.stock_filled, filled_given)

    return _apply_buckets(
        uow,
        product,
        movement_type=MOVEMENT_DELIVERY,
        filled=product.stock_filled - filled_given,
        empty=product.stock_empty + empty_taken,
        damaged=product.stock_damaged + damaged_returned,
        order_id=order_id,
        actor=actor,
    )


# =============================================================================
# WAREHOUSE PRIMITIVES (each its own transaction)
# =============================================================================

def restock_product(
    *,
    product_id: int,
    filled_quantity: int,
    empty_quantity: int,
    note: str | None = None,
    actor: str | None = None,
) -> Product:
    """Add new inbound supply to the filled and empty buckets."""
    def _op(uow: UnitOfWork) -> Product:
        product = _get_product_locked(uow, product_id)
        movement = _apply_buckets(
            uow,
            product,
            movement_type=MOVEMENT_RESTOCK,
            filled=product.stock_filled + filled_quantity,
            empty=product.stock_empty + empty_quantity,
            damaged=product.stock_damaged,
            actor=actor,
            note=note,
        )
        append_audit_event(
            uow,
            event_type="inventory.restocked",
            entity_type="product",
            entity_id=product.id,
            actor=actor,
            note=note,
            payload={"movement_id": movement.id, "filled": filled_quantity, "empty": empty_quantity},
        )
        return product

    product = run_in_transaction(_op)
    current_app.logger.info(
        "Restocked product %s: +%s filled, +%s empty", product_id, filled_quantity, empty_quantity
    )
    return product


def refill_bottles(
    *,
    product_id: int,
    quantity: int,
    note: str | None = None,
    actor: str | None = None,
) -> Product:
    """Move ``quantity`` units from empty to filled."""
    def _op(uow: UnitOfWork) -> Product:
        product = _get_product_locked(uow, product_id)
        if product.stock_empty < quantity:
            raise InsufficientEmptyStock(product.id, product.stock_empty, quantity)

        movement = _apply_buckets(
            uow,
            product,
            movement_type=MOVEMENT_REFILL,
            filled=product.stock_filled + quantity,
            empty=product.stock_empty - quantity,
            damaged=product.stock_damaged,
            actor=actor,
            note=note,
        )
        append_audit_event(
            uow,
            event_type="inventory.refilled",
            entity_type="product",
            entity_id=product.id,
            actor=actor,
            note=note,
            payload={"movement_id": movement.id, "quantity": quantity},
        )
        return product

    return run_in_transaction(_op)


def record_damage_or_loss(
    *,
    product_id: int,
    quantity: int,
    kind: str,
    reason: str,
    note: str | None = None,
    actor: str | None = None,
) -> Product:
    """
    DAMAGE moves filled -> damaged; LOSS only decrements filled.

    Raises InsufficientFilledStock when stock_filled < quantity.
    """
    if kind not in (MOVEMENT_DAMAGE, MOVEMENT_LOSS):
        raise ValueError(f"kind must be {MOVEMENT_DAMAGE} or {MOVEMENT_LOSS}")

    def _op(uow: UnitOfWork) -> Product:
        product = _get_product_locked(uow, product_id)
        if product.stock_filled < quantity:
            raise InsufficientFilledStock(product.id, product.stock_filled, quantity)

        damaged = product.stock_damaged + quantity if kind == MOVEMENT_DAMAGE else product.stock_damaged
        movement = _apply_buckets(
            uow,
            product,
            movement_type=kind,
            filled=product.stock_filled - quantity,
            empty=product.stock_empty,
            damaged=damaged,
            actor=actor,
            note=reason if not note else f"{reason}: {note}",
        )
        append_audit_event(
            uow,
            event_type=f"inventory.{kind.lower()}_recorded",
            entity_type="product",
            entity_id=product.id,
            actor=actor,
            note=reason,
            payload={"movement_id": movement.id, "quantity": quantity},
        )
        return product

    return run_in_transaction(_op)


def adjust_stock(
    *,
    product_id: int,
    stock_filled: int,
    stock_empty: int,
    stock_damaged: int,
    reason: str,
    note: str | None = None,
    actor: str | None = None,
) -> Product:
    """
    Administrative absolute overwrite of the three counters (no delta math).

    Used to correct drift after a physical count.
    """
    def _op(uow: UnitOfWork) -> Product:
        product = _get_product_locked(uow, product_id)
        before = {
            "filled": product.stock_filled,
            "empty": product.stock_empty,
            "damaged": product.stock_damaged,
        }
        movement = _apply_buckets(
            uow,
            product,
            movement_type=MOVEMENT_ADJUST,
            filled=stock_filled,
            empty=stock_empty,
            damaged=stock_damaged,
            actor=actor,
            note=reason if not note else f"{reason}: {note}",
        )
        append_audit_event(
            uow,
            event_type="inventory.adjusted",
            entity_type="product",
            entity_id=product.id,
            actor=actor,
            note=reason,
            payload={"movement_id": movement.id, "before": before},
        )
        return product

    product = run_in_transaction(_op)
    current_app.logger.info("Stock for product %s overwritten by %s (%s)", product_id, actor, reason)
    return product


# =============================================================================
# READS
# =============================================================================

def get_inventory_stats() -> dict:
    """Per-product buckets, containers held by customers, and totals."""
    products = Product.query.order_by(Product.name.asc()).all()
    with_customers = containers_with_customers_by_product()

    rows = []
    totals = {"filled": 0, "empty": 0, "damaged": 0, "reserved": 0, "with_customers": 0}
    for p in products:
        held = with_customers.get(p.id, 0)
        row = p.to_dict()
        row["bottles_with_customers"] = held
        row["total_bottles"] = p.stock_filled + p.stock_empty + p.stock_damaged + p.stock_reserved + held
        rows.append(row)

        totals["filled"] += p.stock_filled
        totals["empty"] += p.stock_empty
        totals["damaged"] += p.stock_damaged
        totals["reserved"] += p.stock_reserved
        totals["with_customers"] += held

    totals["total"] = sum(totals.values())
    return {"products": rows, "totals": totals}


def list_stock_movements(product_id: int, limit: int = 200) -> list[StockMovement]:
    if db.session.get(Product, product_id) is None:
        raise NotFound("product", product_id)
    return (
        StockMovement.query.filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
