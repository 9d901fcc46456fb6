# Overview: Order lifecycle and the Order Completion Transaction.

"""
Order Service

WHY: Orders are where customer money, returnable containers and warehouse
stock meet. Completing one must move all three together or not at all.

DESIGN PRINCIPLES:
- Completion is one Unit of Work: persist final fields, customer ledger
  (sale, then payment), container wallets, warehouse stock, audit
- Completion is idempotent: completing a COMPLETED order is a no-op
- COMPLETED is terminal and immutable: no edits, no status reversal, no delete
- Bulk generation commits per batch (partial progress accepted); nothing
  financial happens there beyond creating SCHEDULED orders
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from flask import current_app

from ..errors import (
    DuplicateOrder,
    IllegalStateTransition,
    ImmutableCompletedOrder,
    NotAssignedDriver,
    NotFound,
    OrderNotCompletable,
)
from ..models import (
    CustomerProfile,
    CustomerSpecialPrice,
    DriverProfile,
    LedgerEntry,
    Order,
    OrderItem,
    Product,
)
from ..models.finance import REF_ORDER
from ..models.orders import (
    OPEN_ORDER_STATUSES,
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_PENDING,
    ORDER_RESCHEDULED,
    ORDER_SCHEDULED,
)
from ..money import to_money, ZERO
from ..validation import (
    CompletionItem,
    CompletionRequest,
    CreateOrderRequest,
    GenerateOrdersRequest,
    OrderLineInput,
    UnableToDeliverRequest,
)
from hydroflow.time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import UnitOfWork, run_in_transaction
from .gate_service import GateLine, check_credit, check_stock, evaluate_order
from .inventory_service import apply_delivery
from .ledger_service import post_customer_entry
from .notification_service import emit_order_status, notify_driver_assigned
from .wallet_service import apply_container_exchange


@dataclass
class CompletionResult:
    """Snapshot handed back to the caller for UI/notification layers."""
    order: Order
    applied: bool
    customer_balance: Decimal
    ledger_entries: list[LedgerEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "applied": self.applied,
            "customer_balance": str(self.customer_balance),
            "ledger_entries": [e.to_dict() for e in self.ledger_entries],
        }


# =============================================================================
# PRICING
# =============================================================================

def _load_products(uow: UnitOfWork, product_ids) -> dict[int, Product]:
    product_ids = set(product_ids)
    products = {p.id: p for p in uow.query(Product).filter(Product.id.in_(product_ids)).all()} if product_ids else {}
    missing = product_ids - set(products)
    if missing:
        raise NotFound("product", sorted(missing)[0])
    return products


def _special_prices(uow: UnitOfWork, customer_id: int, product_ids) -> dict[int, Decimal]:
    rows = uow.query(CustomerSpecialPrice).filter(
        CustomerSpecialPrice.customer_id == customer_id,
        CustomerSpecialPrice.product_id.in_(set(product_ids)),
    ).all()
    return {row.product_id: to_money(row.custom_price) for row in rows}


def _unit_price(
    product: Product,
    *,
    explicit: Decimal | None,
    special: dict[int, Decimal],
    existing: dict[int, Decimal] | None = None,
) -> Decimal:
    """Explicit line price, then the price already on the order, then special, then base."""
    if explicit is not None:
        return explicit
    if existing and product.id in existing:
        return existing[product.id]
    if product.id in special:
        return special[product.id]
    return to_money(product.base_price)


def _order_total(lines_total: Decimal, delivery_charge, discount) -> Decimal:
    return to_money(lines_total + to_money(delivery_charge) - to_money(discount))


def _build_items(uow: UnitOfWork, customer_id: int, lines: tuple[OrderLineInput, ...], existing=None):
    products = _load_products(uow, [line.product_id for line in lines])
    special = _special_prices(uow, customer_id, products.keys())

    items = []
    lines_total = ZERO
    for line in lines:
        price = _unit_price(products[line.product_id], explicit=line.price, special=special, existing=existing)
        items.append(OrderItem(product_id=line.product_id, quantity=line.quantity, price_at_time=price))
        lines_total += price * line.quantity
    return items, lines_total


# =============================================================================
# ORDER COMPLETION TRANSACTION
# =============================================================================

def _replace_items_for_delivery(uow: UnitOfWork, order: Order, delivered: tuple[CompletionItem, ...]):
    """
    Replace the order's lines with what was actually delivered.

    The billed quantity is filled_given: an on-the-spot change (ordered 1,
    delivered 3) is billed as delivered.
    """
    existing = {item.product_id: to_money(item.price_at_time) for item in order.items}
    products = _load_products(uow, [d.product_id for d in delivered])
    special = _special_prices(uow, order.customer_id, products.keys())

    order.items.clear()
    uow.flush()

    lines_total = ZERO
    for d in delivered:
        price = _unit_price(products[d.product_id], explicit=d.price, special=special, existing=existing)
        order.items.append(
            OrderItem(
                product_id=d.product_id,
                quantity=d.filled_given,
                price_at_time=price,
                filled_given=d.filled_given,
                empty_taken=d.empty_taken,
                damaged_returned=d.damaged_returned,
            )
        )
        lines_total += price * d.filled_given

    order.total_amount = _order_total(lines_total, order.delivery_charge, order.discount)


def _complete_locked(uow: UnitOfWork, order: Order, request: CompletionRequest) -> CompletionResult:
    """
    Completion steps on an order already locked by the caller's Unit of Work.

    Any raised error aborts the caller's transaction as a whole.
    """
    if order.status == ORDER_COMPLETED:
        customer = uow.get(CustomerProfile, order.customer_id)
        return CompletionResult(order=order, applied=False, customer_balance=to_money(customer.cash_balance))
    if order.status not in OPEN_ORDER_STATUSES:
        raise OrderNotCompletable(order.id, order.status)

    previous_status = order.status

    # 1. Persist final order fields, then re-read
    order.cash_collected = to_money(request.cash_collected)
    order.payment_method = request.payment_method
    if request.items is not None:
        _replace_items_for_delivery(uow, order, request.items)
    else:
        # No delivery report: lines are delivered as ordered
        for item in order.items:
            if not (item.filled_given or item.empty_taken or item.damaged_returned):
                item.filled_given = item.quantity
    uow.flush()
    uow.session.refresh(order)

    customer = uow.get(CustomerProfile, order.customer_id, lock=True)
    if customer is None:
        raise NotFound("customer", order.customer_id)

    # 2-4. Customer ledger: sale debit, then payment credit
    entries = [
        post_customer_entry(
            uow,
            customer,
            -to_money(order.total_amount),
            f"Order #{order.id} Sale",
            reference_type=REF_ORDER,
            reference_id=order.id,
        )
    ]
    if to_money(order.cash_collected) > 0:
        entries.append(
            post_customer_entry(
                uow,
                customer,
                to_money(order.cash_collected),
                f"Order #{order.id} Payment",
                reference_type=REF_ORDER,
                reference_id=order.id,
            )
        )

    # 5. Container wallets
    for item in order.items:
        apply_container_exchange(
            uow,
            customer_id=order.customer_id,
            product_id=item.product_id,
            filled_given=item.filled_given,
            empty_taken=item.empty_taken,
        )

    # 6. Warehouse stock
    for item in order.items:
        apply_delivery(
            uow,
            product_id=item.product_id,
            filled_given=item.filled_given,
            empty_taken=item.empty_taken,
            damaged_returned=item.damaged_returned,
            order_id=order.id,
            actor=request.actor,
        )

    order.status = ORDER_COMPLETED
    order.delivered_at = utcnow()

    append_audit_event(
        uow,
        event_type="order.completed",
        entity_type="order",
        entity_id=order.id,
        actor=request.actor,
        payload={
            "total_amount": str(order.total_amount),
            "cash_collected": str(order.cash_collected),
            "payment_method": order.payment_method,
            "balance_after": str(customer.cash_balance),
        },
    )
    uow.flush()

    notice = {
        "order_id": order.id,
        "status": ORDER_COMPLETED,
        "previous_status": previous_status,
        "customer_id": order.customer_id,
        "driver_id": order.driver_id,
    }
    uow.on_commit(lambda: emit_order_status(**notice))

    return CompletionResult(
        order=order,
        applied=True,
        customer_balance=to_money(customer.cash_balance),
        ledger_entries=entries,
    )


def complete_order(request: CompletionRequest) -> CompletionResult:
    """
    Complete a delivery: ledger, wallets and stock in one transaction.

    Re-submitting a completion for a COMPLETED order returns it with
    applied=False and changes nothing.

    Raises:
        NotFound, OrderNotCompletable, NegativeContainerBalance, InsufficientStock
    """
    def _op(uow: UnitOfWork) -> CompletionResult:
        order = uow.get(Order, request.order_id, lock=True)
        if order is None:
            raise NotFound("order", request.order_id)
        return _complete_locked(uow, order, request)

    result = run_in_transaction(_op)
    if result.applied:
        current_app.logger.info(
            "Order %s completed; customer %s balance %s",
            result.order.id, result.order.customer_id, result.customer_balance,
        )
    else:
        current_app.logger.info("Order %s already completed; completion ignored", result.order.id)
    return result


# =============================================================================
# CREATION
# =============================================================================

def _find_existing_order(uow: UnitOfWork, customer_id: int, scheduled_date: date) -> Order | None:
    return uow.query(Order).filter(
        Order.customer_id == customer_id,
        Order.scheduled_date == scheduled_date,
        Order.status != ORDER_CANCELLED,
    ).first()


def create_order(request: CreateOrderRequest) -> Order:
    """
    Create a single order.

    WHY the gate here: stock is always checked; the credit ceiling is a hard
    precondition when enforce_credit is set (the default for single orders).

    Raises:
        NotFound, DuplicateOrder, InsufficientStock, CreditLimitExceeded
    """
    def _op(uow: UnitOfWork) -> Order:
        customer = uow.get(CustomerProfile, request.customer_id)
        if customer is None:
            raise NotFound("customer", request.customer_id)

        driver_id = request.driver_id
        if driver_id is not None:
            if uow.get(DriverProfile, driver_id) is None:
                raise NotFound("driver", driver_id)
        elif customer.route is not None:
            driver_id = customer.route.default_driver_id

        existing = _find_existing_order(uow, customer.id, request.scheduled_date)
        if existing is not None:
            raise DuplicateOrder(customer.id, existing.id, request.scheduled_date.isoformat())

        items, lines_total = _build_items(uow, customer.id, request.items)
        total = _order_total(lines_total, request.delivery_charge, request.discount)

        decision = evaluate_order(
            uow,
            customer_id=customer.id,
            lines=[GateLine(line.product_id, line.quantity) for line in request.items],
            order_amount=total,
            check_credit_limit=request.enforce_credit,
        )
        decision.raise_if_denied()

        order = Order(
            customer_id=customer.id,
            driver_id=driver_id,
            scheduled_date=request.scheduled_date,
            status=request.status,
            delivery_charge=request.delivery_charge,
            discount=request.discount,
            total_amount=total,
            items=items,
        )
        uow.add(order)
        uow.flush()
        append_audit_event(uow, event_type="order.created", entity_type="order", entity_id=order.id)
        return order

    return run_in_transaction(_op)


def _preview_generation(eligible: list[CustomerProfile]) -> dict:
    """Dry run of the per-customer gate; nothing is written."""
    uow = UnitOfWork()
    would_create = 0
    skipped = []
    for customer in eligible:
        line = OrderLineInput(product_id=customer.default_product_id, quantity=customer.default_quantity)
        _, lines_total = _build_items(uow, customer.id, (line,))
        decision = evaluate_order(
            uow,
            customer_id=customer.id,
            lines=[GateLine(line.product_id, line.quantity)],
            order_amount=_order_total(lines_total, ZERO, ZERO),
        )
        if decision.allowed:
            would_create += 1
        else:
            skipped.append({"customer_id": customer.id, "reason": decision.reason.code})

    return {
        "count": would_create,
        "skipped_due_to_credit": sum(1 for s in skipped if s["reason"] == "CreditLimitExceeded"),
        "skipped": skipped,
        "preview": True,
        "message": f"{would_create} orders would be created",
    }


def generate_orders(request: GenerateOrdersRequest, *, batch_size: int | None = None) -> dict:
    """
    Create SCHEDULED orders for every customer due on the given date.

    Eligible: active, has a default product, delivers on that weekday
    (Monday=0), no order yet for that date. Optional route and customer type
    filters narrow the set. The whole run is refused if the
    aggregated default quantities exceed filled stock. The credit gate is
    advisory here: customers over their ceiling are skipped and counted.

    Each batch is its own transaction; a failure mid-run leaves earlier
    batches committed.

    With preview set, the same eligibility and stock pass runs and the credit
    gate is evaluated per customer, but no order is written.
    """
    if batch_size is None:
        batch_size = current_app.config.get("GENERATION_BATCH_SIZE", 50)

    scheduled_date = request.scheduled_date
    weekday = scheduled_date.weekday()

    q = CustomerProfile.query.filter(
        CustomerProfile.is_active.is_(True),
        CustomerProfile.default_product_id.isnot(None),
    )
    if request.route_id is not None:
        q = q.filter(CustomerProfile.route_id == request.route_id)
    if request.customer_type is not None:
        q = q.filter(CustomerProfile.customer_type == request.customer_type)
    customers = [c for c in q.order_by(CustomerProfile.id).all() if weekday in (c.delivery_days or [])]

    if not customers:
        return {"count": 0, "skipped_due_to_credit": 0, "message": "No matching customers found"}

    existing_ids = {
        row.customer_id
        for row in Order.query.filter(
            Order.scheduled_date == scheduled_date,
            Order.customer_id.in_([c.id for c in customers]),
        ).all()
    }
    eligible = [c for c in customers if c.id not in existing_ids]
    if not eligible:
        return {"count": 0, "skipped_due_to_credit": 0, "message": "Orders already exist for all matching customers"}

    products = {p.id: p for p in Product.query.filter(Product.id.in_({c.default_product_id for c in eligible})).all()}
    shortages = check_stock(products, [GateLine(c.default_product_id, c.default_quantity) for c in eligible])
    if shortages:
        return {
            "count": 0,
            "skipped_due_to_credit": 0,
            "message": "Insufficient stock for products. Cannot generate orders.",
            "insufficient_stock": [e.to_dict()["details"] for e in shortages],
        }

    if request.preview:
        return _preview_generation(eligible)

    eligible_ids = [c.id for c in eligible]
    created = 0
    skipped = 0

    for start in range(0, len(eligible_ids), batch_size):
        batch_ids = eligible_ids[start:start + batch_size]

        def _batch(uow: UnitOfWork) -> tuple[int, int]:
            batch_created = 0
            batch_skipped = 0
            already = {
                row.customer_id
                for row in uow.query(Order).filter(
                    Order.scheduled_date == scheduled_date,
                    Order.customer_id.in_(batch_ids),
                ).all()
            }
            for customer in uow.query(CustomerProfile).filter(CustomerProfile.id.in_(batch_ids)).all():
                if customer.id in already:
                    continue
                line = OrderLineInput(product_id=customer.default_product_id, quantity=customer.default_quantity)
                items, lines_total = _build_items(uow, customer.id, (line,))
                total = _order_total(lines_total, ZERO, ZERO)

                if check_credit(customer, total) is not None:
                    batch_skipped += 1
                    continue

                uow.add(
                    Order(
                        customer_id=customer.id,
                        driver_id=customer.route.default_driver_id if customer.route else None,
                        scheduled_date=scheduled_date,
                        status=ORDER_SCHEDULED,
                        total_amount=total,
                        items=items,
                    )
                )
                batch_created += 1
            uow.flush()
            return batch_created, batch_skipped

        batch_created, batch_skipped = run_in_transaction(_batch)
        created += batch_created
        skipped += batch_skipped

    message = f"Successfully created {created} orders"
    if skipped:
        message += f". {skipped} customers skipped due to credit limit."
    current_app.logger.info("Generated %s orders for %s (%s skipped for credit)", created, scheduled_date, skipped)
    return {"count": created, "skipped_due_to_credit": skipped, "message": message}


# =============================================================================
# UPDATES
# =============================================================================

def update_order(order_id: int, patch: dict, *, actor: str | None = None) -> Order:
    """
    Edit an open order.

    - Any change to a COMPLETED order raises ImmutableCompletedOrder
    - CANCELLED / RESCHEDULED orders are terminal for this attempt
    - status=COMPLETED runs the completion steps in the same transaction,
      using the order's current cash fields
    """
    def _op(uow: UnitOfWork) -> Order:
        order = uow.get(Order, order_id, lock=True)
        if order is None:
            raise NotFound("order", order_id)

        if order.status == ORDER_COMPLETED:
            attempted = f"status -> {patch['status']}" if "status" in patch else "update " + ", ".join(sorted(patch))
            raise ImmutableCompletedOrder(order.id, attempted)
        if order.status not in OPEN_ORDER_STATUSES:
            raise IllegalStateTransition(
                f"order {order.id} is {order.status} and cannot be changed",
                order_id=order.id,
                status=order.status,
            )

        if "driver_id" in patch and patch["driver_id"] is not None:
            if uow.get(DriverProfile, patch["driver_id"]) is None:
                raise NotFound("driver", patch["driver_id"])

        for key in ("driver_id", "scheduled_date", "delivery_charge", "discount"):
            if key in patch:
                setattr(order, key, patch[key])

        if "items" in patch:
            existing = {item.product_id: to_money(item.price_at_time) for item in order.items}
            order.items.clear()
            uow.flush()
            items, lines_total = _build_items(uow, order.customer_id, patch["items"], existing=existing)
            order.items.extend(items)
        else:
            lines_total = sum((item.line_total for item in order.items), ZERO)
        order.total_amount = _order_total(lines_total, order.delivery_charge, order.discount)

        new_status = patch.get("status")
        if new_status == ORDER_COMPLETED:
            uow.flush()
            _complete_locked(
                uow,
                order,
                CompletionRequest(
                    order_id=order.id,
                    cash_collected=to_money(order.cash_collected),
                    payment_method=order.payment_method,
                    actor=actor,
                ),
            )
        elif new_status is not None and new_status != order.status:
            previous = order.status
            order.status = new_status
            notice = {
                "order_id": order.id,
                "status": new_status,
                "previous_status": previous,
                "customer_id": order.customer_id,
                "driver_id": order.driver_id,
            }
            uow.on_commit(lambda: emit_order_status(**notice))

        uow.flush()
        return order

    return run_in_transaction(_op)


def bulk_assign_orders(order_ids: list[int], driver_id: int) -> int:
    """Assign open orders to a driver (status PENDING), then notify the driver."""
    def _op(uow: UnitOfWork) -> int:
        if uow.get(DriverProfile, driver_id) is None:
            raise NotFound("driver", driver_id)
        count = uow.query(Order).filter(
            Order.id.in_(order_ids),
            Order.status.in_(OPEN_ORDER_STATUSES),
        ).update(
            {Order.driver_id: driver_id, Order.status: ORDER_PENDING},
            synchronize_session="fetch",
        )
        uow.on_commit(lambda: notify_driver_assigned(driver_id, count))
        return count

    return run_in_transaction(_op)


def mark_unable_to_deliver(request: UnableToDeliverRequest) -> tuple[Order, Order | None]:
    """
    Driver reports a failed delivery: CANCEL, or RESCHEDULE to a new date.

    RESCHEDULE creates a fresh SCHEDULED order for the new date with the same
    lines, assigned to the route's default driver.

    Returns:
        (updated order, new order or None)
    """
    def _op(uow: UnitOfWork):
        if uow.get(DriverProfile, request.driver_id) is None:
            raise NotFound("driver", request.driver_id)

        order = uow.get(Order, request.order_id, lock=True)
        if order is None:
            raise NotFound("order", request.order_id)
        if order.driver_id != request.driver_id:
            raise NotAssignedDriver(order.id, request.driver_id)
        if order.status == ORDER_COMPLETED:
            raise ImmutableCompletedOrder(order.id, f"mark unable to deliver ({request.action})")
        if order.status not in OPEN_ORDER_STATUSES:
            raise IllegalStateTransition(
                f"order {order.id} is already {order.status}",
                order_id=order.id,
                status=order.status,
            )

        previous = order.status
        rescheduling = request.action == "RESCHEDULE"
        order.status = ORDER_RESCHEDULED if rescheduling else ORDER_CANCELLED
        order.cancellation_reason = request.reason
        order.cancelled_by = str(request.driver_id)
        order.cancelled_at = utcnow()
        order.driver_notes = request.notes
        order.rescheduled_to_date = request.reschedule_date if rescheduling else None
        order.original_scheduled_date = order.scheduled_date if rescheduling else None

        new_order = None
        if rescheduling:
            customer = order.customer
            new_order = Order(
                customer_id=order.customer_id,
                driver_id=customer.route.default_driver_id if customer.route else None,
                scheduled_date=request.reschedule_date,
                status=ORDER_SCHEDULED,
                delivery_charge=order.delivery_charge,
                discount=order.discount,
                total_amount=order.total_amount,
                items=[
                    OrderItem(product_id=i.product_id, quantity=i.quantity, price_at_time=i.price_at_time)
                    for i in order.items
                ],
            )
            uow.add(new_order)
            uow.flush()

        append_audit_event(
            uow,
            event_type="order.rescheduled" if rescheduling else "order.cancelled",
            entity_type="order",
            entity_id=order.id,
            actor=str(request.driver_id),
            note=request.notes[:255],
            payload={
                "reason": request.reason,
                "original_date": order.scheduled_date.isoformat(),
                "new_date": request.reschedule_date.isoformat() if request.reschedule_date else None,
                "new_order_id": new_order.id if new_order else None,
            },
        )
        notice = {
            "order_id": order.id,
            "status": order.status,
            "previous_status": previous,
            "customer_id": order.customer_id,
            "driver_id": order.driver_id,
        }
        uow.on_commit(lambda: emit_order_status(**notice))
        return order, new_order

    return run_in_transaction(_op)


def delete_order(order_id: int):
    """Delete an order that has no financial effects yet."""
    def _op(uow: UnitOfWork):
        order = uow.get(Order, order_id, lock=True)
        if order is None:
            raise NotFound("order", order_id)
        if order.status == ORDER_COMPLETED:
            raise ImmutableCompletedOrder(order.id, "delete")
        uow.delete(order)

    run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: int) -> Order:
    order = Order.query.filter_by(id=order_id).first()
    if order is None:
        raise NotFound("order", order_id)
    return order


def list_orders(
    *,
    status: str | None = None,
    driver_id: int | None = None,
    customer_id: int | None = None,
    scheduled_date: date | None = None,
    limit: int = 200,
) -> list[Order]:
    q = Order.query
    if status:
        q = q.filter(Order.status == status)
    if driver_id:
        q = q.filter(Order.driver_id == driver_id)
    if customer_id:
        q = q.filter(Order.customer_id == customer_id)
    if scheduled_date:
        q = q.filter(Order.scheduled_date == scheduled_date)
    return q.order_by(Order.scheduled_date.desc(), Order.id.desc()).limit(limit).all()
