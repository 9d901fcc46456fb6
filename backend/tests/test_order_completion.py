# Overview: Pytest coverage for the order completion transaction.

"""
Order Completion Tests

Completion moves customer money, container wallets and warehouse stock in
one transaction. These tests cover:
1. Ledger sale/payment entries and the resulting balance
2. Wallet exchange, including the negative-balance abort
3. Stock buckets after delivery (damaged returns never re-enter empty)
4. Full rollback on any failure
5. Idempotence of a repeated completion
"""

from decimal import Decimal

import pytest

from hydroflow.errors import (
    ImmutableCompletedOrder,
    InsufficientStock,
    NegativeContainerBalance,
    NotFound,
    OrderNotCompletable,
)
from hydroflow.models import AuditEvent, LedgerEntry, StockMovement
from hydroflow.models.orders import ORDER_CANCELLED, ORDER_COMPLETED, ORDER_PENDING
from hydroflow.services import order_service
from hydroflow.services.ledger_service import verify_customer_ledger
from hydroflow.validation import CompletionItem, CompletionRequest


def _complete(order, cash, items=None, payment_method="CASH"):
    return order_service.complete_order(
        CompletionRequest(
            order_id=order.id,
            cash_collected=Decimal(cash),
            payment_method=payment_method,
            items=items,
        )
    )


def _item(product, filled, empty=0, damaged=0, price=None):
    return CompletionItem(
        product_id=product.id,
        quantity=filled,
        filled_given=filled,
        empty_taken=empty,
        damaged_returned=damaged,
        price=Decimal(price) if price else None,
    )


def _entries(customer):
    return LedgerEntry.query.filter_by(customer_id=customer.id).order_by(LedgerEntry.id).all()


class TestLedgerEffects:
    """Sale debit, then payment credit, against the customer balance."""

    def test_full_cash_payment_nets_to_zero(self, db_session, customer, product, make_order, reload):
        order = make_order()

        result = _complete(order, "200.00", [_item(product, 2)])

        assert result.applied is True
        assert reload(customer).cash_balance == Decimal("0.00")
        entries = _entries(customer)
        assert [e.amount for e in entries] == [Decimal("-200.00"), Decimal("200.00")]
        assert [e.balance_after for e in entries] == [Decimal("-200.00"), Decimal("0.00")]
        assert entries[0].description == f"Order #{order.id} Sale"
        assert entries[1].description == f"Order #{order.id} Payment"

    def test_partial_payment_leaves_customer_owing(self, db_session, customer, product, make_order, reload):
        order = make_order()

        _complete(order, "150.00", [_item(product, 2)])

        assert reload(customer).cash_balance == Decimal("-50.00")
        assert [e.amount for e in _entries(customer)] == [Decimal("-200.00"), Decimal("150.00")]

    def test_zero_cash_writes_only_sale_entry(self, db_session, customer, product, make_order, reload):
        order = make_order()

        _complete(order, "0.00", [_item(product, 2)], payment_method="CREDIT")

        assert [e.amount for e in _entries(customer)] == [Decimal("-200.00")]
        assert reload(customer).cash_balance == Decimal("-200.00")

    def test_ledger_stays_consistent_over_many_orders(self, db_session, customer, product, make_order):
        for cash in ("200.00", "50.00", "0.00", "300.00"):
            order = make_order()
            _complete(order, cash, [_item(product, 2)])

        check = verify_customer_ledger(customer.id)
        assert check["consistent"] is True
        assert check["entry_count"] == 7
        assert Decimal(check["stored_balance"]) == Decimal("-250.00")

    def test_delivered_quantity_is_billed(self, db_session, customer, product, make_order, reload):
        """Ordered 2, driver delivered 3 on the spot: 3 x 100.00 is billed."""
        order = make_order()

        result = _complete(order, "300.00", [_item(product, 3)])

        assert result.order.total_amount == Decimal("300.00")
        assert reload(customer).cash_balance == Decimal("0.00")

    def test_total_includes_delivery_charge_and_discount(self, db_session, customer, product, make_order, reload):
        order = make_order(delivery_charge="20.00", discount="10.00")

        result = _complete(order, "0.00", [_item(product, 2)])

        assert result.order.total_amount == Decimal("210.00")

    def test_special_price_used_for_new_line(self, db_session, customer, make_product, make_order, special_price):
        other = make_product("BTL-6L", price="40.00")
        special_price(customer, other, "35.00")
        order = make_order()

        result = _complete(order, "0.00", [_item(other, 2)])

        assert result.order.total_amount == Decimal("70.00")

    def test_existing_line_price_is_kept(self, db_session, customer, product, make_order):
        order = make_order(lines=[(product, 2, "90.00")])

        result = _complete(order, "180.00", [_item(product, 2)])

        assert result.order.total_amount == Decimal("180.00")


class TestWalletEffects:

    def test_even_exchange_leaves_wallet_at_zero(self, db_session, customer, product, make_order, wallet_balance):
        order = make_order()

        _complete(order, "200.00", [_item(product, 2, empty=2)])

        assert wallet_balance(customer.id, product.id) == 0

    def test_over_return_aborts_everything(self, db_session, customer, product, make_order, wallet_balance, reload):
        order = make_order()

        with pytest.raises(NegativeContainerBalance) as exc:
            _complete(order, "100.00", [_item(product, 1, empty=3)])

        assert exc.value.details["current"] == 0
        assert LedgerEntry.query.count() == 0
        assert StockMovement.query.count() == 0
        assert wallet_balance(customer.id, product.id) is None
        p = reload(product)
        assert (p.stock_filled, p.stock_empty) == (100, 20)
        o = reload(order)
        assert o.status == ORDER_PENDING
        assert o.cash_collected == Decimal("0.00")
        assert reload(customer).cash_balance == Decimal("0.00")

    def test_wallet_accumulates_across_orders(self, db_session, customer, product, make_order, wallet_balance):
        _complete(make_order(), "200.00", [_item(product, 2)])
        _complete(make_order(), "200.00", [_item(product, 2, empty=1)])

        assert wallet_balance(customer.id, product.id) == 3


class TestStockEffects:

    def test_buckets_after_delivery(self, db_session, customer, product, make_order, reload):
        order = make_order()

        _complete(order, "200.00", [_item(product, 2, empty=1, damaged=1)])

        p = reload(product)
        assert p.stock_filled == 98
        assert p.stock_empty == 21
        assert p.stock_damaged == 1

        movement = StockMovement.query.filter_by(order_id=order.id).one()
        assert movement.movement_type == "DELIVERY"
        assert (movement.filled_before, movement.filled_after) == (100, 98)

    def test_insufficient_stock_rolls_back(self, db_session, customer, make_product, make_order, reload,
                                           wallet_balance):
        scarce = make_product("SCARCE", price="10.00", filled=3)
        order = make_order(lines=[(scarce, 5, "10.00")])

        with pytest.raises(InsufficientStock) as exc:
            _complete(order, "50.00", [_item(scarce, 5)])

        assert "available 3, required 5" in str(exc.value)
        assert str(exc.value).startswith("cannot complete delivery")
        assert reload(scarce).stock_filled == 3
        assert LedgerEntry.query.count() == 0
        assert wallet_balance(customer.id, scarce.id) is None
        assert reload(order).status == ORDER_PENDING

    def test_failure_on_second_line_leaves_first_untouched(self, db_session, customer, product, make_product,
                                                           make_order, reload):
        scarce = make_product("SCARCE", price="10.00", filled=1)
        order = make_order(lines=[(product, 2, "100.00"), (scarce, 2, "10.00")])

        with pytest.raises(InsufficientStock):
            _complete(order, "0.00", [_item(product, 2), _item(scarce, 2)])

        assert reload(product).stock_filled == 100
        assert reload(scarce).stock_filled == 1

    def test_completion_without_items_delivers_as_ordered(self, db_session, customer, product, make_order, reload):
        order = make_order()

        result = _complete(order, "200.00")

        assert result.order.items[0].filled_given == 2
        assert reload(product).stock_filled == 98


class TestIdempotenceAndState:

    def test_second_completion_is_noop(self, db_session, customer, product, make_order, reload, wallet_balance):
        order = make_order()
        _complete(order, "200.00", [_item(product, 2)])

        result = _complete(order, "200.00", [_item(product, 2)])

        assert result.applied is False
        assert LedgerEntry.query.count() == 2
        assert StockMovement.query.count() == 1
        assert reload(product).stock_filled == 98
        assert wallet_balance(customer.id, product.id) == 2

    def test_completed_order_status_and_audit(self, db_session, customer, product, make_order):
        order = make_order()

        result = _complete(order, "200.00", [_item(product, 2)])

        assert result.order.status == ORDER_COMPLETED
        assert result.order.delivered_at is not None
        events = AuditEvent.query.filter_by(entity_type="order", entity_id=order.id).all()
        assert [e.event_type for e in events] == ["order.completed"]

    def test_cancelled_order_cannot_complete(self, db_session, customer, product, make_order):
        order = make_order(status=ORDER_CANCELLED)

        with pytest.raises(OrderNotCompletable):
            _complete(order, "200.00", [_item(product, 2)])

        assert LedgerEntry.query.count() == 0

    def test_missing_order(self, db_session):
        with pytest.raises(NotFound):
            order_service.complete_order(
                CompletionRequest(order_id=999, cash_collected=Decimal("0.00"), payment_method="CASH")
            )

    def test_completed_order_cannot_be_edited(self, db_session, customer, product, make_order):
        order = make_order()
        _complete(order, "200.00", [_item(product, 2)])

        with pytest.raises(ImmutableCompletedOrder):
            order_service.update_order(order.id, {"status": ORDER_PENDING})

    def test_status_notification_after_commit(self, db_session, customer, product, make_order, notifications):
        order = make_order()

        _complete(order, "200.00", [_item(product, 2)])

        assert notifications == [(
            "order.status_changed",
            {
                "order_id": order.id,
                "status": ORDER_COMPLETED,
                "previous_status": ORDER_PENDING,
                "customer_id": customer.id,
                "driver_id": order.driver_id,
            },
        )]

    def test_failed_completion_sends_no_notification(self, db_session, customer, product, make_order,
                                                     notifications):
        order = make_order()

        with pytest.raises(NegativeContainerBalance):
            _complete(order, "0.00", [_item(product, 1, empty=5)])

        assert notifications == []

    def test_failing_hook_does_not_undo_completion(self, app, db_session, customer, product, make_order, reload):
        def broken(event_type, payload):
            raise RuntimeError("push service down")

        previous = app.config.get("NOTIFICATION_HOOK")
        app.config["NOTIFICATION_HOOK"] = broken
        try:
            order = make_order()
            _complete(order, "200.00", [_item(product, 2)])
        finally:
            app.config["NOTIFICATION_HOOK"] = previous

        assert reload(order).status == ORDER_COMPLETED
