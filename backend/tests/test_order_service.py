# Overview: Pytest coverage for order creation, generation and lifecycle edits.

from datetime import date
from decimal import Decimal

import pytest

from hydroflow.errors import (
    CreditLimitExceeded,
    DuplicateOrder,
    IllegalStateTransition,
    ImmutableCompletedOrder,
    InsufficientStock,
    NotAssignedDriver,
    NotFound,
)
from hydroflow.models import AuditEvent, LedgerEntry, Order, Route
from hydroflow.models.orders import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_PENDING,
    ORDER_RESCHEDULED,
    ORDER_SCHEDULED,
)
from hydroflow.services import order_service
from hydroflow.validation import (
    CompletionItem,
    CompletionRequest,
    CreateOrderRequest,
    GenerateOrdersRequest,
    OrderLineInput,
    UnableToDeliverRequest,
)

MONDAY = date(2026, 1, 19)


def _create(customer, product, quantity=2, **kwargs):
    return order_service.create_order(
        CreateOrderRequest(
            customer_id=customer.id,
            scheduled_date=kwargs.pop("scheduled_date", MONDAY),
            items=(OrderLineInput(product_id=product.id, quantity=quantity, price=kwargs.pop("price", None)),),
            **kwargs,
        )
    )


class TestCreateOrder:

    def test_defaults_driver_from_route_and_prices_from_base(self, db_session, customer, product, driver):
        order = _create(customer, product)

        assert order.driver_id == driver.id
        assert order.status == ORDER_SCHEDULED
        assert order.total_amount == Decimal("200.00")
        assert order.items[0].price_at_time == Decimal("100.00")
        assert LedgerEntry.query.count() == 0

    def test_special_price_then_explicit_price(self, db_session, customer, product, special_price):
        special_price(customer, product, "80.00")

        special = _create(customer, product)
        explicit = _create(customer, product, price=Decimal("75.00"), scheduled_date=date(2026, 1, 20))

        assert special.total_amount == Decimal("160.00")
        assert explicit.total_amount == Decimal("150.00")

    def test_duplicate_for_same_day(self, db_session, customer, product):
        first = _create(customer, product)

        with pytest.raises(DuplicateOrder) as exc:
            _create(customer, product)

        assert exc.value.details["order_id"] == first.id

    def test_cancelled_order_does_not_block_new_one(self, db_session, customer, product, make_order):
        make_order(status=ORDER_CANCELLED, scheduled_date=MONDAY)

        order = _create(customer, product)

        assert order.id is not None

    def test_stock_is_strict(self, db_session, customer, product):
        with pytest.raises(InsufficientStock) as exc:
            _create(customer, product, quantity=101)

        assert str(exc.value).startswith("cannot create order")
        assert Order.query.count() == 0

    def test_credit_strict_unless_disabled(self, db_session, make_customer, product):
        tight = make_customer("Tight", credit_limit="100.00")

        with pytest.raises(CreditLimitExceeded):
            _create(tight, product)

        order = _create(tight, product, enforce_credit=False)
        assert order.total_amount == Decimal("200.00")

    def test_unknown_driver(self, db_session, customer, product):
        with pytest.raises(NotFound):
            _create(customer, product, driver_id=999)


class TestGenerateOrders:

    def test_creates_for_customers_due_that_weekday(self, db_session, make_customer, driver):
        due = make_customer("Monday", delivery_days=[0, 3])
        make_customer("Wednesday", delivery_days=[2])
        make_customer("Inactive", delivery_days=[0], is_active=False)

        result = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY))

        assert result["count"] == 1
        order = Order.query.one()
        assert order.customer_id == due.id
        assert order.driver_id == driver.id
        assert order.status == ORDER_SCHEDULED
        assert order.total_amount == Decimal("200.00")

    def test_skips_customers_that_already_have_an_order(self, db_session, customer, make_order):
        make_order(scheduled_date=MONDAY)

        result = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY))

        assert result["count"] == 0
        assert Order.query.count() == 1

    def test_credit_is_advisory(self, db_session, make_customer):
        make_customer("Good")
        make_customer("Over limit", balance="-450.00", credit_limit="500.00")

        result = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY))

        assert result["count"] == 1
        assert result["skipped_due_to_credit"] == 1
        assert "1 customers skipped" in result["message"]

    def test_whole_run_refused_on_aggregate_stock_shortage(self, db_session, make_customer, product):
        make_customer("A", default_quantity=60)
        make_customer("B", default_quantity=60, credit_limit="10000.00")

        result = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY))

        assert result["count"] == 0
        assert result["insufficient_stock"][0]["requested"] == 120
        assert Order.query.count() == 0

    def test_batches_cover_every_customer(self, db_session, make_customer):
        for i in range(5):
            make_customer(f"C{i}", default_quantity=1)

        result = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY), batch_size=2)

        assert result["count"] == 5
        assert Order.query.count() == 5

    def test_route_filter(self, db_session, make_customer, route, driver):
        south = Route(name="South", default_driver_id=driver.id)
        db_session.add(south)
        db_session.commit()
        make_customer("North customer")
        make_customer("South customer", route_id=south.id)

        result = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY, route_id=south.id))

        assert result["count"] == 1

    def test_customer_type_filter(self, db_session, make_customer):
        make_customer("Home")
        office = make_customer("Office", customer_type="COMMERCIAL")

        result = order_service.generate_orders(
            GenerateOrdersRequest(scheduled_date=MONDAY, customer_type="COMMERCIAL")
        )

        assert result["count"] == 1
        assert Order.query.one().customer_id == office.id

    def test_preview_writes_nothing(self, db_session, make_customer):
        make_customer("Good")
        over = make_customer("Over limit", balance="-450.00", credit_limit="500.00")

        result = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY, preview=True))

        assert result["preview"] is True
        assert result["count"] == 1
        assert result["skipped_due_to_credit"] == 1
        assert result["skipped"] == [{"customer_id": over.id, "reason": "CreditLimitExceeded"}]
        assert Order.query.count() == 0

    def test_preview_matches_real_run(self, db_session, make_customer, special_price, product):
        cheap = make_customer("Special price", balance="-380.00", credit_limit="500.00")
        special_price(cheap, product, "50.00")
        make_customer("Base price", balance="-380.00", credit_limit="500.00")

        preview = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY, preview=True))
        result = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY))

        assert preview["count"] == result["count"] == 1
        assert Order.query.one().customer_id == cheap.id

    def test_preview_reports_stock_shortage(self, db_session, make_customer):
        make_customer("Big", default_quantity=101, credit_limit="100000.00")

        result = order_service.generate_orders(GenerateOrdersRequest(scheduled_date=MONDAY, preview=True))

        assert result["count"] == 0
        assert result["insufficient_stock"][0]["available"] == 100


class TestUpdateOrder:

    def test_edit_items_recomputes_total(self, db_session, customer, product, make_order):
        order = make_order()

        updated = order_service.update_order(
            order.id, {"items": (OrderLineInput(product_id=product.id, quantity=5),), "discount": Decimal("50.00")}
        )

        assert updated.total_amount == Decimal("450.00")
        assert len(updated.items) == 1

    def test_status_completed_runs_completion(self, db_session, customer, product, make_order, reload):
        order = make_order()

        updated = order_service.update_order(order.id, {"status": ORDER_COMPLETED})

        assert updated.status == ORDER_COMPLETED
        assert reload(customer).cash_balance == Decimal("-200.00")
        assert reload(product).stock_filled == 98

    def test_completed_order_is_immutable(self, db_session, customer, product, make_order):
        order = make_order()
        order_service.complete_order(CompletionRequest(order.id, Decimal("200.00"), "CASH"))

        with pytest.raises(ImmutableCompletedOrder):
            order_service.update_order(order.id, {"discount": Decimal("10.00")})
        with pytest.raises(ImmutableCompletedOrder):
            order_service.update_order(order.id, {"status": ORDER_CANCELLED})

    def test_cancelled_order_is_terminal(self, db_session, make_order):
        order = make_order(status=ORDER_CANCELLED)

        with pytest.raises(IllegalStateTransition):
            order_service.update_order(order.id, {"status": ORDER_PENDING})


class TestBulkAssign:

    def test_assigns_open_orders_and_notifies(self, db_session, make_order, other_driver, notifications):
        open_order = make_order(status=ORDER_SCHEDULED)
        cancelled = make_order(status=ORDER_CANCELLED)

        count = order_service.bulk_assign_orders([open_order.id, cancelled.id], other_driver.id)

        assert count == 1
        db_session.expire_all()
        assert db_session.get(Order, open_order.id).driver_id == other_driver.id
        assert db_session.get(Order, open_order.id).status == ORDER_PENDING
        assert db_session.get(Order, cancelled.id).status == ORDER_CANCELLED
        assert notifications[0][0] == "driver.orders_assigned"
        assert notifications[0][1]["count"] == 1


class TestUnableToDeliver:

    def _request(self, order, driver, action="CANCEL", reschedule_date=None):
        return UnableToDeliverRequest(
            order_id=order.id,
            driver_id=driver.id,
            reason="CUSTOMER_NOT_HOME",
            notes="Gate locked, no answer",
            action=action,
            reschedule_date=reschedule_date,
        )

    def test_cancel(self, db_session, make_order, driver):
        order = make_order()

        cancelled, new_order = order_service.mark_unable_to_deliver(self._request(order, driver))

        assert cancelled.status == ORDER_CANCELLED
        assert cancelled.cancellation_reason == "CUSTOMER_NOT_HOME"
        assert new_order is None
        event = AuditEvent.query.filter_by(entity_type="order", entity_id=order.id).one()
        assert event.event_type == "order.cancelled"

    def test_reschedule_copies_items_to_new_date(self, db_session, make_order, driver, product):
        order = make_order()
        new_day = date(2026, 1, 22)

        old, new_order = order_service.mark_unable_to_deliver(self._request(order, driver, "RESCHEDULE", new_day))

        assert old.status == ORDER_RESCHEDULED
        assert old.rescheduled_to_date == new_day
        assert old.original_scheduled_date == MONDAY
        assert new_order.status == ORDER_SCHEDULED
        assert new_order.scheduled_date == new_day
        assert new_order.driver_id == driver.id
        assert [(i.product_id, i.quantity) for i in new_order.items] == [(product.id, 2)]

    def test_only_assigned_driver(self, db_session, make_order, other_driver):
        order = make_order()

        with pytest.raises(NotAssignedDriver):
            order_service.mark_unable_to_deliver(self._request(order, other_driver))

    def test_not_on_completed_order(self, db_session, make_order, driver):
        order = make_order()
        order_service.complete_order(CompletionRequest(order.id, Decimal("200.00"), "CASH"))

        with pytest.raises(ImmutableCompletedOrder):
            order_service.mark_unable_to_deliver(self._request(order, driver))


class TestDeleteOrder:

    def test_delete_open_order(self, db_session, make_order):
        order = make_order()

        order_service.delete_order(order.id)

        assert Order.query.count() == 0

    def test_completed_order_cannot_be_deleted(self, db_session, make_order, product):
        order = make_order()
        order_service.complete_order(
            CompletionRequest(
                order.id,
                Decimal("200.00"),
                "CASH",
                items=(CompletionItem(product.id, 2, 2, 0, 0),),
            )
        )

        with pytest.raises(ImmutableCompletedOrder):
            order_service.delete_order(order.id)

        assert Order.query.count() == 1
