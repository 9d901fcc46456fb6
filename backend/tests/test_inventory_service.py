# Overview: Pytest coverage for warehouse stock primitives and reads.

from decimal import Decimal

import pytest

from hydroflow.errors import InsufficientEmptyStock, InsufficientFilledStock, NotFound
from hydroflow.models import AuditEvent, CustomerBottleWallet, StockMovement
from hydroflow.services import inventory_service, wallet_service


class TestPrimitives:

    def test_restock_adds_to_both_buckets(self, db_session, product, reload):
        inventory_service.restock_product(product_id=product.id, filled_quantity=50, empty_quantity=5, actor="ops")

        p = reload(product)
        assert (p.stock_filled, p.stock_empty) == (150, 25)
        movement = StockMovement.query.filter_by(product_id=product.id).one()
        assert movement.movement_type == "RESTOCK"
        assert movement.actor == "ops"

    def test_refill_moves_empty_to_filled(self, db_session, product, reload):
        inventory_service.refill_bottles(product_id=product.id, quantity=15)

        p = reload(product)
        assert (p.stock_filled, p.stock_empty) == (115, 5)

    def test_refill_beyond_empty_stock(self, db_session, product, reload):
        with pytest.raises(InsufficientEmptyStock) as exc:
            inventory_service.refill_bottles(product_id=product.id, quantity=21)

        assert exc.value.details == {"product_id": product.id, "available": 20, "requested": 21}
        assert reload(product).stock_empty == 20
        assert StockMovement.query.count() == 0

    def test_damage_moves_filled_to_damaged(self, db_session, product, reload):
        inventory_service.record_damage_or_loss(product_id=product.id, quantity=3, kind="DAMAGE", reason="cracked")

        p = reload(product)
        assert (p.stock_filled, p.stock_damaged) == (97, 3)

    def test_loss_only_decrements_filled(self, db_session, product, reload):
        inventory_service.record_damage_or_loss(product_id=product.id, quantity=4, kind="LOSS", reason="stolen")

        p = reload(product)
        assert (p.stock_filled, p.stock_empty, p.stock_damaged) == (96, 20, 0)

    def test_damage_beyond_filled_stock(self, db_session, make_product, reload):
        low = make_product("LOW", filled=2)

        with pytest.raises(InsufficientFilledStock):
            inventory_service.record_damage_or_loss(product_id=low.id, quantity=3, kind="DAMAGE", reason="x")

        assert reload(low).stock_filled == 2

    def test_adjust_overwrites_and_audits(self, db_session, product, reload):
        inventory_service.adjust_stock(
            product_id=product.id, stock_filled=7, stock_empty=8, stock_damaged=9, reason="physical count"
        )

        p = reload(product)
        assert (p.stock_filled, p.stock_empty, p.stock_damaged) == (7, 8, 9)
        event = AuditEvent.query.filter_by(entity_type="product", entity_id=product.id).one()
        assert event.event_type == "inventory.adjusted"
        assert event.payload["before"] == {"filled": 100, "empty": 20, "damaged": 0}

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFound):
            inventory_service.restock_product(product_id=404, filled_quantity=1, empty_quantity=0)


class TestReads:

    def test_stats_include_containers_with_customers(self, db_session, product, customer, make_customer):
        second = make_customer("Green Villa")
        db_session.add(CustomerBottleWallet(customer_id=customer.id, product_id=product.id, balance=4))
        db_session.add(CustomerBottleWallet(customer_id=second.id, product_id=product.id, balance=6))
        db_session.commit()

        stats = inventory_service.get_inventory_stats()

        row = stats["products"][0]
        assert row["bottles_with_customers"] == 10
        assert row["total_bottles"] == 100 + 20 + 10
        assert stats["totals"]["with_customers"] == 10
        assert stats["totals"]["total"] == 130

    def test_bottles_with_customers_lists_positive_balances(self, db_session, product, customer, make_customer):
        empty_holder = make_customer("Nobody")
        db_session.add(CustomerBottleWallet(customer_id=customer.id, product_id=product.id, balance=3))
        db_session.add(CustomerBottleWallet(customer_id=empty_holder.id, product_id=product.id, balance=0))
        db_session.commit()

        rows = wallet_service.get_bottles_with_customers(product.id)

        assert rows == [{
            "customer_id": customer.id,
            "customer_name": customer.name,
            "product_id": product.id,
            "balance": 3,
        }]

    def test_movements_newest_first(self, db_session, product):
        inventory_service.restock_product(product_id=product.id, filled_quantity=1, empty_quantity=0)
        inventory_service.refill_bottles(product_id=product.id, quantity=1)

        movements = inventory_service.list_stock_movements(product.id)

        assert [m.movement_type for m in movements] == ["REFILL", "RESTOCK"]
