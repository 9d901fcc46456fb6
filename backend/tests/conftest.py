"""
Pytest fixtures for HydroFlow backend tests.

Provides an in-memory database, per-test table wipe, test client and
factories for the people/products/orders the reconciliation tests need.
"""

from datetime import date
from decimal import Decimal

import pytest
from hydroflow import create_app
from hydroflow.extensions import db
from hydroflow.models import (
    CustomerBottleWallet,
    CustomerProfile,
    CustomerSpecialPrice,
    DriverProfile,
    Expense,
    Order,
    OrderItem,
    Product,
    Route,
)
from hydroflow.models.orders import ORDER_COMPLETED, ORDER_PENDING, PAYMENT_CASH


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TX_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifications(app):
    """Capture NOTIFICATION_HOOK calls as (event_type, payload) tuples."""
    captured = []
    previous = app.config.get('NOTIFICATION_HOOK')
    app.config['NOTIFICATION_HOOK'] = lambda event_type, payload: captured.append((event_type, payload))
    yield captured
    app.config['NOTIFICATION_HOOK'] = previous


@pytest.fixture(scope='function')
def driver(db_session):
    driver = DriverProfile(name="Driver One", phone="0300-1111111")
    db_session.add(driver)
    db_session.commit()
    return driver


@pytest.fixture(scope='function')
def other_driver(db_session):
    driver = DriverProfile(name="Driver Two")
    db_session.add(driver)
    db_session.commit()
    return driver


@pytest.fixture(scope='function')
def route(db_session, driver):
    route = Route(name="North", default_driver_id=driver.id)
    db_session.add(route)
    db_session.commit()
    return route


@pytest.fixture(scope='function')
def product(db_session):
    """19L returnable bottle at 100.00 with 100 filled / 20 empty in stock."""
    product = Product(
        sku="BTL-19L",
        name="19L Bottle",
        base_price=Decimal("100.00"),
        is_returnable=True,
        stock_filled=100,
        stock_empty=20,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(sku, *, price="50.00", filled=100, empty=0, damaged=0):
        product = Product(
            sku=sku,
            name=sku,
            base_price=Decimal(price),
            stock_filled=filled,
            stock_empty=empty,
            stock_damaged=damaged,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_customer(db_session, route, product):
    def _make(name="Customer", *, balance="0.00", credit_limit="500.00", delivery_days=None,
              default_quantity=2, route_id=None, default_product_id=None, is_active=True,
              customer_type="RESIDENTIAL"):
        customer = CustomerProfile(
            name=name,
            route_id=route_id or route.id,
            cash_balance=Decimal(balance),
            credit_limit=Decimal(credit_limit),
            default_product_id=default_product_id or product.id,
            default_quantity=default_quantity,
            delivery_days=list(delivery_days if delivery_days is not None else range(7)),
            is_active=is_active,
            customer_type=customer_type,
        )
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture(scope='function')
def customer(make_customer):
    """Balance 0.00, credit limit 500.00, on the North route."""
    return make_customer("Ali Traders")


@pytest.fixture(scope='function')
def special_price(db_session):
    def _make(customer, product, price):
        row = CustomerSpecialPrice(customer_id=customer.id, product_id=product.id, custom_price=Decimal(price))
        db_session.add(row)
        db_session.commit()
        return row
    return _make


@pytest.fixture(scope='function')
def make_order(db_session, customer, driver, product):
    """
    Create an open order directly (no gate, no ledger).

    lines: list of (product, quantity, price) tuples; default one line of
    2 x 100.00 of the default product.
    """
    def _make(*, lines=None, customer_id=None, driver_id=None, status=ORDER_PENDING,
              scheduled_date=date(2026, 1, 19), delivery_charge="0.00", discount="0.00"):
        lines = lines or [(product, 2, "100.00")]
        items = [OrderItem(product_id=p.id, quantity=q, price_at_time=Decimal(price)) for p, q, price in lines]
        total = sum((Decimal(price) * q for _, q, price in lines), Decimal("0.00"))
        order = Order(
            customer_id=customer_id or customer.id,
            driver_id=driver_id or driver.id,
            status=status,
            scheduled_date=scheduled_date,
            delivery_charge=Decimal(delivery_charge),
            discount=Decimal(discount),
            total_amount=total + Decimal(delivery_charge) - Decimal(discount),
            items=items,
        )
        db_session.add(order)
        db_session.commit()
        return order
    return _make


@pytest.fixture(scope='function')
def completed_cash_order(db_session, customer, driver, product):
    """
    Insert an already COMPLETED cash order (bypasses the completion path).

    Used to set up handover pools without touching stock/ledger.
    """
    def _make(cash, *, driver_id=None, payment_method=PAYMENT_CASH, scheduled_date=date(2026, 1, 19)):
        order = Order(
            customer_id=customer.id,
            driver_id=driver_id or driver.id,
            status=ORDER_COMPLETED,
            scheduled_date=scheduled_date,
            total_amount=Decimal(cash),
            cash_collected=Decimal(cash),
            payment_method=payment_method,
        )
        db_session.add(order)
        db_session.commit()
        return order
    return _make


@pytest.fixture(scope='function')
def make_expense(db_session, driver):
    def _make(amount, *, status="APPROVED", payment_method="CASH_ON_HAND", driver_id=None):
        expense = Expense(
            driver_id=driver_id or driver.id,
            amount=Decimal(amount),
            category="FUEL",
            expense_date=date(2026, 1, 19),
            status=status,
            payment_method=payment_method,
        )
        db_session.add(expense)
        db_session.commit()
        return expense
    return _make


@pytest.fixture(scope='function')
def wallet_balance(db_session):
    """Current container balance for (customer_id, product_id), None if no wallet."""
    def _balance(customer_id: int, product_id: int):
        wallet = db_session.query(CustomerBottleWallet).filter_by(
            customer_id=customer_id, product_id=product_id
        ).first()
        return None if wallet is None else wallet.balance
    return _balance


@pytest.fixture(scope='function')
def reload(db_session):
    """Re-read an ORM object from the database."""
    def _reload(obj):
        db_session.expire_all()
        return db_session.get(type(obj), obj.id)
    return _reload
