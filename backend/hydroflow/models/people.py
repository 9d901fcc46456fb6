from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_str
from hydroflow.time_utils import to_utc_z

CUSTOMER_RESIDENTIAL = "RESIDENTIAL"
CUSTOMER_COMMERCIAL = "COMMERCIAL"
CUSTOMER_TYPES = [CUSTOMER_RESIDENTIAL, CUSTOMER_COMMERCIAL]


class Route(db.Model):
    """
    Delivery route grouping customers.

    WHY: Orders created without an explicit driver inherit the route's
    default driver (single creation, bulk generation, rescheduling).
    """
    __tablename__ = "routes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    default_driver_id = db.Column(db.Integer, db.ForeignKey("driver_profiles.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    default_driver = db.relationship("DriverProfile", foreign_keys=[default_driver_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "default_driver_id": self.default_driver_id,
        }


class DriverProfile(db.Model):
    """
    Delivery driver.

    ledger_balance mirrors the driver ledger: negative means the driver owes
    the company (settled cash shortages), positive means the company owes the
    driver (settled excess). Only ledger_service mutates it.
    """
    __tablename__ = "driver_profiles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    ledger_balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<DriverProfile id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "is_active": self.is_active,
            "ledger_balance": money_str(self.ledger_balance),
            "version_id": self.version_id,
        }


class CustomerProfile(db.Model):
    """
    Customer account.

    cash_balance is the running balance of the customer ledger (negative =
    customer owes money). credit_limit is the maximum allowed debt magnitude:
    no new order may take cash_balance below -credit_limit.

    Bulk generation uses default_product_id / default_quantity and
    delivery_days (weekday numbers, Monday=0).
    """
    __tablename__ = "customer_profiles"
    __table_args__ = (
        db.CheckConstraint("credit_limit >= 0", name="ck_customer_profiles_credit_limit"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    route_id = db.Column(db.Integer, db.ForeignKey("routes.id"), nullable=True, index=True)
    customer_type = db.Column(db.String(16), nullable=False, default=CUSTOMER_RESIDENTIAL, index=True)

    cash_balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    credit_limit = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    default_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    default_quantity = db.Column(db.Integer, nullable=False, default=1)
    delivery_days = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    route = db.relationship("Route", backref=db.backref("customers", lazy=True))
    default_product = db.relationship("Product", foreign_keys=[default_product_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CustomerProfile id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "route_id": self.route_id,
            "customer_type": self.customer_type,
            "cash_balance": money_str(self.cash_balance),
            "credit_limit": money_str(self.credit_limit),
            "default_product_id": self.default_product_id,
            "default_quantity": self.default_quantity,
            "delivery_days": list(self.delivery_days or []),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerSpecialPrice(db.Model):
    """Negotiated per-customer price for a product (overrides base_price)."""
    __tablename__ = "customer_special_prices"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "product_id", name="uq_special_prices_customer_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer_profiles.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    custom_price = db.Column(db.Numeric(12, 2), nullable=False)

    customer = db.relationship("CustomerProfile", backref=db.backref("special_prices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "custom_price": money_str(self.custom_price),
        }
