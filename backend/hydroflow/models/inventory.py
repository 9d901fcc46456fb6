from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_str
from hydroflow.time_utils import to_utc_z


# Stock movement types
MOVEMENT_RESTOCK = "RESTOCK"
MOVEMENT_REFILL = "REFILL"
MOVEMENT_DAMAGE = "DAMAGE"
MOVEMENT_LOSS = "LOSS"
MOVEMENT_ADJUST = "ADJUST"
MOVEMENT_DELIVERY = "DELIVERY"


class Product(db.Model):
    """
    Returnable-container product with warehouse stock buckets.

    BUCKETS:
    - stock_filled: full containers ready to deliver
    - stock_empty: good empties waiting to be refilled
    - stock_damaged: broken containers kept for audit (never re-enter empty)
    - stock_reserved: set aside, not available for delivery

    Buckets are mutable counters, changed only through inventory_service
    under a row lock. Each change also writes a StockMovement row.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_filled >= 0", name="ck_products_stock_filled"),
        db.CheckConstraint("stock_empty >= 0", name="ck_products_stock_empty"),
        db.CheckConstraint("stock_damaged >= 0", name="ck_products_stock_damaged"),
        db.CheckConstraint("stock_reserved >= 0", name="ck_products_stock_reserved"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    base_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    is_returnable = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    stock_filled = db.Column(db.Integer, nullable=False, default=0)
    stock_empty = db.Column(db.Integer, nullable=False, default=0)
    stock_damaged = db.Column(db.Integer, nullable=False, default=0)
    stock_reserved = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "base_price": money_str(self.base_price),
            "is_returnable": self.is_returnable,
            "is_active": self.is_active,
            "stock_filled": self.stock_filled,
            "stock_empty": self.stock_empty,
            "stock_damaged": self.stock_damaged,
            "stock_reserved": self.stock_reserved,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of a stock bucket change.

    Snapshots before/after for filled, empty and damaged so drift can be
    traced to the operation that caused it (restock, refill, delivery...).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(16), nullable=False, index=True)

    filled_before = db.Column(db.Integer, nullable=False)
    filled_after = db.Column(db.Integer, nullable=False)
    empty_before = db.Column(db.Integer, nullable=False)
    empty_after = db.Column(db.Integer, nullable=False)
    damaged_before = db.Column(db.Integer, nullable=False)
    damaged_after = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    actor = db.Column(db.String(128), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "filled": [self.filled_before, self.filled_after],
            "empty": [self.empty_before, self.empty_after],
            "damaged": [self.damaged_before, self.damaged_after],
            "order_id": self.order_id,
            "actor": self.actor,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class CustomerBottleWallet(db.Model):
    """
    Containers of one product currently held by one customer.

    Incremented by filled_given, decremented by empty_taken on completion.
    Never negative (enforced in wallet_service and by a check constraint).
    """
    __tablename__ = "customer_bottle_wallets"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "product_id", name="uq_bottle_wallets_customer_product"),
        db.CheckConstraint("balance >= 0", name="ck_bottle_wallets_balance"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer_profiles.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    balance = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("CustomerProfile", backref=db.backref("bottle_wallets", lazy=True))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "balance": self.balance,
            "updated_at": to_utc_z(self.updated_at),
        }
