from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_str
from hydroflow.time_utils import to_utc_z, to_iso_date


# Order status
ORDER_SCHEDULED = "SCHEDULED"
ORDER_PENDING = "PENDING"
ORDER_IN_PROGRESS = "IN_PROGRESS"
ORDER_COMPLETED = "COMPLETED"
ORDER_CANCELLED = "CANCELLED"
ORDER_RESCHEDULED = "RESCHEDULED"

ORDER_STATUSES = [
    ORDER_SCHEDULED,
    ORDER_PENDING,
    ORDER_IN_PROGRESS,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
    ORDER_RESCHEDULED,
]
OPEN_ORDER_STATUSES = {ORDER_SCHEDULED, ORDER_PENDING, ORDER_IN_PROGRESS}

# Payment methods
PAYMENT_CASH = "CASH"
PAYMENT_CREDIT = "CREDIT"
PAYMENT_ONLINE = "ONLINE"

PAYMENT_METHODS = [PAYMENT_CASH, PAYMENT_CREDIT, PAYMENT_ONLINE]

CANCELLATION_REASONS = [
    "CUSTOMER_NOT_HOME",
    "HOUSE_LOCKED",
    "CUSTOMER_REFUSED",
    "WRONG_ADDRESS",
    "PAYMENT_ISSUE",
    "SECURITY_ISSUE",
    "CUSTOMER_NOT_REACHABLE",
    "WEATHER_CONDITION",
    "VEHICLE_BREAKDOWN",
    "OTHER",
]


class Order(db.Model):
    """
    Scheduled delivery to one customer.

    LIFECYCLE:
    - SCHEDULED / PENDING / IN_PROGRESS: open, editable
    - COMPLETED: terminal; ledger, wallet and stock effects applied exactly once
    - CANCELLED / RESCHEDULED: terminal for this attempt

    IMMUTABLE: Once COMPLETED, financial fields and items cannot change and
    the status cannot move back.

    cash_handover_id links a completed cash order to the handover that
    settles it. NULL means the cash is still in the driver's unlinked pool.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_customer_date", "customer_id", "scheduled_date"),
        db.Index("ix_orders_driver_status_payment", "driver_id", "status", "payment_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer_profiles.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("driver_profiles.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_SCHEDULED, index=True)
    scheduled_date = db.Column(db.Date, nullable=False, index=True)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    cash_collected = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_CASH)
    delivery_charge = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    cash_handover_id = db.Column(db.Integer, db.ForeignKey("cash_handovers.id"), nullable=True, index=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cancellation / rescheduling metadata
    cancellation_reason = db.Column(db.String(32), nullable=True)
    cancelled_by = db.Column(db.String(128), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    driver_notes = db.Column(db.Text, nullable=True)
    rescheduled_to_date = db.Column(db.Date, nullable=True)
    original_scheduled_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("CustomerProfile", backref=db.backref("orders", lazy=True))
    driver = db.relationship("DriverProfile", backref=db.backref("orders", lazy=True))
    cash_handover = db.relationship("CashHandover", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} customer_id={self.customer_id}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "driver_id": self.driver_id,
            "status": self.status,
            "scheduled_date": to_iso_date(self.scheduled_date),
            "total_amount": money_str(self.total_amount),
            "cash_collected": money_str(self.cash_collected),
            "payment_method": self.payment_method,
            "delivery_charge": money_str(self.delivery_charge),
            "discount": money_str(self.discount),
            "cash_handover_id": self.cash_handover_id,
            "delivered_at": to_utc_z(self.delivered_at),
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "driver_notes": self.driver_notes,
            "rescheduled_to_date": to_iso_date(self.rescheduled_to_date),
            "original_scheduled_date": to_iso_date(self.original_scheduled_date),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    One product line of an order.

    filled_given / empty_taken / damaged_returned record the physical
    exchange and stay zero until the order is completed.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_order_items_quantity"),
        db.CheckConstraint("filled_given >= 0", name="ck_order_items_filled_given"),
        db.CheckConstraint("empty_taken >= 0", name="ck_order_items_empty_taken"),
        db.CheckConstraint("damaged_returned >= 0", name="ck_order_items_damaged_returned"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_at_time = db.Column(db.Numeric(12, 2), nullable=False)

    filled_given = db.Column(db.Integer, nullable=False, default=0)
    empty_taken = db.Column(db.Integer, nullable=False, default=0)
    damaged_returned = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    @property
    def line_total(self) -> Decimal:
        return self.price_at_time * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price_at_time": money_str(self.price_at_time),
            "filled_given": self.filled_given,
            "empty_taken": self.empty_taken,
            "damaged_returned": self.damaged_returned,
        }
