from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_str
from hydroflow.time_utils import to_utc_z, to_iso_date


# Cash handover status
HANDOVER_PENDING = "PENDING"
HANDOVER_VERIFIED = "VERIFIED"
HANDOVER_REJECTED = "REJECTED"
HANDOVER_ADJUSTED = "ADJUSTED"

HANDOVER_DECISIONS = [HANDOVER_VERIFIED, HANDOVER_REJECTED, HANDOVER_ADJUSTED]
HANDOVER_STATUSES = [HANDOVER_PENDING] + HANDOVER_DECISIONS

# Expense status / payment method
EXPENSE_PENDING = "PENDING"
EXPENSE_APPROVED = "APPROVED"
EXPENSE_REJECTED = "REJECTED"

EXPENSE_CASH_ON_HAND = "CASH_ON_HAND"
EXPENSE_COMPANY_ACCOUNT = "COMPANY_ACCOUNT"

EXPENSE_PAYMENT_METHODS = [EXPENSE_CASH_ON_HAND, EXPENSE_COMPANY_ACCOUNT]

# Ledger reference types
REF_ORDER = "order"
REF_HANDOVER = "cash_handover"


class LedgerEntry(db.Model):
    """
    Customer ledger entry (append-only).

    INVARIANTS:
    - SUM(amount) over a customer's entries == CustomerProfile.cash_balance
    - balance_after[n] == balance_after[n-1] + amount[n]

    Negative amount = debit (sale), positive = credit (payment).
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_entries_customer_id_id", "customer_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer_profiles.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    balance_after = db.Column(db.Numeric(12, 2), nullable=False)
    description = db.Column(db.String(255), nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("CustomerProfile", backref=db.backref("ledger_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "amount": money_str(self.amount),
            "balance_after": money_str(self.balance_after),
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }


class DriverLedgerEntry(db.Model):
    """
    Driver ledger entry (append-only).

    Records settled handover discrepancies: shortage = negative (driver owes),
    excess = positive (company owes driver). Same running-balance invariants
    as LedgerEntry, against DriverProfile.ledger_balance.
    """
    __tablename__ = "driver_ledger_entries"
    __table_args__ = (
        db.Index("ix_driver_ledger_entries_driver_id_id", "driver_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("driver_profiles.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    balance_after = db.Column(db.Numeric(12, 2), nullable=False)
    description = db.Column(db.String(255), nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    driver = db.relationship("DriverProfile", backref=db.backref("ledger_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "driver_id": self.driver_id,
            "amount": money_str(self.amount),
            "balance_after": money_str(self.balance_after),
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }


class Expense(db.Model):
    """
    Driver-incurred cost.

    Only APPROVED + CASH_ON_HAND expenses reduce the cash a driver must hand
    over; they are swept into a handover via cash_handover_id like orders.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_expenses_amount"),
        db.Index("ix_expenses_driver_status_payment", "driver_id", "status", "payment_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("driver_profiles.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="OTHER")
    description = db.Column(db.String(255), nullable=True)
    expense_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=EXPENSE_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=False, default=EXPENSE_CASH_ON_HAND)

    cash_handover_id = db.Column(db.Integer, db.ForeignKey("cash_handovers.id"), nullable=True, index=True)

    reviewed_by = db.Column(db.String(128), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    driver = db.relationship("DriverProfile", backref=db.backref("expenses", lazy=True))
    cash_handover = db.relationship("CashHandover", backref=db.backref("expenses", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "driver_id": self.driver_id,
            "amount": money_str(self.amount),
            "category": self.category,
            "description": self.description,
            "expense_date": to_iso_date(self.expense_date),
            "status": self.status,
            "payment_method": self.payment_method,
            "cash_handover_id": self.cash_handover_id,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "created_at": to_utc_z(self.created_at),
        }


class CashHandover(db.Model):
    """
    Driver cash submission: a snapshot of unlinked cash items to settle.

    LIFECYCLE:
    - PENDING: linked orders/expenses are locked to this handover
    - VERIFIED / ADJUSTED: discrepancy posted to the driver ledger
    - REJECTED: links cleared, items return to the unlinked pool
    - cancelled: links cleared and the row deleted

    expected_cash is computed from the linked items at submission;
    discrepancy = expected_cash - actual_cash (positive = shortage).

    A partial unique index allows at most one PENDING row per driver.
    """
    __tablename__ = "cash_handovers"
    __table_args__ = (
        db.Index(
            "uq_cash_handovers_driver_pending",
            "driver_id",
            unique=True,
            sqlite_where=db.text("status = 'PENDING'"),
            postgresql_where=db.text("status = 'PENDING'"),
        ),
        db.Index("ix_cash_handovers_driver_date", "driver_id", "handover_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("driver_profiles.id"), nullable=False, index=True)
    handover_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=HANDOVER_PENDING, index=True)

    gross_cash = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    expense_total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    expected_cash = db.Column(db.Numeric(12, 2), nullable=False)
    actual_cash = db.Column(db.Numeric(12, 2), nullable=False)
    discrepancy = db.Column(db.Numeric(12, 2), nullable=False)
    adjustment_amount = db.Column(db.Numeric(12, 2), nullable=True)

    cash_order_count = db.Column(db.Integer, nullable=False, default=0)
    expense_count = db.Column(db.Integer, nullable=False, default=0)

    driver_notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    shift_start = db.Column(db.DateTime(timezone=True), nullable=True)
    shift_end = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    verified_by = db.Column(db.String(128), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    driver = db.relationship("DriverProfile", backref=db.backref("cash_handovers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "driver_id": self.driver_id,
            "handover_date": to_iso_date(self.handover_date),
            "status": self.status,
            "gross_cash": money_str(self.gross_cash),
            "expense_total": money_str(self.expense_total),
            "expected_cash": money_str(self.expected_cash),
            "actual_cash": money_str(self.actual_cash),
            "discrepancy": money_str(self.discrepancy),
            "adjustment_amount": money_str(self.adjustment_amount),
            "cash_order_count": self.cash_order_count,
            "expense_count": self.expense_count,
            "driver_notes": self.driver_notes,
            "admin_notes": self.admin_notes,
            "shift_start": to_utc_z(self.shift_start),
            "shift_end": to_utc_z(self.shift_end),
            "submitted_at": to_utc_z(self.submitted_at),
            "verified_by": self.verified_by,
            "verified_at": to_utc_z(self.verified_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["orders"] = [o.to_dict(include_items=False) for o in self.orders]
            data["expenses"] = [e.to_dict() for e in self.expenses]
        return data
