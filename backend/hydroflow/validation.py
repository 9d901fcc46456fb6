from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from hydroflow.time_utils import parse_iso_date, parse_iso_datetime
from .money import to_money
from .models.finance import EXPENSE_PAYMENT_METHODS, HANDOVER_DECISIONS, HANDOVER_ADJUSTED
from .models.inventory import MOVEMENT_DAMAGE, MOVEMENT_LOSS
from .models.people import CUSTOMER_TYPES
from .models.orders import (
    CANCELLATION_REASONS,
    ORDER_COMPLETED,
    ORDER_STATUSES,
    PAYMENT_CASH,
    PAYMENT_METHODS,
)

# Maximum money value: 9,999,999,999.99 fits Numeric(12, 2)
MAX_MONEY = Decimal("9999999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


# =============================================================================
# FIELD COERCION
# =============================================================================

_MISSING = object()


def _get(payload: dict, key: str, required: bool):
    value = payload.get(key, _MISSING)
    if value is _MISSING or value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    return value


def _int(payload: dict, key: str, *, required: bool = True, minimum: int | None = 0, default=None) -> Optional[int]:
    value = _get(payload, key, required)
    if value is None:
        return default

    # Strict validation to reject floats, booleans and scientific notation
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{key} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return result


def _money(payload: dict, key: str, *, required: bool = True, allow_negative: bool = False, default=None) -> Optional[Decimal]:
    """
    Money arrives as a JSON string ("12.50") or integer.

    JSON floats are refused: they have already lost precision by the time
    they reach us.
    """
    value = _get(payload, key, required)
    if value is None:
        return default
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{key} must be a decimal string or integer, not a float")
    if not isinstance(value, (int, str)):
        raise ValidationError(f"{key} must be a decimal string or integer")
    try:
        raw = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{key} must be a valid decimal amount")
    if not raw.is_finite():
        raise ValidationError(f"{key} must be a finite amount")
    if raw.as_tuple().exponent < -2:
        raise ValidationError(f"{key} must have at most 2 decimal places")
    amount = to_money(raw)
    if not allow_negative and amount < 0:
        raise ValidationError(f"{key} must not be negative")
    if abs(amount) > MAX_MONEY:
        raise ValidationError(f"{key} exceeds maximum of {MAX_MONEY}")
    return amount


def _str(payload: dict, key: str, *, required: bool = False, max_len: int = 255, min_len: int = 0) -> Optional[str]:
    value = _get(payload, key, required)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if len(value) < min_len:
        raise ValidationError(f"{key} must be at least {min_len} characters")
    if len(value) > max_len:
        raise ValidationError(f"{key} too long (max {max_len})")
    if required and not value:
        raise ValidationError(f"{key} is required")
    return value or None


def _choice(payload: dict, key: str, choices, *, required: bool = True, default=None) -> Optional[str]:
    value = _get(payload, key, required)
    if value is None:
        return default
    if not isinstance(value, str) or value.upper() not in choices:
        raise ValidationError(f"{key} must be one of {list(choices)}")
    return value.upper()


def _date(payload: dict, key: str, *, required: bool = True) -> Optional[date]:
    value = _get(payload, key, required)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO date string")
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO date (YYYY-MM-DD)")


def _datetime(payload: dict, key: str, *, required: bool = False) -> Optional[datetime]:
    value = _get(payload, key, required)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO datetime string")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")


def _bool(payload: dict, key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


def _object(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


def _list(payload: dict, key: str, *, required: bool = True) -> Optional[list]:
    value = _get(payload, key, required)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return value


# =============================================================================
# ORDERS
# =============================================================================

@dataclass(frozen=True)
class OrderLineInput:
    product_id: int
    quantity: int
    price: Optional[Decimal] = None


@dataclass(frozen=True)
class CompletionItem:
    """One delivered line, validated before the completion transaction starts."""
    product_id: int
    quantity: int
    filled_given: int
    empty_taken: int
    damaged_returned: int
    price: Optional[Decimal] = None


@dataclass(frozen=True)
class CompletionRequest:
    order_id: int
    cash_collected: Decimal
    payment_method: str
    items: Optional[tuple[CompletionItem, ...]] = None
    actor: Optional[str] = None


@dataclass(frozen=True)
class CreateOrderRequest:
    customer_id: int
    scheduled_date: date
    items: tuple[OrderLineInput, ...]
    driver_id: Optional[int] = None
    status: str = "SCHEDULED"
    delivery_charge: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")
    enforce_credit: bool = True


@dataclass(frozen=True)
class GenerateOrdersRequest:
    scheduled_date: date
    route_id: Optional[int] = None
    customer_type: Optional[str] = None
    preview: bool = False


@dataclass(frozen=True)
class UnableToDeliverRequest:
    order_id: int
    driver_id: int
    reason: str
    notes: str
    action: str
    reschedule_date: Optional[date] = None


def _order_lines(raw_items: list) -> tuple[OrderLineInput, ...]:
    if not raw_items:
        raise ValidationError("items must contain at least one line")
    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        lines.append(
            OrderLineInput(
                product_id=_int(raw, "product_id", minimum=1),
                quantity=_int(raw, "quantity", minimum=1),
                price=_money(raw, "price", required=False),
            )
        )
    return tuple(lines)


def parse_completion(order_id: int, payload: Any) -> CompletionRequest:
    payload = _object(payload)
    raw_items = _list(payload, "items", required=False)

    items = None
    if raw_items is not None:
        if not raw_items:
            raise ValidationError("items must contain at least one line; omit items to deliver as ordered")
        parsed = []
        for index, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                raise ValidationError(f"items[{index}] must be an object")
            # filled_given falls back to quantity: a line reported only by quantity is delivered in full
            quantity = _int(raw, "quantity", required=False)
            filled_given = _int(raw, "filled_given", required=False, default=quantity)
            if filled_given is None:
                filled_given = 0
            parsed.append(
                CompletionItem(
                    product_id=_int(raw, "product_id", minimum=1),
                    quantity=filled_given if quantity is None else quantity,
                    filled_given=filled_given,
                    empty_taken=_int(raw, "empty_taken", required=False, default=0),
                    damaged_returned=_int(raw, "damaged_returned", required=False, default=0),
                    price=_money(raw, "price", required=False),
                )
            )
        items = tuple(parsed)

    return CompletionRequest(
        order_id=order_id,
        cash_collected=_money(payload, "cash_collected", required=False, default=Decimal("0.00")),
        payment_method=_choice(payload, "payment_method", PAYMENT_METHODS, required=False, default=PAYMENT_CASH),
        items=items,
        actor=_str(payload, "actor", max_len=128),
    )


def parse_create_order(payload: Any) -> CreateOrderRequest:
    payload = _object(payload)
    status = _choice(payload, "status", ORDER_STATUSES, required=False, default="SCHEDULED")
    if status == ORDER_COMPLETED:
        raise ValidationError("orders cannot be created as COMPLETED; complete them instead")
    return CreateOrderRequest(
        customer_id=_int(payload, "customer_id", minimum=1),
        scheduled_date=_date(payload, "scheduled_date"),
        items=_order_lines(_list(payload, "items")),
        driver_id=_int(payload, "driver_id", required=False, minimum=1),
        status=status,
        delivery_charge=_money(payload, "delivery_charge", required=False, default=Decimal("0.00")),
        discount=_money(payload, "discount", required=False, default=Decimal("0.00")),
        enforce_credit=_bool(payload, "enforce_credit", True),
    )


def parse_generate_orders(payload: Any) -> GenerateOrdersRequest:
    payload = _object(payload)
    return GenerateOrdersRequest(
        scheduled_date=_date(payload, "scheduled_date"),
        route_id=_int(payload, "route_id", required=False, minimum=1),
        customer_type=_choice(payload, "customer_type", CUSTOMER_TYPES, required=False),
        preview=_bool(payload, "preview", False),
    )


ORDER_PATCH_FIELDS = {"driver_id", "scheduled_date", "status", "delivery_charge", "discount", "items"}


def parse_order_patch(payload: Any) -> dict:
    """
    Partial update of an open order. Only keys present in the payload are
    returned; driver_id may be explicitly null (unassign).
    """
    payload = _object(payload)
    unknown = set(payload) - ORDER_PATCH_FIELDS
    if unknown:
        raise ValidationError(f"Unknown/forbidden fields: {sorted(unknown)}")

    patch: dict = {}
    if "driver_id" in payload:
        patch["driver_id"] = _int(payload, "driver_id", required=False, minimum=1)
    if "scheduled_date" in payload:
        patch["scheduled_date"] = _date(payload, "scheduled_date")
    if "status" in payload:
        patch["status"] = _choice(payload, "status", ORDER_STATUSES)
    if "delivery_charge" in payload:
        patch["delivery_charge"] = _money(payload, "delivery_charge")
    if "discount" in payload:
        patch["discount"] = _money(payload, "discount")
    if "items" in payload:
        patch["items"] = _order_lines(_list(payload, "items"))
    return patch


def parse_bulk_assign(payload: Any) -> tuple[list[int], int]:
    payload = _object(payload)
    raw_ids = _list(payload, "order_ids")
    if not raw_ids:
        raise ValidationError("order_ids must not be empty")
    order_ids = [_int({"order_id": v}, "order_id", minimum=1) for v in raw_ids]
    return order_ids, _int(payload, "driver_id", minimum=1)


def parse_unable_to_deliver(order_id: int, payload: Any) -> UnableToDeliverRequest:
    payload = _object(payload)
    action = _choice(payload, "action", ("CANCEL", "RESCHEDULE"))
    reschedule_date = _date(payload, "reschedule_date", required=(action == "RESCHEDULE"))
    return UnableToDeliverRequest(
        order_id=order_id,
        driver_id=_int(payload, "driver_id", minimum=1),
        reason=_choice(payload, "reason", CANCELLATION_REASONS),
        notes=_str(payload, "notes", required=True, min_len=5, max_len=2000),
        action=action,
        reschedule_date=reschedule_date,
    )


# =============================================================================
# CASH HANDOVERS
# =============================================================================

@dataclass(frozen=True)
class HandoverSubmission:
    driver_id: int
    actual_cash: Decimal
    notes: Optional[str] = None
    shift_start: Optional[datetime] = None
    shift_end: Optional[datetime] = None


@dataclass(frozen=True)
class HandoverResolution:
    handover_id: int
    decision: str
    verified_by: Optional[str] = None
    admin_notes: Optional[str] = None
    adjustment_amount: Optional[Decimal] = None


def parse_handover_submission(payload: Any) -> HandoverSubmission:
    payload = _object(payload)
    shift_start = _datetime(payload, "shift_start")
    shift_end = _datetime(payload, "shift_end")
    if shift_start and shift_end and shift_end < shift_start:
        raise ValidationError("shift_end must not be before shift_start")
    return HandoverSubmission(
        driver_id=_int(payload, "driver_id", minimum=1),
        actual_cash=_money(payload, "actual_cash"),
        notes=_str(payload, "notes", max_len=2000),
        shift_start=shift_start,
        shift_end=shift_end,
    )


def parse_handover_resolution(handover_id: int, payload: Any) -> HandoverResolution:
    payload = _object(payload)
    decision = _choice(payload, "decision", HANDOVER_DECISIONS)
    adjustment = _money(payload, "adjustment_amount", required=False, allow_negative=True)
    if decision == HANDOVER_ADJUSTED and adjustment is None:
        raise ValidationError("adjustment_amount is required for ADJUSTED")
    return HandoverResolution(
        handover_id=handover_id,
        decision=decision,
        verified_by=_str(payload, "verified_by", max_len=128),
        admin_notes=_str(payload, "admin_notes", max_len=2000),
        adjustment_amount=adjustment,
    )


# =============================================================================
# INVENTORY
# =============================================================================

def parse_restock(payload: Any) -> dict:
    payload = _object(payload)
    data = {
        "filled_quantity": _int(payload, "filled_quantity", required=False, default=0),
        "empty_quantity": _int(payload, "empty_quantity", required=False, default=0),
        "note": _str(payload, "note"),
        "actor": _str(payload, "actor", max_len=128),
    }
    if data["filled_quantity"] == 0 and data["empty_quantity"] == 0:
        raise ValidationError("filled_quantity or empty_quantity must be positive")
    return data


def parse_refill(payload: Any) -> dict:
    payload = _object(payload)
    return {
        "quantity": _int(payload, "quantity", minimum=1),
        "note": _str(payload, "note"),
        "actor": _str(payload, "actor", max_len=128),
    }


def parse_damage_or_loss(payload: Any) -> dict:
    payload = _object(payload)
    return {
        "quantity": _int(payload, "quantity", minimum=1),
        "kind": _choice(payload, "type", (MOVEMENT_DAMAGE, MOVEMENT_LOSS)),
        "reason": _str(payload, "reason", required=True),
        "note": _str(payload, "note"),
        "actor": _str(payload, "actor", max_len=128),
    }


def parse_adjust_stock(payload: Any) -> dict:
    payload = _object(payload)
    return {
        "stock_filled": _int(payload, "stock_filled"),
        "stock_empty": _int(payload, "stock_empty"),
        "stock_damaged": _int(payload, "stock_damaged"),
        "reason": _str(payload, "reason", required=True),
        "note": _str(payload, "note"),
        "actor": _str(payload, "actor", max_len=128),
    }


# =============================================================================
# EXPENSES
# =============================================================================

def parse_expense(payload: Any) -> dict:
    payload = _object(payload)
    amount = _money(payload, "amount")
    if amount <= 0:
        raise ValidationError("amount must be positive")
    return {
        "driver_id": _int(payload, "driver_id", minimum=1),
        "amount": amount,
        "category": _str(payload, "category", max_len=32) or "OTHER",
        "description": _str(payload, "description"),
        "expense_date": _date(payload, "expense_date"),
        "payment_method": _choice(payload, "payment_method", EXPENSE_PAYMENT_METHODS, required=False, default="CASH_ON_HAND"),
    }


def parse_expense_review(payload: Any) -> dict:
    payload = _object(payload)
    return {
        "decision": _choice(payload, "decision", ("APPROVED", "REJECTED")),
        "reviewed_by": _str(payload, "reviewed_by", max_len=128),
    }
