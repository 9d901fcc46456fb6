"""
Input parsing tests.

Money must arrive as strings or integers; JSON floats are refused before
any service code runs.
"""

from datetime import date
from decimal import Decimal

import pytest

from hydroflow.validation import (
    ValidationError,
    parse_completion,
    parse_create_order,
    parse_expense,
    parse_generate_orders,
    parse_handover_resolution,
    parse_handover_submission,
    parse_order_patch,
    parse_restock,
    parse_unable_to_deliver,
)


class TestMoneyFields:

    def test_float_is_rejected(self):
        with pytest.raises(ValidationError, match="not a float"):
            parse_handover_submission({"driver_id": 1, "actual_cash": 10.5})

    def test_more_than_two_decimals_rejected(self):
        with pytest.raises(ValidationError, match="2 decimal places"):
            parse_handover_submission({"driver_id": 1, "actual_cash": "10.505"})

    def test_string_and_int_accepted(self):
        assert parse_handover_submission({"driver_id": 1, "actual_cash": "10.5"}).actual_cash == Decimal("10.50")
        assert parse_handover_submission({"driver_id": 1, "actual_cash": 10}).actual_cash == Decimal("10.00")

    def test_negative_cash_rejected(self):
        with pytest.raises(ValidationError, match="must not be negative"):
            parse_completion(1, {"cash_collected": "-1.00"})

    def test_expense_amount_must_be_positive(self):
        with pytest.raises(ValidationError, match="positive"):
            parse_expense({"driver_id": 1, "amount": "0", "expense_date": "2026-01-19"})


class TestCompletion:

    def test_defaults(self):
        request = parse_completion(7, {})

        assert request.order_id == 7
        assert request.cash_collected == Decimal("0.00")
        assert request.payment_method == "CASH"
        assert request.items is None

    def test_item_quantity_defaults_to_filled_given(self):
        request = parse_completion(7, {"items": [{"product_id": 1, "filled_given": 3, "empty_taken": 1}]})

        item = request.items[0]
        assert item.quantity == 3
        assert item.damaged_returned == 0

    def test_quantity_only_line_is_delivered_in_full(self):
        request = parse_completion(7, {"items": [{"product_id": 1, "quantity": 2}]})

        item = request.items[0]
        assert item.filled_given == 2
        assert item.quantity == 2
        assert item.empty_taken == 0

    def test_explicit_zero_filled_given_is_kept(self):
        request = parse_completion(7, {"items": [{"product_id": 1, "quantity": 2, "filled_given": 0, "empty_taken": 1}]})

        assert request.items[0].filled_given == 0

    def test_empty_items_list_rejected(self):
        with pytest.raises(ValidationError, match="at least one line"):
            parse_completion(7, {"cash_collected": "0", "items": []})

    def test_counters_are_integers(self):
        with pytest.raises(ValidationError, match="integer"):
            parse_completion(7, {"items": [{"product_id": 1, "filled_given": 1.5}]})

    def test_body_must_be_object(self):
        with pytest.raises(ValidationError, match="JSON object"):
            parse_completion(7, ["not", "an", "object"])


class TestOrders:

    def test_create_as_completed_refused(self):
        with pytest.raises(ValidationError, match="cannot be created as COMPLETED"):
            parse_create_order({
                "customer_id": 1,
                "scheduled_date": "2026-01-19",
                "status": "COMPLETED",
                "items": [{"product_id": 1, "quantity": 1}],
            })

    def test_create_needs_lines(self):
        with pytest.raises(ValidationError, match="at least one line"):
            parse_create_order({"customer_id": 1, "scheduled_date": "2026-01-19", "items": []})

    def test_bad_date(self):
        with pytest.raises(ValidationError, match="ISO date"):
            parse_create_order({"customer_id": 1, "scheduled_date": "19/01/2026", "items": [{"product_id": 1, "quantity": 1}]})

    def test_generate_filters(self):
        request = parse_generate_orders({"scheduled_date": "2026-01-19", "customer_type": "commercial", "preview": True})

        assert request.customer_type == "COMMERCIAL"
        assert request.preview is True
        with pytest.raises(ValidationError, match="customer_type"):
            parse_generate_orders({"scheduled_date": "2026-01-19", "customer_type": "INDUSTRIAL"})

    def test_patch_rejects_unknown_fields(self):
        with pytest.raises(ValidationError, match="Unknown/forbidden"):
            parse_order_patch({"total_amount": "1.00"})

    def test_patch_keeps_explicit_null_driver(self):
        assert parse_order_patch({"driver_id": None}) == {"driver_id": None}

    def test_unable_to_deliver_needs_notes(self):
        with pytest.raises(ValidationError, match="at least 5"):
            parse_unable_to_deliver(1, {"driver_id": 1, "reason": "OTHER", "notes": "no", "action": "CANCEL"})

    def test_reschedule_needs_date(self):
        with pytest.raises(ValidationError, match="reschedule_date is required"):
            parse_unable_to_deliver(
                1, {"driver_id": 1, "reason": "CUSTOMER_NOT_HOME", "notes": "Nobody home", "action": "RESCHEDULE"}
            )

    def test_reschedule_parsed(self):
        request = parse_unable_to_deliver(
            1,
            {
                "driver_id": 2,
                "reason": "customer_not_home",
                "notes": "Nobody home",
                "action": "reschedule",
                "reschedule_date": "2026-01-22",
            },
        )
        assert request.reason == "CUSTOMER_NOT_HOME"
        assert request.action == "RESCHEDULE"
        assert request.reschedule_date == date(2026, 1, 22)


class TestHandovers:

    def test_adjusted_requires_amount(self):
        with pytest.raises(ValidationError, match="adjustment_amount is required"):
            parse_handover_resolution(1, {"decision": "ADJUSTED"})

    def test_adjustment_may_be_negative(self):
        resolution = parse_handover_resolution(1, {"decision": "ADJUSTED", "adjustment_amount": "-25.00"})
        assert resolution.adjustment_amount == Decimal("-25.00")

    def test_unknown_decision(self):
        with pytest.raises(ValidationError, match="decision must be one of"):
            parse_handover_resolution(1, {"decision": "APPROVE"})

    def test_shift_window_ordering(self):
        with pytest.raises(ValidationError, match="shift_end"):
            parse_handover_submission({
                "driver_id": 1,
                "actual_cash": "0",
                "shift_start": "2026-01-19T18:00:00",
                "shift_end": "2026-01-19T08:00:00",
            })


def test_restock_needs_some_quantity():
    with pytest.raises(ValidationError, match="must be positive"):
        parse_restock({"filled_quantity": 0})
