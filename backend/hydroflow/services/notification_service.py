# Overview: Fire-and-forget outbound notifications (driver push, dashboard refresh).

from __future__ import annotations

from flask import current_app


def _dispatch(event_type: str, payload: dict):
    """
    Log the event and hand it to the configured NOTIFICATION_HOOK.

    Runs after commit. A failing hook is logged and never affects the
    committed transaction.
    """
    current_app.logger.info("notify %s %s", event_type, payload)
    hook = current_app.config.get("NOTIFICATION_HOOK")
    if hook is None:
        return
    try:
        hook(event_type, payload)
    except Exception:
        current_app.logger.warning("Notification hook failed for %s", event_type, exc_info=True)


def emit_order_status(*, order_id: int, status: str, previous_status: str, customer_id: int, driver_id: int | None):
    _dispatch(
        "order.status_changed",
        {
            "order_id": order_id,
            "status": status,
            "previous_status": previous_status,
            "customer_id": customer_id,
            "driver_id": driver_id,
        },
    )


def notify_driver_assigned(driver_id: int, order_count: int):
    _dispatch(
        "driver.orders_assigned",
        {
            "driver_id": driver_id,
            "title": "New Orders Assigned",
            "body": f"You have been assigned {order_count} new orders.",
            "count": order_count,
        },
    )


def emit_handover_event(event_type: str, *, handover_id: int, driver_id: int, status: str, discrepancy: str):
    _dispatch(
        event_type,
        {
            "handover_id": handover_id,
            "driver_id": driver_id,
            "status": status,
            "discrepancy": discrepancy,
        },
    )
