"""
Status Service - derives the customer-facing order status.

compute_status() folds the four status axes of an order (payment, internal,
admin workflow, carrier delivery) into one ComputedStatus. It is pure and
total: it reads attributes defensively, never mutates, never raises, so it
is safe on ORM rows, snapshots and plain test objects alike.

Priority (first match wins):
    1. not paid                         → PENDING
    2. cancelled / refunded             → CANCELED
    3. pickup                           → admin status mapping
    4. carrier delivery
         awaiting placement             → admin status mapping
         otherwise                      → delivery status mapping
    5. anything else                    → PROCESSING
"""
from typing import Any

from domain.constants import ADMIN_ACTION_STATUSES, TERMINAL_INTERNAL_STATUSES
from domain.enums import (
    AdminStatus,
    ComputedStatus,
    DeliveryStatus,
    PaymentStatus,
    ShippingMethod,
)


# ── Mapping Tables ──────────────────────────────────────────────────

_PICKUP_STATUS = {
    AdminStatus.RECEIVED.value: ComputedStatus.ORDER_RECEIVED,
    AdminStatus.PREPARING.value: ComputedStatus.ORDER_PREPARING,
    AdminStatus.PREPARED.value: ComputedStatus.ORDER_PREPARED,
    AdminStatus.PLACED_WITH_CARRIER.value: ComputedStatus.READY_FOR_PICKUP,
    AdminStatus.PICKED_UP.value: ComputedStatus.PICKED_UP,
    AdminStatus.COMPLETED.value: ComputedStatus.COMPLETED,
}

_PRE_PLACEMENT_STATUS = {
    AdminStatus.RECEIVED.value: ComputedStatus.ORDER_RECEIVED,
    AdminStatus.PREPARING.value: ComputedStatus.ORDER_PREPARING,
    AdminStatus.PREPARED.value: ComputedStatus.ORDER_PREPARED,
}

# Internal and provider vocabularies both appear in stored delivery status
_DELIVERY_STATUS = {
    "pending": ComputedStatus.ASSIGNING_DRIVER,
    "assigning_driver": ComputedStatus.ASSIGNING_DRIVER,
    "accepted": ComputedStatus.ON_GOING,
    "on_going": ComputedStatus.ON_GOING,
    "picked_up": ComputedStatus.PICKED_UP,
    "delivered": ComputedStatus.COMPLETED,
    "completed": ComputedStatus.COMPLETED,
    "cancelled": ComputedStatus.CANCELED,
    "canceled": ComputedStatus.CANCELED,
    "failed": ComputedStatus.REJECTED,
    "rejected": ComputedStatus.REJECTED,
    "expired": ComputedStatus.EXPIRED,
}

_STATUS_MESSAGES = {
    ComputedStatus.PENDING: "Your order is awaiting payment",
    ComputedStatus.ORDER_RECEIVED: "Your order has been received",
    ComputedStatus.ORDER_PREPARING: "Your order is being prepared",
    ComputedStatus.ORDER_PREPARED: "Your order has been prepared",
    ComputedStatus.READY_FOR_PICKUP: "Your order is ready for pickup",
    ComputedStatus.PICKED_UP: "Your order has been picked up",
    ComputedStatus.COMPLETED: "Your order has been completed",
    ComputedStatus.ASSIGNING_DRIVER: "We are assigning a driver to your order",
    ComputedStatus.ON_GOING: "A driver is on the way to pick up your order",
    ComputedStatus.REJECTED: "Delivery of your order was rejected by the carrier",
    ComputedStatus.EXPIRED: "The delivery request for your order expired",
    ComputedStatus.CANCELED: "Your order has been cancelled",
    ComputedStatus.PROCESSING: "Your order is being processed",
}

# Customer-visible statuses that count as finished for order stats
FINISHED_STATUSES = frozenset({
    ComputedStatus.COMPLETED,
    ComputedStatus.CANCELED,
    ComputedStatus.REJECTED,
    ComputedStatus.EXPIRED,
})


def _value(obj: Any, name: str) -> str:
    """Read an attribute as a plain lower-case string ('' when absent)."""
    raw = getattr(obj, name, None)
    if raw is None:
        return ""
    raw = getattr(raw, "value", raw)
    try:
        return str(raw).strip().lower()
    except Exception:
        return ""


# ── Public API ──────────────────────────────────────────────────────

def compute_status(order: Any) -> ComputedStatus:
    """Derive the single customer-facing status of an order."""
    if _value(order, "payment_status") != PaymentStatus.PAID.value:
        return ComputedStatus.PENDING

    if _value(order, "internal_status") in {s.value for s in TERMINAL_INTERNAL_STATUSES}:
        return ComputedStatus.CANCELED

    method = _value(order, "shipping_method")
    admin_status = _value(order, "admin_status")

    if method == ShippingMethod.PICKUP.value:
        return _PICKUP_STATUS.get(admin_status, ComputedStatus.ORDER_RECEIVED)

    if method == ShippingMethod.CARRIER_DELIVERY.value:
        delivery_status = _value(order, "delivery_status")
        if delivery_status == DeliveryStatus.AWAITING_PLACEMENT.value:
            return _PRE_PLACEMENT_STATUS.get(admin_status, ComputedStatus.ORDER_RECEIVED)
        return _DELIVERY_STATUS.get(delivery_status, ComputedStatus.ASSIGNING_DRIVER)

    return ComputedStatus.PROCESSING


def needs_admin_action(order: Any) -> bool:
    """True when a paid order is waiting on the shop (preparation or carrier placement)."""
    if _value(order, "payment_status") != PaymentStatus.PAID.value:
        return False
    if _value(order, "internal_status") in {s.value for s in TERMINAL_INTERNAL_STATUSES}:
        return False

    admin_status = _value(order, "admin_status")
    waiting_on_shop = admin_status in {s.value for s in ADMIN_ACTION_STATUSES}
    method = _value(order, "shipping_method")

    if method == ShippingMethod.PICKUP.value:
        return waiting_on_shop
    if method == ShippingMethod.CARRIER_DELIVERY.value:
        return (
            _value(order, "delivery_status") == DeliveryStatus.AWAITING_PLACEMENT.value
            and waiting_on_shop
        )
    return False


def status_message(status: ComputedStatus) -> str:
    return _STATUS_MESSAGES.get(status, "Your order status was updated")
