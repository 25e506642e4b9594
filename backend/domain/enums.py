"""
Domain enums for the order lifecycle.

Each enum is a str subclass so ORM string columns compare equal to members.
"""

from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class InternalStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class AdminStatus(str, Enum):
    RECEIVED = "received"
    PREPARING = "preparing"
    PREPARED = "prepared"
    PLACED_WITH_CARRIER = "placed_with_carrier"
    PICKED_UP = "picked_up"
    COMPLETED = "completed"


class ShippingMethod(str, Enum):
    PICKUP = "pickup"
    CARRIER_DELIVERY = "carrier_delivery"


class DeliveryStatus(str, Enum):
    AWAITING_PLACEMENT = "awaiting_placement"
    PENDING = "pending"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"
    EXPIRED = "expired"


class ComputedStatus(str, Enum):
    PENDING = "PENDING"
    ORDER_RECEIVED = "ORDER_RECEIVED"
    ORDER_PREPARING = "ORDER_PREPARING"
    ORDER_PREPARED = "ORDER_PREPARED"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    PICKED_UP = "PICKED_UP"
    COMPLETED = "COMPLETED"
    ASSIGNING_DRIVER = "ASSIGNING_DRIVER"
    ON_GOING = "ON_GOING"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELED = "CANCELED"
    PROCESSING = "PROCESSING"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class CouponType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
