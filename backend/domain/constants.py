"""
Domain constants used across services/routers.
"""

from domain.enums import AdminStatus, DeliveryStatus, InternalStatus

# Internal statuses after which no admin or delivery transition applies
TERMINAL_INTERNAL_STATUSES = frozenset({InternalStatus.CANCELLED, InternalStatus.REFUNDED})

# Lalamove v3 status vocabulary → internal delivery status
PROVIDER_STATUS_MAP = {
    "ASSIGNING_DRIVER": DeliveryStatus.PENDING,
    "ON_GOING": DeliveryStatus.ACCEPTED,
    "PICKED_UP": DeliveryStatus.PICKED_UP,
    "COMPLETED": DeliveryStatus.DELIVERED,
    "CANCELED": DeliveryStatus.CANCELLED,
    "REJECTED": DeliveryStatus.FAILED,
    "EXPIRED": DeliveryStatus.EXPIRED,
}

# Forward lifecycle stages of a carrier delivery
DELIVERY_STAGE_RANK = {
    DeliveryStatus.AWAITING_PLACEMENT.value: 0,
    DeliveryStatus.PENDING.value: 1,
    DeliveryStatus.ACCEPTED.value: 2,
    DeliveryStatus.PICKED_UP.value: 3,
    DeliveryStatus.DELIVERED.value: 4,
}

# Once reached, nothing moves a delivery out of these
ABSORBING_DELIVERY_STATUSES = frozenset({
    DeliveryStatus.CANCELLED.value,
    DeliveryStatus.FAILED.value,
    DeliveryStatus.EXPIRED.value,
})

# Admin statuses during which the order still waits on the shop
ADMIN_ACTION_STATUSES = frozenset({
    AdminStatus.RECEIVED,
    AdminStatus.PREPARING,
    AdminStatus.PREPARED,
})

# Legacy admin UI values
ADMIN_STATUS_ALIASES = {
    "order_received": AdminStatus.RECEIVED,
    "order_preparing": AdminStatus.PREPARING,
    "order_prepared": AdminStatus.PREPARED,
    "order_placed": AdminStatus.PLACED_WITH_CARRIER,
    "order_picked_up": AdminStatus.PICKED_UP,
    "order_completed": AdminStatus.COMPLETED,
}

# Average weight of one box of meat, used for carrier weight category
KG_PER_BOX = 15

# Required keys of Order.shipping_info
SHIPPING_INFO_FIELDS = (
    "email",
    "first_name",
    "last_name",
    "address",
    "barangay",
    "postal_code",
    "city",
    "province",
    "phone",
    "full_address",
)
