"""
SQLAlchemy ORM models for the Meat Shop backend.

Tables:
    users             - customers and admins
    products          - catalog with nullable stock (null => unlimited)
    cart_items        - per-user cart lines, cleared after settlement
    coupons           - discount codes with global/per-user limits
    coupon_usages     - one row per (coupon, user) with a use counter
    orders            - the order aggregate (payment/admin/delivery sub-state)
    order_items       - price/quantity snapshot taken at checkout
    notifications     - customer and admin notifications
    delivery_events   - durable log of carrier webhooks

Money columns are integers in minor currency units (centavos).
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, ForeignKey, JSON,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores DateTime without tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_order_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """Customers and admins."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default="customer")  # "customer" | "admin"
    created_at = Column(DateTime, default=utcnow)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)
    price = Column(Integer, nullable=False, default=0)  # centavos
    stock_quantity = Column(Integer, nullable=True)  # null => unlimited
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),
    )


# ════════════════════════════════════════════════════════════════════
# Coupons
# ════════════════════════════════════════════════════════════════════

class Coupon(Base):
    """
    Discount code.

    `amount` is a percent for type "percent" and centavos for type "fixed".
    Limits left NULL are unbounded, except per_user_use_limit (default 1).
    """
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    coupon_type = Column(String(10), nullable=False)  # "percent" | "fixed"
    amount = Column(Integer, nullable=False, default=0)
    min_order_amount = Column(Integer, nullable=False, default=0)  # centavos
    expires_at = Column(DateTime, nullable=False)
    use_limit = Column(Integer, nullable=True)  # total uses across all users
    user_limit = Column(Integer, nullable=True)  # distinct users
    per_user_use_limit = Column(Integer, nullable=False, default=1)
    manual_status = Column(String(20), nullable=False, default="Active")
    total_uses = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    usages = relationship("CouponUsage", back_populates="coupon", lazy="selectin")


class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    uses = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    coupon = relationship("Coupon", back_populates="usages")

    __table_args__ = (
        UniqueConstraint("coupon_id", "user_id", name="uq_coupon_usage_user"),
    )


# ════════════════════════════════════════════════════════════════════
# Orders
# ════════════════════════════════════════════════════════════════════

class Order(Base):
    """
    The order aggregate.

    Every write goes through services.order_store.OrderStore; `version` turns
    each UPDATE into a compare-and-swap so concurrent settlement, webhook and
    admin writers cannot interleave.
    """
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, default=new_order_id)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Amounts (centavos)
    product_subtotal = Column(Integer, nullable=False, default=0)
    delivery_fee = Column(Integer, nullable=False, default=0)
    tax_amount = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False, default=0)

    # Status axes
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    internal_status = Column(String(20), nullable=False, default="pending", index=True)
    admin_status = Column(String(30), nullable=False, default="received", index=True)
    shipping_method = Column(String(20), nullable=False)  # "pickup" | "carrier_delivery"
    shipping_info = Column(JSON, nullable=False, default=dict)

    # Carrier delivery (delivery_status is NULL for pickup orders)
    delivery_provider_order_id = Column(String(100), unique=True, nullable=True, index=True)
    delivery_status = Column(String(30), nullable=True)
    delivery_last_status_update = Column(DateTime, nullable=True)
    delivery_tracking_url = Column(Text, nullable=True)
    driver_id = Column(String(100), nullable=True)
    driver_name = Column(String(200), nullable=True)
    driver_phone = Column(String(50), nullable=True)
    delivery_quotation_id = Column(String(100), nullable=True)
    delivery_quotation = Column(JSON, nullable=True)  # raw quote, stripped once paid
    delivery_service_type = Column(String(30), nullable=True)
    delivery_distance_km = Column(String(20), nullable=True)
    delivery_duration_min = Column(String(20), nullable=True)
    delivery_total_weight_kg = Column(Integer, nullable=True)

    # Coupon snapshot (immutable once set)
    coupon_code = Column(String(50), nullable=True)
    coupon_type = Column(String(10), nullable=True)
    coupon_discount = Column(Integer, nullable=False, default=0)

    idempotency_key = Column(String(255), unique=True, nullable=True, index=True)  # payment session id
    admin_history = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime, nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # Customer order history: filter by owner, newest first
        Index("ix_orders_owner_created", "owner_id", "created_at"),
        # Admin pending-actions queue
        Index("ix_orders_payment_admin", "payment_status", "admin_status"),
    )

    @property
    def order_number(self) -> str:
        """Short human-facing reference (last 8 hex chars)."""
        return self.id[-8:].upper()

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Integer, nullable=False, default=0)  # centavos

    order = relationship("Order", back_populates="items")


# ════════════════════════════════════════════════════════════════════
# Notifications & Webhook Log
# ════════════════════════════════════════════════════════════════════

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(30), nullable=False, default="order")
    related_entity_type = Column(String(30), nullable=True)
    related_entity_id = Column(String(64), nullable=True)
    priority = Column(String(10), nullable=False, default="medium")
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, index=True)


class DeliveryEventLog(Base):
    """
    Durable record of every structurally valid carrier webhook.

    A row exists before any order is touched; `outcome` is filled in after
    reconciliation. `event_id` (when the provider sends one) dedups redelivery.
    """
    __tablename__ = "delivery_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(100), unique=True, nullable=True, index=True)
    event_type = Column(String(50), nullable=True)
    provider_order_id = Column(String(100), nullable=True, index=True)
    raw_status = Column(String(50), nullable=True)
    payload = Column(JSON, nullable=False)
    outcome = Column(String(20), nullable=False, default="received")
    error = Column(Text, nullable=True)
    received_at = Column(DateTime, default=utcnow, index=True)
    processed_at = Column(DateTime, nullable=True)
