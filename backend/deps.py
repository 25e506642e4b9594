"""
Shared FastAPI dependencies.

Routers import services from here rather than constructing them, so tests
can swap any collaborator with app.dependency_overrides.
"""

from __future__ import annotations

from typing import TypedDict

from fastapi import Depends, Query

from database import get_session_factory
from services.admin_workflow_service import AdminWorkflowGate
from services.cart_service import CartService
from services.checkout_service import CheckoutService
from services.coupon_service import CouponService
from services.inventory_service import InventoryService
from services.lalamove_service import LalamoveClient
from services.notification_service import NotificationService
from services.order_store import OrderStore
from services.settlement_service import PaymentSettlement
from services.stripe_service import StripeGateway
from services.webhook_service import DeliveryWebhookReconciler


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


# ── Collaborators ───────────────────────────────────────────────────

def get_order_store(session_factory=Depends(get_session_factory)) -> OrderStore:
    return OrderStore(session_factory)


def get_notifier(session_factory=Depends(get_session_factory)) -> NotificationService:
    return NotificationService(session_factory)


def get_inventory(session_factory=Depends(get_session_factory)) -> InventoryService:
    return InventoryService(session_factory)


def get_coupons(session_factory=Depends(get_session_factory)) -> CouponService:
    return CouponService(session_factory)


def get_carts(session_factory=Depends(get_session_factory)) -> CartService:
    return CartService(session_factory)


def get_carrier() -> LalamoveClient:
    return LalamoveClient()


def get_payment_gateway() -> StripeGateway:
    return StripeGateway()


# ── Core Components ─────────────────────────────────────────────────

def get_settlement(
    store: OrderStore = Depends(get_order_store),
    inventory: InventoryService = Depends(get_inventory),
    coupons: CouponService = Depends(get_coupons),
    carts: CartService = Depends(get_carts),
    notifier: NotificationService = Depends(get_notifier),
) -> PaymentSettlement:
    return PaymentSettlement(store, inventory, coupons, carts, notifier)


def get_reconciler(
    store: OrderStore = Depends(get_order_store),
    notifier: NotificationService = Depends(get_notifier),
    session_factory=Depends(get_session_factory),
) -> DeliveryWebhookReconciler:
    return DeliveryWebhookReconciler(store, notifier, session_factory)


def get_admin_gate(
    store: OrderStore = Depends(get_order_store),
    carrier: LalamoveClient = Depends(get_carrier),
    notifier: NotificationService = Depends(get_notifier),
) -> AdminWorkflowGate:
    return AdminWorkflowGate(store, carrier, notifier)


def get_checkout_service(
    store: OrderStore = Depends(get_order_store),
    inventory: InventoryService = Depends(get_inventory),
    coupons: CouponService = Depends(get_coupons),
    payments: StripeGateway = Depends(get_payment_gateway),
    settlement: PaymentSettlement = Depends(get_settlement),
    carrier: LalamoveClient = Depends(get_carrier),
) -> CheckoutService:
    return CheckoutService(store, inventory, coupons, payments, settlement, carrier)
