"""
Admin Workflow Service - validated admin transitions on paid orders.

Rules:
    - The target status must be a known AdminStatus (legacy "order_*" names
      accepted); anything else → InvalidStatusError.
    - Unpaid or cancelled/refunded orders cannot move → PreconditionError.
    - "placed_with_carrier" on a carrier-delivery order is the carrier
      placement action: fresh quotation, carrier order, then the order moves
      to delivery status pending. A carrier failure marks the delivery
      failed and re-raises the UpstreamError with the carrier's message.

Every transition is appended to the order's admin_history and followed by
a best-effort customer notification of the new computed status.
"""
import logging
from typing import Optional

from config import settings
from db_models import Order, utcnow
from domain.constants import ADMIN_STATUS_ALIASES, TERMINAL_INTERNAL_STATUSES
from domain.enums import AdminStatus, DeliveryStatus, PaymentStatus, ShippingMethod
from domain.errors import DomainError, InvalidStatusError, PreconditionError, UpstreamError
from services.lalamove_service import Contact, delivery_stops
from services.status_service import compute_status
from utils.validators import to_e164_ph

logger = logging.getLogger(__name__)


def parse_admin_status(value) -> AdminStatus:
    raw = str(getattr(value, "value", value) or "").strip().lower()
    if raw in ADMIN_STATUS_ALIASES:
        return ADMIN_STATUS_ALIASES[raw]
    try:
        return AdminStatus(raw)
    except ValueError:
        raise InvalidStatusError(str(value), allowed=[s.value for s in AdminStatus])


def _history_entry(status: str, actor_id, notes: Optional[str]) -> dict:
    return {"status": status, "notes": notes, "actorId": actor_id, "at": utcnow().isoformat()}


def _check_can_transition(order: Order) -> None:
    if order.internal_status in {s.value for s in TERMINAL_INTERNAL_STATUSES}:
        raise PreconditionError(f"Order {order.id} is {order.internal_status}; no further transitions")
    if order.payment_status != PaymentStatus.PAID.value:
        raise PreconditionError(f"Order {order.id} is not paid (payment status '{order.payment_status}')")


def _check_ready_for_placement(order: Order) -> None:
    _check_can_transition(order)
    if order.shipping_method != ShippingMethod.CARRIER_DELIVERY.value:
        raise PreconditionError(f"Order {order.id} is not a carrier delivery order")
    if order.delivery_status is None:
        raise PreconditionError(f"Order {order.id} has no delivery details")
    if order.delivery_status != DeliveryStatus.AWAITING_PLACEMENT.value:
        raise PreconditionError(
            f"Order {order.id} is not ready for carrier placement (delivery status '{order.delivery_status}')"
        )


class AdminWorkflowGate:
    def __init__(self, store, carrier, notifier):
        self.store = store
        self.carrier = carrier
        self.notifier = notifier

    async def transition(self, order_id: str, new_admin_status, actor_id, notes: Optional[str] = None) -> Order:
        """
        Move an order to a new admin status.

        Raises:
            InvalidStatusError: unknown status.
            PreconditionError: unpaid/terminal order, or carrier placement
                on an order that is not awaiting placement.
            UpstreamError: carrier placement failed.
        """
        status = parse_admin_status(new_admin_status)

        current = await self.store.get(order_id)
        if (
            status == AdminStatus.PLACED_WITH_CARRIER
            and current.shipping_method == ShippingMethod.CARRIER_DELIVERY.value
        ):
            return await self.place_with_carrier(order_id, actor_id, notes)

        def _set_status(order: Order) -> None:
            _check_can_transition(order)
            order.admin_status = status.value
            order.admin_history = [*(order.admin_history or []), _history_entry(status.value, actor_id, notes)]

        order = await self.store.apply_mutation(order_id, _set_status)
        logger.info(f"Order {order_id} admin status → {status.value} (by {actor_id})")
        await self._notify(order)
        return order

    async def place_with_carrier(self, order_id: str, actor_id, notes: Optional[str] = None) -> Order:
        """Quote and place the delivery with the carrier, then record it on the order."""
        order = await self.store.get(order_id)
        _check_ready_for_placement(order)

        info = order.shipping_info or {}
        stops = delivery_stops(info)
        sender = Contact(name=settings.store_name, phone=to_e164_ph(settings.lalamove_pickup_phone))
        recipient = Contact(
            name=f"{info.get('first_name', '')} {info.get('last_name', '')}".strip(),
            phone=to_e164_ph(info.get("phone")),
            remarks=f"Order #{order.order_number}",
        )

        try:
            quotation = await self.carrier.quote(stops, order.total_quantity, order.delivery_distance_km)
            placed = await self.carrier.place_order(quotation.quotation_id, sender, recipient, quotation.stop_ids)
        except UpstreamError as e:
            logger.error(f"Carrier placement for order {order_id} failed: {e.message}")
            await self._mark_placement_failed(order_id, actor_id, e)
            raise

        def _record_placement(current: Order) -> None:
            # Another admin may have placed the order while the carrier call ran
            _check_ready_for_placement(current)
            now = utcnow()
            current.delivery_provider_order_id = placed.provider_order_id
            current.delivery_tracking_url = placed.tracking_url
            current.delivery_quotation_id = quotation.quotation_id
            current.delivery_service_type = quotation.service_type
            current.delivery_total_weight_kg = quotation.total_weight_kg
            current.delivery_status = DeliveryStatus.PENDING.value
            current.delivery_last_status_update = now
            current.admin_status = AdminStatus.PLACED_WITH_CARRIER.value
            current.admin_history = [
                *(current.admin_history or []),
                _history_entry(AdminStatus.PLACED_WITH_CARRIER.value, actor_id, notes),
            ]

        try:
            order = await self.store.apply_mutation(order_id, _record_placement)
        except DomainError:
            logger.error(
                f"Order {order_id}: carrier order {placed.provider_order_id} was placed "
                f"but could not be recorded; cancel it with the carrier"
            )
            raise

        logger.info(f"🚚 Order {order_id} placed with carrier as {placed.provider_order_id} (by {actor_id})")
        await self._notify(order)
        return order

    async def _mark_placement_failed(self, order_id: str, actor_id, error: UpstreamError) -> None:
        def _fail(current: Order) -> None:
            if current.delivery_status != DeliveryStatus.AWAITING_PLACEMENT.value:
                return
            current.delivery_status = DeliveryStatus.FAILED.value
            current.delivery_last_status_update = utcnow()
            current.admin_history = [
                *(current.admin_history or []),
                _history_entry("placement_failed", actor_id, error.upstream_message),
            ]

        try:
            await self.store.apply_mutation(order_id, _fail)
        except DomainError:
            logger.error(f"Could not mark order {order_id} delivery as failed", exc_info=True)

    async def _notify(self, order: Order) -> None:
        try:
            await self.notifier.send_order_status_update(order, compute_status(order))
        except Exception:
            logger.error(f"Status notification for order {order.id} failed", exc_info=True)
