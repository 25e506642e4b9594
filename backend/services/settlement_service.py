"""
Settlement Service - moves an order from pending to paid exactly once.

Flow:
    1. Resolve the order by its idempotency key (payment session id).
    2. One atomic mutation: mark paid, recompute amounts from the order's own
       line items, park carrier deliveries at awaiting_placement and drop
       the expiring quotation payload.
    3. Only the caller whose mutation flipped the order to paid runs the
       side effects: stock decrement per line, coupon usage, cart clear,
       admin "new order" notification.

Side effects never roll back the payment. Each one is retried on
unexpected errors, and anything still failing is logged and raised to
admins as a high-priority follow-up notification.
"""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from config import settings
from db_models import Order, utcnow
from domain.constants import TERMINAL_INTERNAL_STATUSES
from domain.enums import DeliveryStatus, InternalStatus, PaymentStatus, ShippingMethod
from domain.errors import DomainError, NotFoundError, PreconditionError, ValidationError
from services.lalamove_service import to_centavos

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Totals:
    product_subtotal: int
    discount: int
    delivery_fee: int
    tax_amount: int
    total_amount: int


@dataclass
class SettlementResult:
    order: Order
    already_processed: bool
    amount_mismatch: bool = False
    follow_ups: list[str] = field(default_factory=list)


def quoted_delivery_fee(order: Order) -> int:
    """Delivery fee from the stored quotation snapshot (centavos)."""
    if order.shipping_method != ShippingMethod.CARRIER_DELIVERY.value:
        return 0
    quotation = order.delivery_quotation or {}
    breakdown = quotation.get("priceBreakdown") or (quotation.get("data") or {}).get("priceBreakdown")
    if isinstance(breakdown, dict) and breakdown.get("total") is not None:
        return to_centavos(breakdown["total"])
    return order.delivery_fee or 0


def compute_totals(order: Order, tax_rate: float) -> Totals:
    """Server-side amounts derived only from what the order itself recorded."""
    subtotal = sum(item.quantity * item.unit_price for item in order.items)
    discount = min(order.coupon_discount or 0, subtotal)
    delivery_fee = quoted_delivery_fee(order)
    tax = round(subtotal * tax_rate)
    return Totals(
        product_subtotal=subtotal,
        discount=discount,
        delivery_fee=delivery_fee,
        tax_amount=tax,
        total_amount=subtotal - discount + delivery_fee + tax,
    )


class PaymentSettlement:
    """Exactly-once settlement of paid checkout sessions."""

    def __init__(
        self,
        store,
        inventory,
        coupons,
        carts,
        notifier,
        *,
        tax_rate: Optional[float] = None,
        side_effect_max_attempts: Optional[int] = None,
    ):
        self.store = store
        self.inventory = inventory
        self.coupons = coupons
        self.carts = carts
        self.notifier = notifier
        self.tax_rate = settings.tax_rate if tax_rate is None else tax_rate
        self.side_effect_max_attempts = side_effect_max_attempts or settings.side_effect_max_attempts

    async def settle(
        self,
        idempotency_key: str,
        confirmed_amount: int,
        provider_metadata: Optional[dict] = None,
    ) -> SettlementResult:
        """
        Settle the order bound to a payment session.

        Raises:
            ValidationError: empty idempotency key.
            NotFoundError: no order for the key.
            PreconditionError: the order can no longer be paid (failed,
                refunded, or cancelled).
        """
        if not idempotency_key:
            raise ValidationError("Idempotency key is required", field="sessionId")

        order = await self.store.find_by_idempotency_key(idempotency_key)
        if order is None:
            raise NotFoundError("Order for payment session", idempotency_key)

        metadata_order_id = (provider_metadata or {}).get("orderId")
        if metadata_order_id and metadata_order_id != order.id:
            logger.warning(
                f"Payment session {idempotency_key} metadata names order {metadata_order_id}, "
                f"bound order is {order.id}"
            )

        outcome: dict = {}

        def _mark_paid(current: Order) -> None:
            outcome.clear()
            if current.payment_status == PaymentStatus.PAID.value:
                outcome["already_processed"] = True
                return
            if current.payment_status != PaymentStatus.PENDING.value:
                raise PreconditionError(
                    f"Order {current.id} has payment status '{current.payment_status}' and cannot be settled"
                )
            if current.internal_status in {s.value for s in TERMINAL_INTERNAL_STATUSES}:
                raise PreconditionError(f"Order {current.id} is {current.internal_status} and cannot be settled")

            totals = compute_totals(current, self.tax_rate)
            now = utcnow()
            current.product_subtotal = totals.product_subtotal
            current.delivery_fee = totals.delivery_fee
            current.tax_amount = totals.tax_amount
            current.total_amount = totals.total_amount
            current.payment_status = PaymentStatus.PAID.value
            current.internal_status = InternalStatus.PROCESSING.value
            current.paid_at = now

            if current.shipping_method == ShippingMethod.CARRIER_DELIVERY.value:
                current.delivery_status = DeliveryStatus.AWAITING_PLACEMENT.value
                current.delivery_last_status_update = now
                current.delivery_quotation_id = None
                current.delivery_quotation = None

            outcome["already_processed"] = False

        order = await self.store.apply_mutation(order.id, _mark_paid)

        if outcome.get("already_processed"):
            logger.info(f"Payment session {idempotency_key} already settled (order {order.id})")
            return SettlementResult(order=order, already_processed=True)

        logger.info(f"✅ Order {order.id} paid: total={order.total_amount} (session {idempotency_key})")

        follow_ups: list[str] = []
        amount_mismatch = confirmed_amount is not None and confirmed_amount != order.total_amount
        if amount_mismatch:
            logger.warning(
                f"Order {order.id}: provider confirmed {confirmed_amount}, "
                f"recomputed total is {order.total_amount}; keeping recomputed total"
            )
            follow_ups.append(
                f"amount mismatch (provider charged {confirmed_amount}, order total {order.total_amount})"
            )

        follow_ups.extend(await self._run_side_effects(order))

        if follow_ups:
            try:
                await self.notifier.send_settlement_followup(order, follow_ups)
            except Exception:
                logger.error(
                    f"Could not alert admins about order {order.id} follow-ups: {follow_ups}",
                    exc_info=True,
                )

        return SettlementResult(
            order=order,
            already_processed=False,
            amount_mismatch=amount_mismatch,
            follow_ups=follow_ups,
        )

    async def abandon(self, order_id: str) -> bool:
        """Delete a provisional order whose checkout was cancelled."""
        return await self.store.delete_abandoned(order_id)

    # ── Side Effects ────────────────────────────────────────────────

    async def _run_side_effects(self, order: Order) -> list[str]:
        failures: list[str] = []

        for item in order.items:
            failure = await self._attempt(
                f"stock decrement for product {item.product_id}",
                order,
                lambda item=item: self.inventory.decrement_stock(item.product_id, item.quantity),
            )
            if failure:
                failures.append(failure)

        if order.coupon_code:
            failure = await self._attempt(
                f"coupon usage for {order.coupon_code}",
                order,
                lambda: self.coupons.record_usage(order.coupon_code, order.owner_id),
            )
            if failure:
                failures.append(failure)

        for name, effect in (
            ("cart clear", lambda: self.carts.clear_cart(order.owner_id)),
            ("admin new-order notification", lambda: self.notifier.send_new_order_notification(order)),
        ):
            failure = await self._attempt(name, order, effect)
            if failure:
                failures.append(failure)

        return failures

    async def _attempt(
        self,
        name: str,
        order: Order,
        effect: Callable[[], Awaitable[object]],
    ) -> Optional[str]:
        """Run one side effect. Returns a failure description, or None on success."""
        for attempt in range(1, self.side_effect_max_attempts + 1):
            try:
                await effect()
                return None
            except DomainError as e:
                # Deterministic failure (e.g. insufficient stock): retrying cannot help
                logger.error(f"Order {order.id}: {name} failed: {e.message}")
                return f"{name}: {e.message}"
            except Exception as e:
                if attempt < self.side_effect_max_attempts:
                    logger.warning(
                        f"Order {order.id}: {name} failed (attempt {attempt}/"
                        f"{self.side_effect_max_attempts}), retrying: {e}"
                    )
                    continue
                logger.error(f"Order {order.id}: {name} failed after {attempt} attempts: {e}", exc_info=True)
                return f"{name}: {e}"
        return None
