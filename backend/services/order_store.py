"""
Order Store - the only write path for orders.

Every mutation is a read-modify-write in its own short-lived session. The
`version` column (SQLAlchemy version_id_col) turns the UPDATE into a
compare-and-swap: when another writer committed in between, the flush raises
StaleDataError and the whole read-modify-write is re-executed from a fresh
read. Reads never lock.

Lifecycle:
    create_provisional → attach_idempotency_key → (settlement, admin
    transitions, webhook updates via apply_mutation) → terminal
    delete_abandoned removes an order only while its payment is pending.
"""
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from config import settings
from db_models import Order, OrderItem, utcnow
from domain.constants import ADMIN_ACTION_STATUSES, TERMINAL_INTERNAL_STATUSES
from domain.enums import (
    AdminStatus,
    DeliveryStatus,
    InternalStatus,
    PaymentStatus,
    ShippingMethod,
)
from domain.errors import ConcurrencyConflictError, NotFoundError, PreconditionError, ValidationError
from models import OrderDraft

logger = logging.getLogger(__name__)

Mutation = Callable[[Order], Union[None, Awaitable[None]]]


class OrderStore:
    """Persistence for the order aggregate. Owns its invariants."""

    def __init__(self, session_factory, max_attempts: Optional[int] = None):
        self._session_factory = session_factory
        self.max_attempts = max_attempts or settings.order_mutation_max_attempts

    # ── Creation ────────────────────────────────────────────────────

    async def create_provisional(self, draft: OrderDraft) -> Order:
        """
        Store a not-yet-paid order built at checkout.

        Raises:
            ValidationError: no line items, unknown/missing shipping method,
                or incomplete shipping info (all missing fields listed).
        """
        if not draft.items:
            raise ValidationError("Order must contain at least one line item", field="items")

        valid_methods = [m.value for m in ShippingMethod]
        if not draft.shipping_method:
            raise ValidationError("Shipping method is required", field="shippingMethod")
        if draft.shipping_method not in valid_methods:
            raise ValidationError(
                f"Unknown shipping method '{draft.shipping_method}'",
                field="shippingMethod",
                details={"allowed": valid_methods},
            )

        if draft.shipping_info is None:
            raise ValidationError("Shipping information is required", field="shippingInfo")
        missing = draft.shipping_info.missing_fields()
        is_carrier = draft.shipping_method == ShippingMethod.CARRIER_DELIVERY.value
        if is_carrier and draft.shipping_info.coordinates is None:
            missing.append("coordinates")
        if missing:
            raise ValidationError(
                f"Shipping information incomplete: missing {', '.join(missing)}",
                field="shippingInfo",
                details={"missing": missing},
            )

        order = Order(
            owner_id=draft.owner_id,
            shipping_method=draft.shipping_method,
            shipping_info=draft.shipping_info.model_dump(exclude_none=True),
            product_subtotal=draft.product_subtotal,
            delivery_fee=draft.delivery_fee,
            tax_amount=draft.tax_amount,
            total_amount=draft.total_amount,
            payment_status=PaymentStatus.PENDING.value,
            internal_status=InternalStatus.PENDING.value,
            admin_status=AdminStatus.RECEIVED.value,
            coupon_code=draft.coupon_code,
            coupon_type=draft.coupon_type,
            coupon_discount=draft.coupon_discount,
            admin_history=[],
            items=[
                OrderItem(
                    product_id=line.product_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in draft.items
            ],
        )

        if is_carrier:
            quote = draft.delivery_quote
            order.delivery_status = DeliveryStatus.AWAITING_PLACEMENT.value
            order.delivery_last_status_update = utcnow()
            if quote is not None:
                order.delivery_quotation_id = quote.quotation_id
                order.delivery_quotation = quote.quotation
                order.delivery_service_type = quote.service_type
                order.delivery_distance_km = quote.distance_km
                order.delivery_duration_min = quote.duration_min
                order.delivery_total_weight_kg = quote.total_weight_kg

        async with self._session_factory() as db:
            db.add(order)
            await db.commit()

        logger.info(
            f"Provisional order {order.id} created for user {order.owner_id} "
            f"({order.shipping_method}, total={order.total_amount})"
        )
        return order

    async def attach_idempotency_key(self, order_id: str, key: str) -> Order:
        """Bind the payment session id to an order. One order per key."""
        if not key:
            raise ValidationError("Idempotency key is required", field="idempotencyKey")

        def _attach(order: Order) -> None:
            if order.idempotency_key and order.idempotency_key != key:
                raise PreconditionError(
                    f"Order {order.id} is already bound to another payment session"
                )
            order.idempotency_key = key

        try:
            return await self.apply_mutation(order_id, _attach)
        except IntegrityError:
            raise PreconditionError(f"Payment session {key} already belongs to another order")

    # ── Reads ───────────────────────────────────────────────────────

    async def get(self, order_id: str) -> Order:
        async with self._session_factory() as db:
            order = await db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def get_for_owner(self, order_id: str, owner_id: int) -> Order:
        """Orders of other users are reported as not found."""
        order = await self.get(order_id)
        if order.owner_id != owner_id:
            raise NotFoundError("Order", order_id)
        return order

    async def find_by_idempotency_key(self, key: str) -> Optional[Order]:
        async with self._session_factory() as db:
            result = await db.execute(select(Order).where(Order.idempotency_key == key))
            return result.scalar_one_or_none()

    async def find_by_provider_order_id(self, provider_order_id: str) -> Order:
        """
        Raises:
            NotFoundError: no order carries this carrier order id.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                select(Order).where(Order.delivery_provider_order_id == provider_order_id)
            )
            order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order with provider order id", provider_order_id)
        return order

    async def list_for_owner(self, owner_id: int) -> list[Order]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Order)
                .where(Order.owner_id == owner_id)
                .order_by(Order.created_at.desc())
            )
            return list(result.scalars().all())

    async def list_orders(
        self,
        *,
        admin_status: Optional[str] = None,
        payment_status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Order], int]:
        """Admin listing, newest first. Returns (page, total)."""
        filters = []
        if admin_status:
            filters.append(Order.admin_status == admin_status)
        if payment_status:
            filters.append(Order.payment_status == payment_status)
        return await self._page(filters, limit, offset)

    async def list_pending_actions(self, *, limit: int = 20, offset: int = 0) -> tuple[list[Order], int]:
        """Paid, live orders still waiting on preparation or carrier placement."""
        filters = [
            Order.payment_status == PaymentStatus.PAID.value,
            Order.internal_status.notin_([s.value for s in TERMINAL_INTERNAL_STATUSES]),
            Order.admin_status.in_([s.value for s in ADMIN_ACTION_STATUSES]),
            or_(
                Order.shipping_method == ShippingMethod.PICKUP.value,
                and_(
                    Order.shipping_method == ShippingMethod.CARRIER_DELIVERY.value,
                    Order.delivery_status == DeliveryStatus.AWAITING_PLACEMENT.value,
                ),
            ),
        ]
        return await self._page(filters, limit, offset)

    async def _page(self, filters: list, limit: int, offset: int) -> tuple[list[Order], int]:
        async with self._session_factory() as db:
            total = (
                await db.execute(select(func.count(Order.id)).where(*filters))
            ).scalar_one()
            result = await db.execute(
                select(Order)
                .where(*filters)
                .order_by(Order.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total

    # ── Mutation ────────────────────────────────────────────────────

    async def apply_mutation(self, order_id: str, mutation: Mutation) -> Order:
        """
        Atomically apply `mutation` to the current state of an order.

        The mutation receives a freshly loaded Order and edits it in place
        (sync or async). Anything it raises aborts the write. On a version
        conflict the mutation is re-run against a fresh read, up to
        max_attempts times.

        Raises:
            NotFoundError: unknown order id.
            ConcurrencyConflictError: every attempt lost the race.
        """
        for attempt in range(1, self.max_attempts + 1):
            async with self._session_factory() as db:
                order = await db.get(Order, order_id)
                if order is None:
                    raise NotFoundError("Order", order_id)

                outcome = mutation(order)
                if inspect.isawaitable(outcome):
                    await outcome

                if not db.is_modified(order):
                    return order

                order.updated_at = utcnow()
                try:
                    await db.commit()
                except StaleDataError:
                    await db.rollback()
                    logger.info(
                        f"Order {order_id} changed concurrently, retrying "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                    continue
                return order

        logger.warning(f"Order {order_id}: gave up after {self.max_attempts} conflicting writes")
        raise ConcurrencyConflictError(order_id, self.max_attempts)

    async def delete_abandoned(self, order_id: str) -> bool:
        """
        Hard-delete an order whose payment was cancelled before settlement.

        Returns True when a row was deleted; paid (or otherwise non-pending)
        orders are never removed.
        """
        async with self._session_factory() as db:
            order = await db.get(Order, order_id)
            if order is None:
                return False
            if order.payment_status != PaymentStatus.PENDING.value:
                logger.info(f"Order {order_id} has payment status {order.payment_status}, not deleting")
                return False

            await db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
            result = await db.execute(
                delete(Order).where(
                    Order.id == order_id,
                    Order.payment_status == PaymentStatus.PENDING.value,
                )
            )
            if result.rowcount == 0:
                await db.rollback()
                return False
            await db.commit()

        logger.info(f"🗑️ Abandoned order {order_id} deleted")
        return True
