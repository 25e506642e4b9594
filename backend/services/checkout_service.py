"""
Checkout Service - prices carts, opens payment sessions, confirms payments.

All amounts are computed server-side: prices from the catalog, the
delivery fee from a fresh carrier quotation. The client's displayed total
is only echoed into the payment session metadata.
"""
import logging
from typing import Optional

from config import settings
from db_models import Order, User
from domain.enums import PaymentStatus, ShippingMethod
from domain.errors import NotFoundError, PreconditionError, ValidationError
from models import CheckoutRequest, CheckoutSessionResponse, DeliveryQuoteDraft, OrderDraft, OrderLineDraft
from services.lalamove_service import delivery_stops
from services.settlement_service import SettlementResult

logger = logging.getLogger(__name__)


class CheckoutService:
    def __init__(self, store, inventory, coupons, payments, settlement, carrier):
        self.store = store
        self.inventory = inventory
        self.coupons = coupons
        self.payments = payments
        self.settlement = settlement
        self.carrier = carrier

    async def quote_delivery(self, request: CheckoutRequest, box_quantity: int) -> Optional[DeliveryQuoteDraft]:
        """
        Re-quote a carrier delivery server-side.

        The client's quotation only contributes its distance (for vehicle
        selection); the fee charged is always the carrier's own price. Returns
        None when the order is not a carrier delivery or has no drop-off
        coordinates yet (OrderStore then reports the incomplete address).
        """
        if request.shipping_method != ShippingMethod.CARRIER_DELIVERY.value:
            return None
        if request.shipping_info is None or request.shipping_info.coordinates is None:
            return None

        client_quote = request.delivery_quote or DeliveryQuoteDraft()
        quotation = await self.carrier.quote(
            delivery_stops(request.shipping_info.model_dump(exclude_none=True)),
            box_quantity,
            client_quote.distance_km,
        )
        if client_quote.delivery_fee and client_quote.delivery_fee != quotation.total:
            logger.info(
                f"Client delivery fee {client_quote.delivery_fee} replaced by carrier quote "
                f"{quotation.total} ({quotation.quotation_id})"
            )
        return DeliveryQuoteDraft(
            quotation_id=quotation.quotation_id,
            quotation={
                "quotationId": quotation.quotation_id,
                "stopIds": quotation.stop_ids,
                "priceBreakdown": quotation.price_breakdown,
            },
            service_type=quotation.service_type,
            distance_km=client_quote.distance_km,
            duration_min=client_quote.duration_min,
            total_weight_kg=quotation.total_weight_kg,
            delivery_fee=quotation.total,
        )

    async def build_draft(self, user: User, request: CheckoutRequest) -> OrderDraft:
        """
        Price a checkout request against the catalog.

        Raises:
            ValidationError: empty cart, unavailable product, or invalid coupon.
            UpstreamError: the carrier could not quote the delivery.
        """
        if not request.items:
            raise ValidationError("Cart is empty", field="items")

        products = await self.inventory.get_products(line.product_id for line in request.items)

        subtotal = 0
        lines: list[OrderLineDraft] = []
        for line in request.items:
            product = products.get(line.product_id)
            if product is None or not product.active:
                raise ValidationError(f"Product {line.product_id} not available", field="items")
            # Advisory only: stock is decremented (and enforced) at settlement
            if product.stock_quantity is not None and line.quantity > product.stock_quantity:
                raise ValidationError(f"Insufficient stock for {product.name}", field="items")
            subtotal += product.price * line.quantity
            lines.append(OrderLineDraft(
                product_id=product.id,
                name=product.name,
                quantity=line.quantity,
                unit_price=product.price,
            ))

        coupon = None
        if request.coupon_code:
            coupon = await self.coupons.validate_for_checkout(request.coupon_code, user, subtotal)

        discount = coupon.discount if coupon else 0
        delivery_quote = await self.quote_delivery(request, sum(line.quantity for line in lines))
        delivery_fee = delivery_quote.delivery_fee if delivery_quote else 0
        tax = round(subtotal * settings.tax_rate)

        return OrderDraft(
            owner_id=user.id,
            items=lines,
            shipping_method=request.shipping_method,
            shipping_info=request.shipping_info,
            delivery_quote=delivery_quote,
            coupon_code=coupon.code if coupon else None,
            coupon_type=coupon.coupon_type if coupon else None,
            coupon_discount=discount,
            product_subtotal=subtotal,
            delivery_fee=delivery_fee,
            tax_amount=tax,
            total_amount=subtotal - discount + delivery_fee + tax,
        )

    def _payment_line_items(self, order: Order) -> list[dict]:
        if order.coupon_discount:
            # Discounts cannot be expressed as negative lines; charge one combined line
            return [{"name": f"Order #{order.order_number}", "unit_amount": order.total_amount, "quantity": 1}]

        lines = [
            {"name": item.name or f"Product {item.product_id}", "unit_amount": item.unit_price, "quantity": item.quantity}
            for item in order.items
        ]
        if order.delivery_fee > 0:
            lines.append({"name": "Delivery Fee", "unit_amount": order.delivery_fee, "quantity": 1})
        if order.tax_amount > 0:
            lines.append({
                "name": f"Tax ({round(settings.tax_rate * 100)}%)",
                "unit_amount": order.tax_amount,
                "quantity": 1,
            })
        return lines

    async def create_session(self, user: User, request: CheckoutRequest) -> CheckoutSessionResponse:
        """Create the provisional order and its payment session."""
        draft = await self.build_draft(user, request)
        order = await self.store.create_provisional(draft)

        try:
            session_id = await self.payments.create_session(
                self._payment_line_items(order),
                success_url=f"{settings.client_url}/purchase-success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{settings.client_url}/purchase-cancel?session_id={{CHECKOUT_SESSION_ID}}",
                metadata={
                    "userId": str(user.id),
                    "orderId": order.id,
                    "couponCode": order.coupon_code or "",
                    "shippingMethod": order.shipping_method,
                    "finalTotal": str(request.final_total) if request.final_total is not None else "",
                },
            )
        except Exception:
            await self.store.delete_abandoned(order.id)
            raise

        order = await self.store.attach_idempotency_key(order.id, session_id)
        logger.info(f"🧾 Checkout session {session_id} opened for order {order.id}")
        return CheckoutSessionResponse(session_id=session_id, order_id=order.id, total_amount=order.total_amount)

    async def _owned_order(self, session_id: str, user: Optional[User]) -> Order:
        order = await self.store.find_by_idempotency_key(session_id)
        if order is None or (user is not None and order.owner_id != user.id):
            raise NotFoundError("Order for payment session", session_id)
        return order

    async def confirm(self, session_id: str, user: Optional[User] = None) -> SettlementResult:
        """
        Resolve a payment session with the provider and settle its order.

        Raises:
            NotFoundError: unknown session (or another customer's).
            PreconditionError: the provider does not report the session paid.
        """
        order = await self._owned_order(session_id, user)
        if order.payment_status == PaymentStatus.PAID.value:
            return SettlementResult(order=order, already_processed=True)

        session = await self.payments.retrieve_session(session_id)
        if not session.is_paid:
            raise PreconditionError(
                f"Payment not completed (status '{session.payment_status}')",
                details={"sessionId": session_id},
            )
        return await self.settlement.settle(session_id, session.amount_total, session.metadata)

    async def cancel(self, session_id: str, user: Optional[User] = None) -> dict:
        """Drop the provisional order of a cancelled checkout, if still unpaid."""
        try:
            order = await self._owned_order(session_id, user)
        except NotFoundError:
            return {"deleted": False, "message": "Temporary order not found"}

        deleted = await self.settlement.abandon(order.id)
        message = "Temporary order cleaned up" if deleted else "Order already processed"
        return {"deleted": deleted, "orderId": order.id, "message": message}
