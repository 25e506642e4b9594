"""
Standard API response helpers and order serializers.

All endpoints use these helpers so every response shares one envelope:
- Success: { "success": true, "data": <payload>, "meta": {...} }
- Error: { "success": false, "error": { "code": "...", "message": "...", "details": {...} } }
  (built by the exception handlers in main.py)
"""
from datetime import datetime
from typing import Any

from services.status_service import compute_status, needs_admin_action, status_message


def success_response(data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Create a standardized success response.

    Returns:
        dict: { "success": true, "data": <data>, "meta": <meta> }
    """
    response = {"success": True, "data": data}
    if meta:
        response["meta"] = meta
    return response


def paginated_response(items: list[Any], limit: int, offset: int = 0, total: int | None = None) -> dict[str, Any]:
    """
    Create a standardized paginated response.

    Returns:
        dict: { "success": true, "data": <items>, "meta": { "limit", "offset", "total", "hasMore" } }
    """
    if total is None:
        total = len(items)

    meta = {
        "limit": limit,
        "offset": offset,
        "total": total,
        "hasMore": (offset + limit) < total,
    }
    return success_response(data=items, meta=meta)


# ── Order Serializers ───────────────────────────────────────────────

def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _delivery_payload(order) -> dict | None:
    if order.delivery_status is None:
        return None
    return {
        "status": order.delivery_status,
        "providerOrderId": order.delivery_provider_order_id,
        "trackingUrl": order.delivery_tracking_url,
        "lastStatusUpdate": _iso(order.delivery_last_status_update),
        "serviceType": order.delivery_service_type,
        "distanceKm": order.delivery_distance_km,
        "durationMin": order.delivery_duration_min,
        "totalWeightKg": order.delivery_total_weight_kg,
        "driver": {
            "id": order.driver_id,
            "name": order.driver_name,
            "phone": order.driver_phone,
        } if order.driver_id or order.driver_name else None,
    }


def order_payload(order, *, include_history: bool = False) -> dict[str, Any]:
    """Order as returned to customers and admins, with its computed status."""
    computed = compute_status(order)
    payload = {
        "id": order.id,
        "orderNumber": order.order_number,
        "ownerId": order.owner_id,
        "computedStatus": computed.value,
        "statusMessage": status_message(computed),
        "needsAction": needs_admin_action(order),
        "paymentStatus": order.payment_status,
        "internalStatus": order.internal_status,
        "adminStatus": order.admin_status,
        "shippingMethod": order.shipping_method,
        "shippingInfo": order.shipping_info,
        "items": [
            {
                "productId": item.product_id,
                "name": item.name,
                "quantity": item.quantity,
                "unitPrice": item.unit_price,
            }
            for item in order.items
        ],
        "productSubtotal": order.product_subtotal,
        "couponCode": order.coupon_code,
        "couponDiscount": order.coupon_discount,
        "deliveryFee": order.delivery_fee,
        "taxAmount": order.tax_amount,
        "totalAmount": order.total_amount,
        "delivery": _delivery_payload(order),
        "createdAt": _iso(order.created_at),
        "updatedAt": _iso(order.updated_at),
        "paidAt": _iso(order.paid_at),
    }
    if include_history:
        payload["adminHistory"] = order.admin_history or []
    return payload


def tracking_payload(order) -> dict[str, Any]:
    computed = compute_status(order)
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "computedStatus": computed.value,
        "statusMessage": status_message(computed),
        "shippingMethod": order.shipping_method,
        "delivery": _delivery_payload(order),
    }
