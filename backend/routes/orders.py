"""
Customer order endpoints - history, stats, detail, tracking.
"""
import logging
from collections import Counter

from fastapi import APIRouter, Depends

from db_models import User
from deps import get_order_store
from domain.enums import ComputedStatus, PaymentStatus
from domain.responses import order_payload, success_response, tracking_payload
from middleware.auth import require_user
from services.order_store import OrderStore
from services.status_service import FINISHED_STATUSES, compute_status
from utils.validators import validated_order_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("")
async def list_my_orders(
    user: User = Depends(require_user),
    store: OrderStore = Depends(get_order_store),
):
    orders = await store.list_for_owner(user.id)
    # Abandoned checkouts are not part of the customer's history
    paid = [o for o in orders if o.payment_status != PaymentStatus.PENDING.value]
    return success_response(data=[order_payload(o) for o in paid])


@router.get("/stats")
async def my_order_stats(
    user: User = Depends(require_user),
    store: OrderStore = Depends(get_order_store),
):
    """Completed vs. in-flight counts, classified by computed status."""
    orders = [
        o for o in await store.list_for_owner(user.id)
        if o.payment_status == PaymentStatus.PAID.value
    ]
    by_status = Counter(compute_status(o) for o in orders)
    completed = by_status[ComputedStatus.COMPLETED]
    finished = sum(by_status[s] for s in FINISHED_STATUSES)
    return success_response(
        data={
            "totalOrders": len(orders),
            "completedOrders": completed,
            "inProgressOrders": len(orders) - finished,
            "totalSpent": sum(o.total_amount for o in orders),
            "byStatus": {status.value: count for status, count in by_status.items()},
        }
    )


@router.get("/{order_id}")
async def get_my_order(
    order_id: str = Depends(validated_order_id),
    user: User = Depends(require_user),
    store: OrderStore = Depends(get_order_store),
):
    order = await store.get_for_owner(order_id, user.id)
    return success_response(data=order_payload(order))


@router.get("/{order_id}/tracking")
async def track_my_order(
    order_id: str = Depends(validated_order_id),
    user: User = Depends(require_user),
    store: OrderStore = Depends(get_order_store),
):
    order = await store.get_for_owner(order_id, user.id)
    return success_response(data=tracking_payload(order))
