"""
Admin order endpoints - listing, pending actions, status transitions,
carrier placement.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from db_models import User
from deps import Pagination, get_admin_gate, get_order_store, pagination_params
from domain.responses import order_payload, paginated_response, success_response
from middleware.auth import require_admin
from models import AdminStatusUpdateRequest, PlaceDeliveryRequest
from services.admin_workflow_service import AdminWorkflowGate
from services.order_store import OrderStore
from utils.validators import validated_order_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/orders", tags=["admin"])


@router.get("")
async def list_orders(
    admin_status: Optional[str] = Query(None, alias="adminStatus"),
    payment_status: Optional[str] = Query(None, alias="paymentStatus"),
    page: Pagination = Depends(pagination_params),
    admin: User = Depends(require_admin),
    store: OrderStore = Depends(get_order_store),
):
    orders, total = await store.list_orders(
        admin_status=admin_status,
        payment_status=payment_status,
        limit=page["limit"],
        offset=page["offset"],
    )
    return paginated_response(
        [order_payload(o, include_history=True) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.get("/pending-actions")
async def list_pending_actions(
    page: Pagination = Depends(pagination_params),
    admin: User = Depends(require_admin),
    store: OrderStore = Depends(get_order_store),
):
    orders, total = await store.list_pending_actions(limit=page["limit"], offset=page["offset"])
    return paginated_response(
        [order_payload(o) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.patch("/{order_id}/status")
async def update_admin_status(
    request: AdminStatusUpdateRequest,
    order_id: str = Depends(validated_order_id),
    admin: User = Depends(require_admin),
    gate: AdminWorkflowGate = Depends(get_admin_gate),
):
    order = await gate.transition(order_id, request.status, admin.id, request.notes)
    return success_response(data=order_payload(order, include_history=True))


@router.post("/{order_id}/place-delivery")
async def place_delivery(
    request: Optional[PlaceDeliveryRequest] = None,
    order_id: str = Depends(validated_order_id),
    admin: User = Depends(require_admin),
    gate: AdminWorkflowGate = Depends(get_admin_gate),
):
    notes = request.notes if request else None
    order = await gate.place_with_carrier(order_id, admin.id, notes)
    return success_response(data=order_payload(order, include_history=True))
