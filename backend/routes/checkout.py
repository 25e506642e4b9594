"""
Checkout endpoints - payment session creation, confirmation, cancellation.
"""
import logging

from fastapi import APIRouter, Depends

from db_models import User
from deps import get_checkout_service
from domain.responses import order_payload, success_response
from middleware.auth import require_user
from models import CheckoutConfirmRequest, CheckoutRequest
from services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/session")
async def create_checkout_session(
    request: CheckoutRequest,
    user: User = Depends(require_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    session = await checkout.create_session(user, request)
    return success_response(data=session.model_dump(by_alias=True))


@router.post("/success")
async def checkout_success(
    request: CheckoutConfirmRequest,
    user: User = Depends(require_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Confirm a paid session. Safe to call repeatedly (returns the settled order)."""
    result = await checkout.confirm(request.session_id, user)
    return success_response(
        data={
            "order": order_payload(result.order),
            "alreadyProcessed": result.already_processed,
        },
        meta={"followUps": len(result.follow_ups)} if result.follow_ups else None,
    )


@router.post("/cancel")
async def checkout_cancel(
    request: CheckoutConfirmRequest,
    user: User = Depends(require_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    return success_response(data=await checkout.cancel(request.session_id, user))
