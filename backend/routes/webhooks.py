"""
Carrier webhook endpoint.

Every structurally valid event is acknowledged with 200, including
orphaned, stale and duplicate ones, so the carrier stops redelivering.
Only malformed payloads get a 400.
"""
import json
import logging

from fastapi import APIRouter, Depends, Request

from deps import get_reconciler
from domain.errors import ValidationError
from domain.responses import success_response
from services.webhook_service import DeliveryWebhookReconciler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/lalamove")
async def lalamove_webhook(
    request: Request,
    reconciler: DeliveryWebhookReconciler = Depends(get_reconciler),
):
    body = await request.body()
    if not body:
        # Lalamove checks the URL with an empty POST when it is registered
        return success_response(data={"outcome": "ignored"})
    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON")

    result = await reconciler.ingest(payload)
    return success_response(data=result)
