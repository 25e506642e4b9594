"""
Stripe Service - hosted checkout sessions over the Stripe REST API.

Only two calls are needed by the order engine:
  - create_session: open a checkout page for a priced order
  - retrieve_session: resolve a session id to its payment status and amount

Stripe takes form-encoded bodies with bracketed keys
(line_items[0][price_data][currency]=php), built by _form_encode().
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from config import settings
from domain.errors import UpstreamError

logger = logging.getLogger(__name__)

PROVIDER = "stripe"


@dataclass(frozen=True)
class PaymentSession:
    session_id: str
    payment_status: str  # "paid" | "unpaid" | "no_payment_required"
    amount_total: int  # centavos
    metadata: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


def _form_encode(value: Any, prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts/lists into Stripe's bracketed form fields."""
    pairs: list[tuple[str, str]] = []
    if isinstance(value, dict):
        for key, item in value.items():
            pairs.extend(_form_encode(item, f"{prefix}[{key}]" if prefix else str(key)))
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            pairs.extend(_form_encode(item, f"{prefix}[{index}]"))
    elif value is not None:
        pairs.append((prefix, str(value).lower() if isinstance(value, bool) else str(value)))
    return pairs


class StripeGateway:
    """Payment provider client. Pass `transport` to substitute httpx.MockTransport in tests."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        *,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self.api_base = (api_base or settings.stripe_api_base).rstrip("/")
        self.timeout = timeout or settings.stripe_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.secret_key:
            raise UpstreamError(PROVIDER, "payment provider is not configured (STRIPE_SECRET_KEY)")
        return httpx.AsyncClient(
            base_url=self.api_base,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.secret_key}"},
        )

    async def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        try:
            async with self._client() as client:
                response = await client.request(method, path, data=data)
        except httpx.HTTPError as e:
            logger.error(f"Stripe {method} {path} failed: {e}")
            raise UpstreamError(PROVIDER, f"request failed: {e}")

        if response.is_error:
            try:
                error = response.json().get("error", {})
            except ValueError:
                error = {}
            message = error.get("message") or response.text or response.reason_phrase
            logger.error(f"Stripe {method} {path} → {response.status_code}: {message}")
            raise UpstreamError(PROVIDER, message, upstream_status=response.status_code, details=error or None)
        return response.json()

    async def create_session(
        self,
        line_items: list[dict],
        success_url: str,
        cancel_url: str,
        metadata: dict,
    ) -> str:
        """
        Open a checkout session.

        Args:
            line_items: [{"name", "unit_amount" (centavos), "quantity"}, ...]

        Returns:
            The session id, used as the order's idempotency key.
        """
        body = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items": [
                {
                    "price_data": {
                        "currency": settings.currency,
                        "product_data": {"name": item["name"]},
                        "unit_amount": item["unit_amount"],
                    },
                    "quantity": item.get("quantity", 1),
                }
                for item in line_items
            ],
            "metadata": metadata,
        }
        payload = await self._request("POST", "/checkout/sessions", data=dict(_form_encode(body)))
        logger.info(f"💳 Stripe checkout session created: {payload['id']}")
        return payload["id"]

    async def retrieve_session(self, session_id: str) -> PaymentSession:
        payload = await self._request("GET", f"/checkout/sessions/{session_id}")
        return PaymentSession(
            session_id=payload.get("id", session_id),
            payment_status=payload.get("payment_status") or "unpaid",
            amount_total=int(payload.get("amount_total") or 0),
            metadata=payload.get("metadata") or {},
        )
