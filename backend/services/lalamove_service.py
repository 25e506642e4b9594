"""
Lalamove Service - carrier quotations and order placement (REST v3).

Auth:
    Every request is signed with HMAC-SHA256 over
        "{timestamp}\\r\\n{METHOD}\\r\\n{path}\\r\\n\\r\\n{body}"
    and sent as  Authorization: hmac {api_key}:{timestamp}:{signature}
    plus a Market header (PH → PH_MNL).

Timeouts & retries:
    Placement is the one slow external call in the order flow, so the client
    carries its own timeout and retry budget, separate from the HTTP request
    serving the admin. Quotations are retried on any transport error, timeout
    or 5xx. Placement creates a carrier order, so it is only retried when the
    connection was never established. An exhausted budget raises
    CarrierTimeoutError instead of hanging.
"""
import asyncio
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import httpx

from config import settings
from domain.constants import KG_PER_BOX
from domain.errors import CarrierTimeoutError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

PROVIDER = "lalamove"

# ── Vehicle Table ───────────────────────────────────────────────────
# (service type, max boxes), smallest first
LOCAL_VEHICLES = [
    ("SEDAN", 6),
    ("MPV", 16),
    ("VAN", 40),
    ("VAN1000", 47),
    ("TRUCK550", 122),
    ("10WHEEL_TRUCK", 800),
]
INTERCITY_VEHICLES = [
    ("SEDAN_INTERCITY", 6),
    ("MPV_INTERCITY", 16),
    ("VAN_INTERCITY", 40),
    ("LD_10WHEEL_TRUCK", 800),
]
INTERCITY_DISTANCE_KM = 40
SPLIT_DELIVERY_REQUIRED = "SPLIT_DELIVERY_REQUIRED"


def determine_service_type(box_quantity: int, distance_km: float) -> str:
    vehicles = INTERCITY_VEHICLES if distance_km > INTERCITY_DISTANCE_KM else LOCAL_VEHICLES
    for service_type, max_boxes in vehicles:
        if box_quantity <= max_boxes:
            return service_type
    return SPLIT_DELIVERY_REQUIRED


def weight_category(weight_kg: float) -> str:
    if weight_kg < 3:
        return "LESS_THAN_3_KG"
    if weight_kg < 10:
        return "3_TO_10_KG"
    if weight_kg < 50:
        return "10_TO_50_KG"
    return "MORE_THAN_50_KG"


def to_centavos(amount) -> int:
    """Lalamove prices are decimal strings in pesos."""
    try:
        return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))
    except (InvalidOperation, ValueError):
        return 0


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


# ── Types ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Stop:
    lat: str
    lng: str
    address: str

    def to_payload(self) -> dict:
        return {"coordinates": {"lat": str(self.lat), "lng": str(self.lng)}, "address": self.address}


@dataclass(frozen=True)
class Contact:
    name: str
    phone: str
    remarks: str = ""


@dataclass(frozen=True)
class Quotation:
    quotation_id: str
    stop_ids: list[str]
    price_breakdown: dict = field(default_factory=dict)
    service_type: str = ""
    total_weight_kg: int = 0

    @property
    def total(self) -> int:
        """Quoted delivery fee in centavos."""
        return to_centavos(self.price_breakdown.get("total", 0))


@dataclass(frozen=True)
class PlacedDelivery:
    provider_order_id: str
    tracking_url: Optional[str] = None


def delivery_stops(shipping_info: dict) -> list[Stop]:
    """Shop pickup point, then the customer's drop-off from a stored shipping_info dict."""
    coordinates = shipping_info.get("coordinates") or {}
    return [
        Stop(
            lat=settings.lalamove_pickup_lat,
            lng=settings.lalamove_pickup_lng,
            address=settings.lalamove_pickup_address,
        ),
        Stop(
            lat=str(coordinates.get("lat", "")),
            lng=str(coordinates.get("lng", "")),
            address=shipping_info.get("full_address", ""),
        ),
    ]


# ── Client ──────────────────────────────────────────────────────────

class LalamoveClient:
    """Carrier client. Pass `transport` to substitute httpx.MockTransport in tests."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        market: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key if api_key is not None else settings.lalamove_api_key
        self.api_secret = api_secret if api_secret is not None else settings.lalamove_api_secret
        self.base_url = (base_url or settings.lalamove_base_url).rstrip("/")
        self.market = market or settings.lalamove_market_code
        self.timeout = timeout or settings.carrier_timeout_seconds
        self.max_attempts = max_attempts or settings.carrier_max_attempts
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.carrier_retry_backoff_seconds
        )
        self._transport = transport
        self._clock = clock

    # ── Signing ─────────────────────────────────────────────────────

    def sign(self, timestamp: str, method: str, path: str, body: str = "") -> str:
        message = f"{timestamp}\r\n{method}\r\n{path}\r\n\r\n{body}"
        return hmac.new(
            self.api_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
        ).hexdigest()

    def _headers(self, method: str, path: str, body: str) -> dict:
        timestamp = str(int(self._clock() * 1000))
        signature = self.sign(timestamp, method, path, body)
        return {
            "Content-Type": "application/json",
            "Authorization": f"hmac {self.api_key}:{timestamp}:{signature}",
            "Market": self.market,
        }

    # ── Transport ───────────────────────────────────────────────────

    async def _post(self, path: str, payload: dict, *, creates_resource: bool) -> dict:
        if not self.api_key or not self.api_secret:
            raise UpstreamError(PROVIDER, "carrier is not configured (LALAMOVE_API_KEY/SECRET)")

        body = json.dumps(payload, separators=(",", ":"))
        last_error: Optional[Exception] = None

        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    # Re-sign per attempt: the timestamp is part of the signature
                    response = await client.post(
                        path, content=body, headers=self._headers("POST", path, body)
                    )
                except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                    # Never reached the carrier
                    last_error = e
                except httpx.TransportError as e:
                    last_error = e
                    if creates_resource:
                        logger.error(f"Lalamove POST {path}: no response, not retrying placement: {e}")
                        break
                else:
                    if response.status_code < 500 or creates_resource:
                        return self._parse(path, response)
                    last_error = UpstreamError(
                        PROVIDER, self._error_message(response), upstream_status=response.status_code
                    )

                logger.warning(
                    f"Lalamove POST {path} attempt {attempt}/{self.max_attempts} failed: {last_error}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * attempt)

        if isinstance(last_error, UpstreamError):
            raise last_error
        raise CarrierTimeoutError(PROVIDER, attempts=attempt)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        errors = data.get("errors") if isinstance(data, dict) else None
        if isinstance(errors, list) and errors and isinstance(errors[0], dict) and errors[0].get("message"):
            return errors[0]["message"]
        if isinstance(data, dict) and data.get("message"):
            return data["message"]
        return response.reason_phrase

    def _parse(self, path: str, response: httpx.Response) -> dict:
        if response.is_error:
            message = self._error_message(response)
            try:
                errors = response.json().get("errors")
            except (ValueError, AttributeError):
                errors = None
            logger.error(f"Lalamove POST {path} → {response.status_code}: {message}")
            raise UpstreamError(
                PROVIDER, message, upstream_status=response.status_code, details=errors
            )
        try:
            return response.json().get("data") or {}
        except (ValueError, AttributeError):
            raise UpstreamError(PROVIDER, "malformed response body", upstream_status=response.status_code)

    # ── API ─────────────────────────────────────────────────────────

    async def quote(
        self,
        stops: list[Stop],
        parcel_quantity: int,
        distance_km,
        language: Optional[str] = None,
    ) -> Quotation:
        """
        Request a delivery quotation.

        The vehicle is chosen from the box count and distance; weight is
        estimated at KG_PER_BOX per box.
        """
        if len(stops) < 2:
            raise ValidationError("A quotation needs a pickup and a drop-off stop", field="stops")
        if parcel_quantity < 1:
            raise ValidationError("Parcel quantity must be at least 1", field="parcelQuantity")

        service_type = determine_service_type(parcel_quantity, _as_float(distance_km))
        if service_type == SPLIT_DELIVERY_REQUIRED:
            raise ValidationError(
                f"{parcel_quantity} boxes exceed the largest vehicle; split the delivery",
                field="parcelQuantity",
            )
        total_weight = parcel_quantity * KG_PER_BOX

        payload = {
            "data": {
                "serviceType": service_type,
                "language": language or settings.lalamove_language,
                "stops": [stop.to_payload() for stop in stops],
                "isRouteOptimized": False,
                "item": {
                    "quantity": str(parcel_quantity),
                    "weight": weight_category(total_weight),
                    "categories": [settings.lalamove_item_category],
                    "handlingInstructions": ["HANDLE_WITH_CARE"],
                },
            }
        }
        data = await self._post("/v3/quotations", payload, creates_resource=False)

        quotation_id = data.get("quotationId")
        stop_ids = [s.get("stopId") for s in data.get("stops", []) if isinstance(s, dict)]
        if not quotation_id or len(stop_ids) < 2:
            raise UpstreamError(PROVIDER, "quotation response is missing quotationId or stop ids")

        logger.info(f"🚚 Lalamove quotation {quotation_id} ({service_type}, {parcel_quantity} boxes)")
        return Quotation(
            quotation_id=quotation_id,
            stop_ids=stop_ids,
            price_breakdown=data.get("priceBreakdown") or {},
            service_type=service_type,
            total_weight_kg=total_weight,
        )

    async def place_order(
        self,
        quotation_id: str,
        sender: Contact,
        recipient: Contact,
        stop_ids: list[str],
    ) -> PlacedDelivery:
        payload = {
            "data": {
                "quotationId": quotation_id,
                "sender": {"stopId": stop_ids[0], "name": sender.name, "phone": sender.phone},
                "recipients": [
                    {
                        "stopId": stop_ids[1],
                        "name": recipient.name,
                        "phone": recipient.phone,
                        "remarks": recipient.remarks,
                    }
                ],
                "isPODEnabled": True,
                "partner": settings.store_name,
            }
        }
        data = await self._post("/v3/orders", payload, creates_resource=True)

        provider_order_id = data.get("orderId")
        if not provider_order_id:
            raise UpstreamError(PROVIDER, "order response is missing orderId")

        logger.info(f"🚚 Lalamove order placed: {provider_order_id}")
        return PlacedDelivery(
            provider_order_id=str(provider_order_id),
            tracking_url=data.get("shareLink") or data.get("trackingUrl"),
        )
