"""
Webhook Service - reconciles Lalamove delivery webhooks into orders.

Lifecycle of a webhook:
    1. normalize_event()  - absorb payload drift across two schema
                            generations into one DeliveryEvent
                            (structurally invalid payloads → ValidationError)
    2. ingest()           - durably log it in delivery_events; a repeated
                            eventId is acknowledged without reprocessing,
                            unless its earlier attempt errored or never
                            recorded an outcome
    3. handle_event()     - map the carrier status, apply it through the
                            OrderStore behind a stage-ordering guard, and
                            notify the customer if their visible status moved

Payload generations:
    v3:     {"eventId", "eventType": "ORDER_STATUS_CHANGED" | "DRIVER_ASSIGNED"
             | "WALLET_BALANCE_CHANGED", "timestamp",
             "data": {"order": {"orderId", "status", "driverId"}, "driver": {...}}}
    legacy: {"type" | "event_type": "order.accepted" | "order_delivered" | ...,
             "order_id" | "orderId" | "id", "status" | "delivery_status",
             "driver" | "driver_info": {"driver_id" | "id", "name" | "driver_name",
                                        "phone" | "phone_number"}}

Once an event is logged, ingest() always acknowledges: a downstream failure
is recorded on the log row and never turned into a provider retry.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from config import settings
from db_models import DeliveryEventLog, Order, utcnow
from domain.constants import (
    ABSORBING_DELIVERY_STATUSES,
    DELIVERY_STAGE_RANK,
    PROVIDER_STATUS_MAP,
    TERMINAL_INTERNAL_STATUSES,
)
from domain.enums import AdminStatus, DeliveryStatus, InternalStatus
from domain.errors import NotFoundError, ValidationError
from services.status_service import compute_status

logger = logging.getLogger(__name__)

# ── Event Vocabulary ────────────────────────────────────────────────

STATUS_CHANGED = "ORDER_STATUS_CHANGED"
DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
WALLET_BALANCE_CHANGED = "WALLET_BALANCE_CHANGED"

INFORMATIONAL_EVENTS = frozenset({WALLET_BALANCE_CHANGED})

# Legacy event types carry their status in the type itself
LEGACY_EVENT_STATUS = {
    "order_created": DeliveryStatus.PENDING.value,
    "order_accepted": DeliveryStatus.ACCEPTED.value,
    "order_picked_up": DeliveryStatus.PICKED_UP.value,
    "order_delivered": DeliveryStatus.DELIVERED.value,
    "order_cancelled": DeliveryStatus.CANCELLED.value,
    "order_failed": DeliveryStatus.FAILED.value,
    "order_expired": DeliveryStatus.EXPIRED.value,
}

# Reconciliation outcomes (also stored on delivery_events.outcome)
RECEIVED = "received"
APPLIED = "applied"
IGNORED = "ignored"
ORPHANED = "orphaned"
STALE = "stale"
TERMINAL = "terminal"
DUPLICATE = "duplicate"
ERROR = "error"


@dataclass(frozen=True)
class DeliveryEvent:
    provider_order_id: Optional[str]
    raw_event_type: str
    raw_status: Optional[str]
    timestamp: datetime
    event_id: Optional[str] = None
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    informational: bool = False


# ── Normalization ───────────────────────────────────────────────────

def _first(*values) -> Optional[Any]:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _optional_str(value) -> Optional[str]:
    return str(value) if value is not None else None


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _parse_timestamp(raw) -> datetime:
    """Unix seconds/milliseconds or ISO-8601; unparseable or out-of-range values fall back to now."""
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        seconds = raw / 1000 if raw > 1e12 else raw
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        except (ValueError, OverflowError, OSError):
            logger.warning(f"Webhook timestamp {raw!r} out of range, using receive time")
            return utcnow()
    if isinstance(raw, str) and raw:
        if raw.isdigit():
            return _parse_timestamp(int(raw))
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        except (ValueError, OverflowError):
            return utcnow()
        return parsed
    return utcnow()


def _event_key(event_type: str) -> str:
    return event_type.strip().lower().replace(".", "_")


def normalize_event(payload: Any) -> DeliveryEvent:
    """
    Build a DeliveryEvent from either payload generation.

    Raises:
        ValidationError: non-object payload, no recognizable event type or
            status, or a status-bearing event without a carrier order id.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object", field="body")

    data = _as_dict(payload.get("data"))
    order_data = _as_dict(data.get("order"))
    driver = _as_dict(_first(data.get("driver"), payload.get("driver"), payload.get("driver_info")))

    raw_event_type = _first(payload.get("eventType"), payload.get("type"), payload.get("event_type"))
    provider_order_id = _first(
        order_data.get("orderId"),
        payload.get("order_id"),
        payload.get("orderId"),
        payload.get("id"),
    )
    body_status = _first(order_data.get("status"), payload.get("status"), payload.get("delivery_status"))

    if raw_event_type is None and body_status is None:
        raise ValidationError("Webhook payload has neither an event type nor a status", field="eventType")

    event_type = str(raw_event_type or STATUS_CHANGED)
    key = _event_key(event_type)
    informational = event_type.upper() in INFORMATIONAL_EVENTS

    if key in LEGACY_EVENT_STATUS:
        raw_status = LEGACY_EVENT_STATUS[key]
    elif event_type.upper() == DRIVER_ASSIGNED:
        raw_status = body_status or "ON_GOING"
    else:
        raw_status = body_status

    if not informational and provider_order_id is None:
        raise ValidationError("Webhook payload does not identify a carrier order", field="orderId")

    return DeliveryEvent(
        provider_order_id=_optional_str(provider_order_id),
        raw_event_type=event_type,
        raw_status=_optional_str(raw_status),
        timestamp=_parse_timestamp(_first(payload.get("timestamp"), payload.get("created_at"))),
        event_id=_optional_str(_first(payload.get("eventId"), payload.get("event_id"))),
        driver_id=_optional_str(_first(
            order_data.get("driverId"), driver.get("driverId"), driver.get("driver_id"), driver.get("id")
        )),
        driver_name=_first(driver.get("name"), driver.get("driver_name")),
        driver_phone=_first(driver.get("phone"), driver.get("phone_number")),
        informational=informational,
    )


def map_provider_status(raw_status: str) -> str:
    """Carrier vocabulary → internal delivery status; unknown values stored lower-cased."""
    status = raw_status.strip()
    mapped = PROVIDER_STATUS_MAP.get(status.upper())
    if mapped is not None:
        return mapped.value
    return status.lower()


def is_forward_transition(current: Optional[str], new: str) -> bool:
    """
    Stage guard: awaiting_placement < pending < accepted < picked_up < delivered.

    cancelled/failed/expired are absorbing, and so is delivered. Statuses
    outside the known stages are let through unless the delivery is already
    absorbed.
    """
    if not current or current == new:
        return True
    if current in ABSORBING_DELIVERY_STATUSES or current == DeliveryStatus.DELIVERED.value:
        return False
    if new in ABSORBING_DELIVERY_STATUSES:
        return True
    current_rank = DELIVERY_STAGE_RANK.get(current)
    new_rank = DELIVERY_STAGE_RANK.get(new)
    if current_rank is None or new_rank is None:
        return True
    return new_rank > current_rank


# ── Reconciler ──────────────────────────────────────────────────────

class DeliveryWebhookReconciler:
    def __init__(self, store, notifier, session_factory, stuck_after_seconds: Optional[float] = None):
        self.store = store
        self.notifier = notifier
        self._session_factory = session_factory
        if stuck_after_seconds is None:
            stuck_after_seconds = settings.webhook_stuck_after_seconds
        self._stuck_after = timedelta(seconds=stuck_after_seconds)

    async def ingest(self, payload: Any) -> dict:
        """
        Webhook entry point: validate, log durably, reconcile, acknowledge.

        Raises:
            ValidationError: structurally invalid payload (nothing is logged).
        """
        event = normalize_event(payload)
        log_id, duplicate = await self._log_event(event, payload)

        ack = {
            "eventType": event.raw_event_type,
            "eventId": event.event_id,
            "orderId": event.provider_order_id,
        }
        if duplicate:
            logger.info(f"Webhook event {event.event_id} already processed, skipping")
            return {**ack, "outcome": DUPLICATE}

        error = None
        try:
            outcome = await self.handle_event(event)
        except Exception as e:
            logger.error(
                f"Webhook {event.raw_event_type} for {event.provider_order_id} failed: {e}",
                exc_info=True,
            )
            outcome, error = ERROR, str(e)

        await self._record_outcome(log_id, outcome, error)
        return {**ack, "outcome": outcome}

    async def handle_event(self, event: DeliveryEvent) -> str:
        """Apply one normalized event. Returns the reconciliation outcome."""
        if event.informational:
            logger.info(f"📊 {event.raw_event_type} received, no order action")
            return IGNORED

        try:
            order = await self.store.find_by_provider_order_id(event.provider_order_id)
        except NotFoundError:
            logger.warning(
                f"⚠️ Webhook {event.raw_event_type} for unknown carrier order {event.provider_order_id}"
            )
            return ORPHANED

        new_status = map_provider_status(event.raw_status) if event.raw_status else None
        state: dict = {}

        def _apply(current: Order) -> None:
            state.clear()
            state["before"] = compute_status(current)

            if current.internal_status in {s.value for s in TERMINAL_INTERNAL_STATUSES}:
                state["outcome"] = TERMINAL
                return

            # The stage guard covers status only; driver details are kept from any event
            stale = bool(new_status) and not is_forward_transition(current.delivery_status, new_status)
            changed = False
            if new_status and not stale and new_status != current.delivery_status:
                current.delivery_status = new_status
                if new_status == DeliveryStatus.PICKED_UP.value:
                    current.admin_status = AdminStatus.PICKED_UP.value
                elif new_status == DeliveryStatus.DELIVERED.value:
                    current.internal_status = InternalStatus.DELIVERED.value
                    current.admin_status = AdminStatus.COMPLETED.value
                elif new_status == DeliveryStatus.CANCELLED.value:
                    current.internal_status = InternalStatus.CANCELLED.value
                changed = True

            for attr, value in (
                ("driver_id", event.driver_id),
                ("driver_name", event.driver_name),
                ("driver_phone", event.driver_phone),
            ):
                if value is not None and getattr(current, attr) != str(value):
                    setattr(current, attr, str(value))
                    changed = True

            if changed:
                last = current.delivery_last_status_update
                if last is None or event.timestamp > last:
                    current.delivery_last_status_update = event.timestamp
                state["outcome"] = APPLIED
            else:
                state["outcome"] = STALE if stale else IGNORED
            state["after"] = compute_status(current)

        order = await self.store.apply_mutation(order.id, _apply)
        outcome = state["outcome"]

        if outcome == TERMINAL:
            logger.info(f"Order {order.id} is {order.internal_status}; ignoring {event.raw_status}")
        elif outcome == STALE:
            logger.info(
                f"Order {order.id}: stale carrier status {new_status} "
                f"(current {order.delivery_status}), ignored"
            )
        elif outcome == APPLIED:
            logger.info(f"✅ Order {order.id} delivery status → {order.delivery_status}")

        after = state.get("after")
        if after is not None and after != state["before"]:
            try:
                await self.notifier.send_order_status_update(order, after)
            except Exception:
                logger.error(f"Status notification for order {order.id} failed", exc_info=True)

        return outcome

    # ── Event Log ───────────────────────────────────────────────────

    async def _log_event(self, event: DeliveryEvent, payload: dict) -> tuple[int, bool]:
        """Insert the log row. Returns (row id, already_processed)."""
        row = DeliveryEventLog(
            event_id=event.event_id,
            event_type=event.raw_event_type,
            provider_order_id=event.provider_order_id,
            raw_status=event.raw_status,
            payload=payload,
        )
        async with self._session_factory() as db:
            db.add(row)
            try:
                await db.commit()
                return row.id, False
            except IntegrityError:
                await db.rollback()

            existing = (
                await db.execute(
                    select(DeliveryEventLog).where(DeliveryEventLog.event_id == event.event_id)
                )
            ).scalar_one()
            stuck = (
                existing.outcome == RECEIVED
                and existing.received_at is not None
                and utcnow() - existing.received_at > self._stuck_after
            )
            if existing.outcome != ERROR and not stuck:
                return existing.id, True
            # Failed downstream, or claimed by a worker that never recorded an outcome
            logger.info(f"Reprocessing webhook event {event.event_id} (previous outcome {existing.outcome})")
            existing.outcome = RECEIVED
            existing.error = None
            existing.received_at = utcnow()
            await db.commit()
            return existing.id, False

    async def _record_outcome(self, log_id: int, outcome: str, error: Optional[str]) -> None:
        try:
            async with self._session_factory() as db:
                row = await db.get(DeliveryEventLog, log_id)
                row.outcome = outcome
                row.error = error
                row.processed_at = utcnow()
                await db.commit()
        except Exception:
            logger.error(f"Could not record outcome '{outcome}' for webhook log {log_id}", exc_info=True)
