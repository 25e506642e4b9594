"""
Pytest configuration and shared fixtures for the order backend tests.

Each test gets its own file-backed SQLite database (separate sessions must
see each other's commits for the optimistic-concurrency tests), plus
recording fakes for the carrier and the payment provider.
"""
import itertools
from typing import AsyncGenerator, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from config import settings
from database import Base
from db_models import Product, User
from domain.errors import UpstreamError
from models import DeliveryQuoteDraft, OrderDraft, OrderLineDraft
from services.lalamove_service import PlacedDelivery, Quotation
from services.notification_service import NotificationService
from services.order_store import OrderStore
from services.stripe_service import PaymentSession

# ── Test Configuration ───────────────────────────────────────────────
# Set test-only values for settings that would normally come from .env
if not settings.jwt_secret:
    settings.jwt_secret = "test-jwt-secret-for-pytest-only"

SHIPPING_INFO = {
    "email": "ana@example.com",
    "firstName": "Ana",
    "lastName": "Cruz",
    "address": "12 Rizal St",
    "barangay": "San Antonio",
    "postalCode": "1600",
    "city": "Pasig",
    "province": "Metro Manila",
    "phone": "09171234567",
    "fullAddress": "12 Rizal St, San Antonio, Pasig, Metro Manila",
    "coordinates": {"lat": 14.5764, "lng": 121.0851},
}

BEEF_PRICE = 50_000  # ₱500.00
PORK_PRICE = 30_000  # ₱300.00


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """A fresh SQLite file database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def customer(session_factory) -> User:
    async with session_factory() as db:
        user = User(email="ana@example.com", name="Ana Cruz", role="customer")
        db.add(user)
        await db.commit()
        return user


@pytest.fixture
async def other_customer(session_factory) -> User:
    async with session_factory() as db:
        user = User(email="ben@example.com", name="Ben Reyes", role="customer")
        db.add(user)
        await db.commit()
        return user


@pytest.fixture
async def admin(session_factory) -> User:
    async with session_factory() as db:
        user = User(email="admin@meatshop.ph", name="Shop Admin", role="admin")
        db.add(user)
        await db.commit()
        return user


@pytest.fixture
async def products(session_factory) -> dict[str, Product]:
    """Beef with 10 boxes in stock, pork with unlimited stock."""
    async with session_factory() as db:
        beef = Product(name="Wagyu Ribeye Box", price=BEEF_PRICE, stock_quantity=10)
        pork = Product(name="Pork Belly Box", price=PORK_PRICE, stock_quantity=None)
        db.add_all([beef, pork])
        await db.commit()
        return {"beef": beef, "pork": pork}


@pytest.fixture
def store(session_factory) -> OrderStore:
    return OrderStore(session_factory)


@pytest.fixture
def notifier(session_factory) -> NotificationService:
    return NotificationService(session_factory)


# ── Order Factories ──────────────────────────────────────────────────


def carrier_quote(fee_pesos: str = "150.00") -> DeliveryQuoteDraft:
    return DeliveryQuoteDraft(
        quotation_id="quote-1",
        quotation={"quotationId": "quote-1", "priceBreakdown": {"total": fee_pesos, "currency": "PHP"}},
        service_type="MPV",
        distance_km="8.4",
        duration_min="35",
        total_weight_kg=30,
        delivery_fee=15_000,
    )


@pytest.fixture
def make_order(store, customer, products):
    """
    Create a provisional order bound to a payment session id.

    Amounts are priced the same way checkout prices them.
    """
    session_ids = itertools.count(1)

    async def _make(
        method: str = "pickup",
        *,
        quantity: int = 2,
        owner: Optional[User] = None,
        coupon_code: Optional[str] = None,
        coupon_type: Optional[str] = None,
        coupon_discount: int = 0,
        session_id: Optional[str] = None,
    ):
        beef = products["beef"]
        subtotal = beef.price * quantity
        quote = carrier_quote() if method == "carrier_delivery" else None
        delivery_fee = quote.delivery_fee if quote else 0
        tax = round(subtotal * settings.tax_rate)
        draft = OrderDraft(
            owner_id=(owner or customer).id,
            items=[OrderLineDraft(product_id=beef.id, name=beef.name, quantity=quantity, unit_price=beef.price)],
            shipping_method=method,
            shipping_info=SHIPPING_INFO,
            delivery_quote=quote,
            coupon_code=coupon_code,
            coupon_type=coupon_type,
            coupon_discount=coupon_discount,
            product_subtotal=subtotal,
            delivery_fee=delivery_fee,
            tax_amount=tax,
            total_amount=subtotal - coupon_discount + delivery_fee + tax,
        )
        order = await store.create_provisional(draft)
        key = session_id or f"cs_test_{next(session_ids)}"
        return await store.attach_idempotency_key(order.id, key)

    return _make


# ── Fakes ────────────────────────────────────────────────────────────


class RecordingNotifier:
    """Notification sink that records calls; optionally fails."""

    def __init__(self, fail_new_order: int = 0):
        self.new_orders = []
        self.status_updates = []
        self.followups = []
        self._fail_new_order = fail_new_order

    async def send_new_order_notification(self, order):
        if self._fail_new_order > 0:
            self._fail_new_order -= 1
            raise ConnectionError("mail relay unavailable")
        self.new_orders.append(order.id)
        return 1

    async def send_order_status_update(self, order, status):
        self.status_updates.append((order.id, status))

    async def send_settlement_followup(self, order, failures):
        self.followups.append((order.id, list(failures)))
        return 1


class FakeCarrier:
    """Carrier double: records quotes and placements, or raises `error`."""

    def __init__(self, error: Optional[Exception] = None, provider_order_id: str = "LLM-100001"):
        self.error = error
        self.provider_order_id = provider_order_id
        self.quotes = []
        self.placements = []

    async def quote(self, stops, parcel_quantity, distance_km, language=None):
        self.quotes.append({"stops": stops, "parcel_quantity": parcel_quantity, "distance_km": distance_km})
        return Quotation(
            quotation_id=f"fresh-quote-{len(self.quotes)}",
            stop_ids=["stop-pickup", "stop-dropoff"],
            price_breakdown={"total": "162.00"},
            service_type="MPV",
            total_weight_kg=parcel_quantity * 15,
        )

    async def place_order(self, quotation_id, sender, recipient, stop_ids):
        if self.error is not None:
            raise self.error
        self.placements.append({
            "quotation_id": quotation_id,
            "sender": sender,
            "recipient": recipient,
            "stop_ids": stop_ids,
        })
        return PlacedDelivery(
            provider_order_id=self.provider_order_id,
            tracking_url=f"https://share.lalamove.com/{self.provider_order_id}",
        )


class FakePaymentGateway:
    """Payment provider double with in-memory sessions."""

    def __init__(self):
        self.sessions: dict[str, PaymentSession] = {}
        self.created = []
        self._ids = itertools.count(1)
        self.fail_create = False

    async def create_session(self, line_items, *, success_url, cancel_url, metadata=None):
        if self.fail_create:
            raise UpstreamError("stripe", "card processing unavailable", upstream_status=503)
        session_id = f"cs_test_{next(self._ids)}"
        amount = sum(line["unit_amount"] * line["quantity"] for line in line_items)
        self.created.append({"id": session_id, "line_items": line_items, "metadata": metadata or {}})
        self.sessions[session_id] = PaymentSession(
            session_id=session_id,
            payment_status="unpaid",
            amount_total=amount,
            metadata=metadata or {},
        )
        return session_id

    def mark_paid(self, session_id: str, amount_total: Optional[int] = None):
        current = self.sessions[session_id]
        self.sessions[session_id] = PaymentSession(
            session_id=session_id,
            payment_status="paid",
            amount_total=current.amount_total if amount_total is None else amount_total,
            metadata=current.metadata,
        )

    async def retrieve_session(self, session_id: str) -> PaymentSession:
        if session_id not in self.sessions:
            raise UpstreamError("stripe", f"No such checkout.session: {session_id}", upstream_status=404)
        return self.sessions[session_id]


@pytest.fixture
def recording_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def carrier() -> FakeCarrier:
    return FakeCarrier()


@pytest.fixture
def payments() -> FakePaymentGateway:
    return FakePaymentGateway()
