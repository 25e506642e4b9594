"""
Tests for admin workflow transitions and carrier placement.
"""
import pytest

from domain.enums import ComputedStatus
from domain.errors import CarrierTimeoutError, InvalidStatusError, PreconditionError, UpstreamError
from services.admin_workflow_service import AdminWorkflowGate, parse_admin_status
from services.status_service import compute_status
from tests.conftest import FakeCarrier


@pytest.fixture
def paid_order(store, make_order):
    async def _paid(method="pickup", **kwargs):
        order = await make_order(method, **kwargs)

        def _pay(current):
            current.payment_status = "paid"
            current.internal_status = "processing"

        return await store.apply_mutation(order.id, _pay)

    return _paid


@pytest.fixture
def gate(store, carrier, recording_notifier):
    return AdminWorkflowGate(store, carrier, recording_notifier)


class TestParseAdminStatus:

    @pytest.mark.unit
    def test_known_and_legacy_names(self):
        assert parse_admin_status("preparing").value == "preparing"
        assert parse_admin_status("ORDER_PLACED").value == "placed_with_carrier"

    @pytest.mark.unit
    def test_unknown_status(self):
        with pytest.raises(InvalidStatusError) as exc_info:
            parse_admin_status("shipped_by_pigeon")
        assert "received" in exc_info.value.details["allowed"]


class TestTransition:

    @pytest.mark.integration
    async def test_pickup_order_moves_and_records_history(self, gate, paid_order, admin, recording_notifier):
        order = await paid_order()

        updated = await gate.transition(order.id, "preparing", admin.id, notes="Cutting now")

        assert updated.admin_status == "preparing"
        assert compute_status(updated) == ComputedStatus.ORDER_PREPARING
        assert updated.admin_history[-1]["status"] == "preparing"
        assert updated.admin_history[-1]["notes"] == "Cutting now"
        assert updated.admin_history[-1]["actorId"] == admin.id
        assert recording_notifier.status_updates == [(order.id, ComputedStatus.ORDER_PREPARING)]

    @pytest.mark.integration
    async def test_unpaid_order_cannot_move(self, gate, make_order, admin):
        order = await make_order()
        with pytest.raises(PreconditionError):
            await gate.transition(order.id, "preparing", admin.id)

    @pytest.mark.integration
    async def test_cancelled_order_cannot_move(self, gate, paid_order, store, admin):
        order = await paid_order()
        await store.apply_mutation(order.id, lambda o: setattr(o, "internal_status", "cancelled"))

        with pytest.raises(PreconditionError):
            await gate.transition(order.id, "prepared", admin.id)
        assert (await store.get(order.id)).admin_status == "received"

    @pytest.mark.integration
    async def test_invalid_status_changes_nothing(self, gate, paid_order, store, admin):
        order = await paid_order()
        with pytest.raises(InvalidStatusError):
            await gate.transition(order.id, "teleported", admin.id)
        assert (await store.get(order.id)).version == order.version

    @pytest.mark.integration
    async def test_carrier_prepared_order_shows_prepared(self, gate, paid_order, admin):
        order = await paid_order("carrier_delivery")

        updated = await gate.transition(order.id, "prepared", admin.id)

        assert updated.delivery_status == "awaiting_placement"
        assert compute_status(updated) == ComputedStatus.ORDER_PREPARED


class TestCarrierPlacement:

    @pytest.mark.integration
    async def test_placement_assigns_driver_search(self, gate, paid_order, admin, carrier, recording_notifier):
        order = await paid_order("carrier_delivery", quantity=3)
        await gate.transition(order.id, "prepared", admin.id)

        placed = await gate.transition(order.id, "placed_with_carrier", admin.id)

        assert placed.delivery_status == "pending"
        assert placed.admin_status == "placed_with_carrier"
        assert placed.delivery_provider_order_id == "LLM-100001"
        assert placed.delivery_tracking_url.endswith("LLM-100001")
        assert placed.delivery_quotation_id == "fresh-quote-1"
        assert placed.delivery_total_weight_kg == 45
        assert compute_status(placed) == ComputedStatus.ASSIGNING_DRIVER

        assert carrier.quotes[0]["parcel_quantity"] == 3
        recipient = carrier.placements[0]["recipient"]
        assert recipient.phone == "+639171234567"
        assert recipient.remarks == f"Order #{order.order_number}"
        assert recording_notifier.status_updates[-1] == (order.id, ComputedStatus.ASSIGNING_DRIVER)

    @pytest.mark.integration
    async def test_upstream_failure_marks_delivery_failed(self, store, paid_order, admin, recording_notifier):
        order = await paid_order("carrier_delivery")
        carrier = FakeCarrier(error=UpstreamError("lalamove", "Insufficient wallet balance", upstream_status=422))
        gate = AdminWorkflowGate(store, carrier, recording_notifier)

        with pytest.raises(UpstreamError) as exc_info:
            await gate.place_with_carrier(order.id, admin.id)

        assert "Insufficient wallet balance" in exc_info.value.message
        failed = await store.get(order.id)
        assert failed.delivery_status == "failed"
        assert failed.admin_status == "received"
        assert failed.admin_history[-1]["status"] == "placement_failed"
        assert compute_status(failed) == ComputedStatus.REJECTED

    @pytest.mark.integration
    async def test_carrier_timeout_surfaces_as_upstream_error(self, store, paid_order, admin, recording_notifier):
        order = await paid_order("carrier_delivery")
        gate = AdminWorkflowGate(store, FakeCarrier(error=CarrierTimeoutError("lalamove", attempts=3)), recording_notifier)

        with pytest.raises(CarrierTimeoutError):
            await gate.place_with_carrier(order.id, admin.id)
        assert (await store.get(order.id)).delivery_status == "failed"

    @pytest.mark.integration
    async def test_cannot_place_twice(self, gate, paid_order, admin, carrier):
        order = await paid_order("carrier_delivery")
        await gate.place_with_carrier(order.id, admin.id)

        with pytest.raises(PreconditionError):
            await gate.place_with_carrier(order.id, admin.id)
        assert len(carrier.placements) == 1

    @pytest.mark.integration
    async def test_pickup_order_cannot_be_placed(self, gate, paid_order, admin):
        order = await paid_order("pickup")
        with pytest.raises(PreconditionError):
            await gate.place_with_carrier(order.id, admin.id)

    @pytest.mark.integration
    async def test_pickup_ready_for_pickup_needs_no_carrier(self, gate, paid_order, admin, carrier):
        order = await paid_order("pickup")

        updated = await gate.transition(order.id, "placed_with_carrier", admin.id)

        assert compute_status(updated) == ComputedStatus.READY_FOR_PICKUP
        assert carrier.quotes == []
