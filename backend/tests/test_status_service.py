"""
Tests for the computed order status.

Tests: compute_status priority rules, carrier/pickup mappings, defensive
reads, needs_admin_action.
"""
import copy
from types import SimpleNamespace

import pytest

from domain.enums import ComputedStatus
from services.status_service import compute_status, needs_admin_action, status_message


def _order(**overrides):
    fields = {
        "payment_status": "paid",
        "internal_status": "processing",
        "admin_status": "received",
        "shipping_method": "pickup",
        "delivery_status": None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestComputeStatus:

    @pytest.mark.unit
    @pytest.mark.parametrize("payment_status", ["pending", "failed", "refunded", None])
    def test_unpaid_is_pending_regardless_of_other_axes(self, payment_status):
        order = _order(payment_status=payment_status, admin_status="completed", delivery_status="delivered")
        assert compute_status(order) == ComputedStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.parametrize("internal_status", ["cancelled", "refunded"])
    def test_cancelled_or_refunded_is_canceled(self, internal_status):
        order = _order(internal_status=internal_status, shipping_method="carrier_delivery", delivery_status="accepted")
        assert compute_status(order) == ComputedStatus.CANCELED

    @pytest.mark.unit
    @pytest.mark.parametrize("admin_status, expected", [
        ("received", ComputedStatus.ORDER_RECEIVED),
        ("preparing", ComputedStatus.ORDER_PREPARING),
        ("prepared", ComputedStatus.ORDER_PREPARED),
        ("placed_with_carrier", ComputedStatus.READY_FOR_PICKUP),
        ("picked_up", ComputedStatus.PICKED_UP),
        ("completed", ComputedStatus.COMPLETED),
    ])
    def test_pickup_follows_admin_status(self, admin_status, expected):
        assert compute_status(_order(admin_status=admin_status)) == expected

    @pytest.mark.unit
    def test_pickup_with_unknown_admin_status_defaults_to_received(self):
        assert compute_status(_order(admin_status="weird")) == ComputedStatus.ORDER_RECEIVED

    @pytest.mark.unit
    def test_carrier_awaiting_placement_follows_admin_status(self):
        order = _order(
            shipping_method="carrier_delivery",
            delivery_status="awaiting_placement",
            admin_status="preparing",
        )
        assert compute_status(order) == ComputedStatus.ORDER_PREPARING

    @pytest.mark.unit
    @pytest.mark.parametrize("delivery_status, expected", [
        ("pending", ComputedStatus.ASSIGNING_DRIVER),
        ("ASSIGNING_DRIVER", ComputedStatus.ASSIGNING_DRIVER),
        ("accepted", ComputedStatus.ON_GOING),
        ("picked_up", ComputedStatus.PICKED_UP),
        ("delivered", ComputedStatus.COMPLETED),
        ("COMPLETED", ComputedStatus.COMPLETED),
        ("cancelled", ComputedStatus.CANCELED),
        ("failed", ComputedStatus.REJECTED),
        ("REJECTED", ComputedStatus.REJECTED),
        ("expired", ComputedStatus.EXPIRED),
        ("something_new", ComputedStatus.ASSIGNING_DRIVER),
    ])
    def test_carrier_follows_delivery_status(self, delivery_status, expected):
        order = _order(shipping_method="carrier_delivery", delivery_status=delivery_status)
        assert compute_status(order) == expected

    @pytest.mark.unit
    def test_unknown_shipping_method_is_processing(self):
        assert compute_status(_order(shipping_method="drone")) == ComputedStatus.PROCESSING

    @pytest.mark.unit
    def test_missing_attributes_do_not_raise(self):
        assert compute_status(SimpleNamespace()) == ComputedStatus.PENDING
        assert compute_status(SimpleNamespace(payment_status="paid")) == ComputedStatus.PROCESSING

    @pytest.mark.unit
    def test_accepts_enum_members_and_mixed_case(self):
        from domain.enums import PaymentStatus
        order = _order(payment_status=PaymentStatus.PAID, shipping_method="PICKUP", admin_status="Prepared")
        assert compute_status(order) == ComputedStatus.ORDER_PREPARED

    @pytest.mark.unit
    def test_is_pure(self):
        order = _order(shipping_method="carrier_delivery", delivery_status="accepted")
        before = copy.deepcopy(vars(order))
        first = compute_status(order)
        assert compute_status(order) == first
        assert vars(order) == before

    @pytest.mark.unit
    def test_every_status_has_a_message(self):
        for status in ComputedStatus:
            assert status_message(status)


class TestNeedsAdminAction:

    @pytest.mark.unit
    def test_paid_pickup_waiting_on_shop(self):
        assert needs_admin_action(_order(admin_status="preparing")) is True

    @pytest.mark.unit
    def test_pickup_handed_over_needs_nothing(self):
        assert needs_admin_action(_order(admin_status="picked_up")) is False

    @pytest.mark.unit
    def test_carrier_awaiting_placement_needs_action(self):
        order = _order(shipping_method="carrier_delivery", delivery_status="awaiting_placement")
        assert needs_admin_action(order) is True

    @pytest.mark.unit
    def test_carrier_already_placed_needs_nothing(self):
        order = _order(shipping_method="carrier_delivery", delivery_status="pending", admin_status="prepared")
        assert needs_admin_action(order) is False

    @pytest.mark.unit
    def test_unpaid_or_cancelled_needs_nothing(self):
        assert needs_admin_action(_order(payment_status="pending")) is False
        assert needs_admin_action(_order(internal_status="cancelled")) is False
