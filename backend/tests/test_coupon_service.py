"""
Tests for coupon validation and usage recording.
"""
from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from db_models import Coupon, CouponUsage, utcnow
from domain.errors import NotFoundError, ValidationError
from services.coupon_service import CouponService, compute_effective_status, discount_for


async def _add_coupon(session_factory, **fields):
    defaults = {
        "code": "SAVE10",
        "coupon_type": "percent",
        "amount": 10,
        "expires_at": utcnow() + timedelta(days=30),
    }
    defaults.update(fields)
    async with session_factory() as db:
        coupon = Coupon(**defaults)
        db.add(coupon)
        await db.commit()
        return coupon


class TestDiscountMath:

    @pytest.mark.unit
    def test_percent_is_rounded(self):
        assert discount_for("percent", 15, 33_333) == 5_000

    @pytest.mark.unit
    def test_fixed_is_capped_at_subtotal(self):
        assert discount_for("fixed", 50_000, 20_000) == 20_000

    @pytest.mark.unit
    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            discount_for("bogo", 1, 100)

    @pytest.mark.unit
    def test_effective_status_precedence(self):
        now = utcnow()
        base = dict(manual_status="Active", expires_at=now + timedelta(days=1), use_limit=None,
                    user_limit=None, total_uses=0, usages=[])
        assert compute_effective_status(SimpleNamespace(**base), now) == "Active"
        assert compute_effective_status(SimpleNamespace(**{**base, "manual_status": "Inactive"}), now) == "Inactive"
        assert compute_effective_status(SimpleNamespace(**{**base, "expires_at": now - timedelta(seconds=1)}), now) == "Expired"
        assert compute_effective_status(SimpleNamespace(**{**base, "use_limit": 3, "total_uses": 3}), now) == "Used"
        assert compute_effective_status(None, now) == "Removed"


class TestValidateForCheckout:

    @pytest.mark.integration
    async def test_valid_coupon(self, session_factory, customer):
        await _add_coupon(session_factory)
        applied = await CouponService(session_factory).validate_for_checkout("SAVE10", customer, 100_000)
        assert applied.discount == 10_000

    @pytest.mark.integration
    async def test_unknown_code(self, session_factory, customer):
        with pytest.raises(ValidationError):
            await CouponService(session_factory).validate_for_checkout("NOPE", customer, 100_000)

    @pytest.mark.integration
    async def test_admin_cannot_use_coupons(self, session_factory, admin):
        await _add_coupon(session_factory)
        with pytest.raises(ValidationError):
            await CouponService(session_factory).validate_for_checkout("SAVE10", admin, 100_000)

    @pytest.mark.integration
    async def test_minimum_order(self, session_factory, customer):
        await _add_coupon(session_factory, min_order_amount=200_000)
        with pytest.raises(ValidationError) as exc_info:
            await CouponService(session_factory).validate_for_checkout("SAVE10", customer, 100_000)
        assert "₱2000.00" in exc_info.value.message

    @pytest.mark.integration
    async def test_per_user_limit(self, session_factory, customer):
        await _add_coupon(session_factory)
        service = CouponService(session_factory)
        await service.record_usage("SAVE10", customer.id)

        with pytest.raises(ValidationError):
            await service.validate_for_checkout("SAVE10", customer, 100_000)


class TestRecordUsage:

    @pytest.mark.integration
    async def test_each_call_is_one_use(self, session_factory, customer):
        await _add_coupon(session_factory, per_user_use_limit=5)
        service = CouponService(session_factory)

        await service.record_usage("SAVE10", customer.id)
        await service.record_usage("SAVE10", customer.id)

        async with session_factory() as db:
            coupon = (await db.execute(select(Coupon))).scalar_one()
            usage = (await db.execute(select(CouponUsage))).scalar_one()
        assert coupon.total_uses == 2
        assert usage.uses == 2

    @pytest.mark.integration
    async def test_missing_coupon(self, session_factory, customer):
        with pytest.raises(NotFoundError):
            await CouponService(session_factory).record_usage("GONE", customer.id)
