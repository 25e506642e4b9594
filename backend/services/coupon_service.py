"""
Coupon Service - checkout validation and usage recording.

Limits:
    use_limit           total uses across all customers (NULL = unbounded)
    user_limit          distinct customers (NULL = unbounded)
    per_user_use_limit  uses per customer (default 1)
    min_order_amount    product subtotal floor, centavos

Effective status is computed on read: a manual status other than Active
wins, then expiry, then exhausted limits.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from db_models import Coupon, CouponUsage, User, utcnow
from domain.enums import CouponType, UserRole
from domain.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_BLOCKING_MANUAL_STATUSES = {"Inactive", "Used", "Expired", "Removed"}


@dataclass(frozen=True)
class AppliedCoupon:
    code: str
    coupon_type: str
    discount: int  # centavos, already capped at the subtotal


def compute_effective_status(coupon: Optional[Coupon], now: Optional[datetime] = None) -> str:
    if coupon is None:
        return "Removed"
    manual = coupon.manual_status or "Active"
    if manual in _BLOCKING_MANUAL_STATUSES:
        return manual
    now = now or utcnow()
    if coupon.expires_at and coupon.expires_at < now:
        return "Expired"
    if coupon.use_limit is not None and (coupon.total_uses or 0) >= coupon.use_limit:
        return "Used"
    if coupon.user_limit is not None and len(coupon.usages) >= coupon.user_limit:
        return "Used"
    return "Active"


def discount_for(coupon_type: str, amount: int, subtotal: int) -> int:
    if coupon_type == CouponType.PERCENT.value:
        return min(round(subtotal * amount / 100), subtotal)
    if coupon_type == CouponType.FIXED.value:
        return min(amount, subtotal)
    raise ValidationError("Invalid coupon configuration", field="couponCode")


class CouponService:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def validate_for_checkout(self, code: str, user: User, subtotal: int) -> AppliedCoupon:
        """
        Check a coupon against the customer and the server-priced subtotal.

        Raises:
            ValidationError: with the reason the coupon cannot be applied.
        """
        async with self._session_factory() as db:
            result = await db.execute(select(Coupon).where(Coupon.code == code))
            coupon = result.scalar_one_or_none()

        if coupon is None:
            raise ValidationError("Coupon not found", field="couponCode")
        if user.role != UserRole.CUSTOMER.value:
            raise ValidationError("Only customers can use coupons", field="couponCode")

        status = compute_effective_status(coupon)
        if status != "Active":
            raise ValidationError(f"Coupon is {status.lower()}", field="couponCode")

        usage = next((u for u in coupon.usages if u.user_id == user.id), None)
        if usage is not None and usage.uses >= (coupon.per_user_use_limit or 1):
            raise ValidationError(
                "You have already used this coupon the maximum number of times",
                field="couponCode",
            )

        if subtotal < (coupon.min_order_amount or 0):
            raise ValidationError(
                f"Minimum order of ₱{coupon.min_order_amount / 100:.2f} required",
                field="couponCode",
            )

        discount = discount_for(coupon.coupon_type, coupon.amount, subtotal)
        if discount <= 0:
            raise ValidationError("Invalid discount amount", field="couponCode")

        return AppliedCoupon(code=coupon.code, coupon_type=coupon.coupon_type, discount=discount)

    async def record_usage(self, code: str, user_id: int) -> None:
        """Record one use of a coupon by a customer. Each call is one use."""
        async with self._session_factory() as db:
            result = await db.execute(select(Coupon.id).where(Coupon.code == code))
            coupon_id = result.scalar_one_or_none()
            if coupon_id is None:
                raise NotFoundError("Coupon", code)

            await db.execute(
                update(Coupon)
                .where(Coupon.id == coupon_id)
                .values(total_uses=Coupon.total_uses + 1)
            )
            bumped = await db.execute(
                update(CouponUsage)
                .where(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id)
                .values(uses=CouponUsage.uses + 1, last_used_at=utcnow())
            )
            if bumped.rowcount == 0:
                db.add(CouponUsage(coupon_id=coupon_id, user_id=user_id, uses=1))
            try:
                await db.commit()
            except IntegrityError:
                # Another settlement inserted the usage row first
                await db.rollback()
                await db.execute(
                    update(Coupon)
                    .where(Coupon.id == coupon_id)
                    .values(total_uses=Coupon.total_uses + 1)
                )
                await db.execute(
                    update(CouponUsage)
                    .where(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id)
                    .values(uses=CouponUsage.uses + 1, last_used_at=utcnow())
                )
                await db.commit()

        logger.info(f"🏷️ Coupon {code} used by user {user_id}")
