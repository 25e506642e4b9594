"""
Input validation utilities for the Meat Shop backend.

Provides reusable validators for order identifiers and Philippine phone numbers.
"""
import re

from fastapi import Path

from domain.errors import ValidationError

_ORDER_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_NON_DIGITS = re.compile(r"\D")


def validate_order_id(order_id: str) -> str:
    """
    Validate an order identifier (uuid4 hex).

    Raises:
        ValidationError(400) if the identifier is malformed
    """
    if not order_id:
        raise ValidationError("Order ID is required", field="orderId")
    if not _ORDER_ID_RE.match(order_id):
        raise ValidationError(f"Invalid order ID: {order_id[:12]}", field="orderId")
    return order_id


def validated_order_id(order_id: str = Path(..., description="Order ID")) -> str:
    """FastAPI dependency for validating order ID path parameters."""
    return validate_order_id(order_id)


def to_e164_ph(raw: str | None) -> str | None:
    """
    Normalize a Philippine phone number to E.164.

    "09171234567" -> "+639171234567", "639171234567" -> "+639171234567",
    "9171234567" -> "+639171234567". Anything else is returned unchanged.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if not digits:
        return raw
    if digits.startswith("0"):
        return "+63" + digits[1:]
    if digits.startswith("63"):
        return "+" + digits
    if digits.startswith("9") and len(digits) == 10:
        return "+63" + digits
    return raw
