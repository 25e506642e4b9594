"""
Pydantic models for request/response validation.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from domain.constants import SHIPPING_INFO_FIELDS


class ApiBase(BaseModel):
    """Shared base - allows construction by Python name or camelCase alias."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# ── Shipping ────────────────────────────────────────────────────────

class Coordinates(ApiBase):
    lat: float
    lng: float


class ShippingInfo(ApiBase):
    """
    Customer contact and drop-off address.

    Fields are optional at the schema level so incomplete addresses reach
    OrderStore, which reports every missing field in a single ValidationError.
    """
    email: Optional[str] = None
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    address: Optional[str] = None
    barangay: Optional[str] = None
    postal_code: Optional[str] = Field(None, alias="postalCode")
    city: Optional[str] = None
    province: Optional[str] = None
    phone: Optional[str] = None
    full_address: Optional[str] = Field(None, alias="fullAddress")
    coordinates: Optional[Coordinates] = None

    def missing_fields(self) -> List[str]:
        return [
            name for name in SHIPPING_INFO_FIELDS
            if not (getattr(self, name) or "").strip()
        ]


# ── Checkout ────────────────────────────────────────────────────────

class CartLine(ApiBase):
    product_id: int = Field(..., alias="productId")
    quantity: int = Field(1, ge=1)


class DeliveryQuoteDraft(ApiBase):
    """Carrier quotation the customer accepted at checkout."""
    quotation_id: Optional[str] = Field(None, alias="quotationId")
    quotation: Optional[dict] = None
    service_type: Optional[str] = Field(None, alias="serviceType")
    distance_km: Optional[str] = Field(None, alias="distance")
    duration_min: Optional[str] = Field(None, alias="duration")
    total_weight_kg: Optional[int] = Field(None, alias="totalWeight")
    delivery_fee: int = Field(0, ge=0, alias="deliveryFee", description="Centavos")


class CheckoutRequest(ApiBase):
    items: List[CartLine] = Field(default_factory=list)
    shipping_method: Optional[str] = Field(None, alias="shippingMethod")
    shipping_info: Optional[ShippingInfo] = Field(None, alias="shippingInfo")
    delivery_quote: Optional[DeliveryQuoteDraft] = Field(None, alias="deliveryQuote")
    coupon_code: Optional[str] = Field(None, alias="couponCode")
    final_total: Optional[int] = Field(
        None,
        alias="finalTotal",
        description="Client-displayed total in centavos; informational only",
    )


class CheckoutSessionResponse(ApiBase):
    session_id: str = Field(..., alias="sessionId")
    order_id: str = Field(..., alias="orderId")
    total_amount: int = Field(..., alias="totalAmount")


class CheckoutConfirmRequest(ApiBase):
    session_id: str = Field(..., alias="sessionId", min_length=1)


# ── Order Drafts (service layer) ────────────────────────────────────

class OrderLineDraft(ApiBase):
    product_id: int = Field(..., alias="productId")
    name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: int = Field(..., ge=0, alias="unitPrice")


class OrderDraft(ApiBase):
    """Server-priced order, ready to be stored as provisional."""
    owner_id: int = Field(..., alias="ownerId")
    items: List[OrderLineDraft] = Field(default_factory=list)
    shipping_method: Optional[str] = Field(None, alias="shippingMethod")
    shipping_info: Optional[ShippingInfo] = Field(None, alias="shippingInfo")
    delivery_quote: Optional[DeliveryQuoteDraft] = Field(None, alias="deliveryQuote")
    coupon_code: Optional[str] = Field(None, alias="couponCode")
    coupon_type: Optional[str] = Field(None, alias="couponType")
    coupon_discount: int = Field(0, ge=0, alias="couponDiscount")
    product_subtotal: int = Field(0, ge=0, alias="productSubtotal")
    delivery_fee: int = Field(0, ge=0, alias="deliveryFee")
    tax_amount: int = Field(0, ge=0, alias="taxAmount")
    total_amount: int = Field(0, ge=0, alias="totalAmount")


# ── Admin ───────────────────────────────────────────────────────────

class AdminStatusUpdateRequest(ApiBase):
    status: str = Field(..., min_length=1)
    notes: Optional[str] = None


class PlaceDeliveryRequest(ApiBase):
    notes: Optional[str] = None
