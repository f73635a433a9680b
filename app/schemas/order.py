from typing import List, Literal, Optional
from datetime import datetime
from decimal import Decimal
import uuid

import bleach
from pydantic import BaseModel, Field, field_validator

from app.models.order import OrderStatus, PaymentMethod, PaymentStatus, ShippingMethod


def _sanitize(value: Optional[str], max_length: int = 500) -> Optional[str]:
    if value is None:
        return value
    sanitized = bleach.clean(value, tags=[], attributes={}, strip=True).strip()
    if len(sanitized) > max_length:
        raise ValueError(f"Notes too long (max {max_length} chars)")
    return sanitized or None


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., pattern=r"^[6-9]\d{9}$")
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    pincode: str = Field(..., pattern=r"^\d{6}$")
    country: str = "India"

    @field_validator("full_name", "address_line1", "address_line2", "city", "state")
    @classmethod
    def strip_markup(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize(value, max_length=200)


class OrderCreate(BaseModel):
    """Checkout payload. Monetary fields are never accepted from the client."""

    payment_method: PaymentMethod = PaymentMethod.UPI
    shipping_method: ShippingMethod = ShippingMethod.STANDARD
    shipping_address: ShippingAddress
    coupon_code: Optional[str] = Field(None, max_length=20)
    customer_notes: Optional[str] = None
    idempotency_key: str = Field(..., min_length=36, max_length=64)

    model_config = {"extra": "ignore"}

    @field_validator("customer_notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize(value)

    @field_validator("coupon_code")
    @classmethod
    def normalize_coupon_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return value.strip().upper() or None

    @field_validator("idempotency_key")
    @classmethod
    def validate_idempotency_key(cls, value: str) -> str:
        parsed = uuid.UUID(value)
        return str(parsed)


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize(value, max_length=300)


class PaymentReferenceRequest(BaseModel):
    transaction_id: str = Field(..., min_length=6, max_length=100, pattern=r"^[A-Za-z0-9\-]+$")


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize(value)


class PaymentVerificationRequest(BaseModel):
    decision: Literal["approve", "reject"]
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize(value)

    @property
    def approved(self) -> bool:
        return self.decision == "approve"


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    size: Optional[str]
    color: Optional[str]
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    model_config = {"from_attributes": True}


class TimelineEntryResponse(BaseModel):
    status: str
    message: Optional[str]
    completed: bool
    changed_by: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogResponse(BaseModel):
    id: int
    actor_id: Optional[str]
    actor_role: Optional[str]
    action: str
    from_value: Optional[str]
    to_value: Optional[str]
    notes: Optional[str]
    ip_address: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class OrderSummaryResponse(BaseModel):
    id: str
    user_id: str
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    total: Decimal
    items_count: int
    created_at: datetime


class OrderResponse(BaseModel):
    id: str
    user_id: str
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    shipping_method: ShippingMethod
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    coupon_code: Optional[str]
    transaction_id: Optional[str]
    shipping_address: ShippingAddress
    customer_notes: Optional[str]
    items: List[OrderItemResponse]
    timeline: List[TimelineEntryResponse]
    paid_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}
