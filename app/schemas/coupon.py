import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Literal, Optional

import bleach
from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.exceptions import ErrorCode
from app.models.coupon import DiscountType

COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9]{4,20}$")


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Columns store naive UTC timestamps
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    sanitized = bleach.clean(value, tags=[], attributes={}, strip=True).strip()
    if len(sanitized) > 500:
        raise ValueError("Description too long (max 500 chars)")
    return sanitized or None


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=4, max_length=20)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0)
    min_order_value: Decimal = Field(default=Decimal("0"), ge=0)
    max_discount: Optional[Decimal] = Field(None, gt=0)
    max_uses: Optional[int] = Field(None, gt=0)
    max_uses_per_user: int = Field(default=1, ge=1)
    start_date: datetime
    end_date: datetime
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        code = value.strip().upper()
        if not COUPON_CODE_PATTERN.match(code):
            raise ValueError("Coupon code must be 4-20 alphanumeric characters")
        return code

    @field_validator("description")
    @classmethod
    def clean_description(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value)

    @field_validator("start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, value: datetime) -> datetime:
        return _naive_utc(value)

    @model_validator(mode="after")
    def validate_rules(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount must be between 0 and 100")
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class CouponUpdate(BaseModel):
    """Code and used_count are immutable once a coupon exists."""

    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    min_order_value: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, gt=0)
    max_uses: Optional[int] = Field(None, gt=0)
    max_uses_per_user: Optional[int] = Field(None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None

    @field_validator(
        "discount_type",
        "discount_value",
        "min_order_value",
        "max_uses_per_user",
        "start_date",
        "end_date",
        "is_active",
    )
    @classmethod
    def reject_null(cls, value, info):
        # Only description, max_discount and max_uses may be cleared
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value

    @field_validator("description")
    @classmethod
    def clean_description(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value)

    @field_validator("start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(value)


class CouponResponse(BaseModel):
    id: int
    code: str
    description: Optional[str]
    discount_type: DiscountType
    discount_value: Decimal
    min_order_value: Decimal
    max_discount: Optional[Decimal]
    max_uses: Optional[int]
    used_count: int
    max_uses_per_user: int
    is_active: bool
    start_date: datetime
    end_date: datetime
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AvailableCouponResponse(BaseModel):
    id: int
    code: str
    description: Optional[str]
    discount_type: DiscountType
    discount_value: Decimal
    max_discount: Optional[Decimal]
    min_order_value: Decimal

    model_config = {"from_attributes": True}


class CouponListFilters(BaseModel):
    status: Literal["all", "active", "inactive", "expired"] = "all"
    search: Optional[str] = Field(None, max_length=20)
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class ApplyCouponRequest(BaseModel):
    coupon_code: str = Field(..., min_length=1, max_length=20)
    order_total: Decimal = Field(..., ge=0)


class CouponEvaluation(BaseModel):
    valid: bool
    discount_amount: Decimal = Decimal("0.00")
    final_total: Decimal
    reason: Optional[ErrorCode] = None
    message: str
    coupon_id: Optional[int] = None
    code: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = None


class CouponUsageEntry(BaseModel):
    user_id: str
    order_id: str
    discount_amount: Decimal
    used_at: datetime

    model_config = {"from_attributes": True}


class CouponStats(BaseModel):
    total_usage: int
    total_discount_given: Decimal
    unique_users: int
    remaining_uses: Optional[int]
    usage_percentage: Optional[float]


class CouponStatsResponse(BaseModel):
    coupon: CouponResponse
    stats: CouponStats
    recent_usage: List[CouponUsageEntry]
