from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Optional


class CartItemCreate(BaseModel):
    product_id: int = Field(..., gt=0)
    variant_id: int = Field(..., gt=0)
    quantity: int = Field(default=1, ge=1, le=10)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1, le=10)


class CartItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    variant_id: int
    size: str
    color: Optional[str]
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    subtotal: Decimal
    total_items: int
