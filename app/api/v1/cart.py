from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.schemas.cart import CartItemCreate, CartItemUpdate
from app.schemas.user import CurrentUser
from app.services.cart_service import CartService
from app.utils.response import success

router = APIRouter()


@router.get("", response_model=dict)
@limiter.limit("60/minute")
def get_cart(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get user's cart, priced from the current catalog"""
    cart = CartService.get_cart(db, current_user.id)
    return success(data=cart, message="Cart retrieved")


@router.post("/items", response_model=dict, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def add_to_cart(
    request: Request,
    cart_item: CartItemCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item = CartService.add_item(db, current_user.id, cart_item)
    return success(
        data={"cart_item_id": item.id, "quantity": item.quantity},
        message="Item added to cart",
    )


@router.put("/items/{item_id}", response_model=dict)
@limiter.limit("30/minute")
def update_cart_item(
    request: Request,
    item_id: int,
    update_data: CartItemUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item = CartService.update_quantity(db, current_user.id, item_id, update_data.quantity)
    return success(
        data={"cart_item_id": item.id, "quantity": item.quantity},
        message="Cart item updated",
    )


@router.delete("/items/{item_id}", response_model=dict)
@limiter.limit("30/minute")
def remove_from_cart(
    request: Request,
    item_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    CartService.remove_item(db, current_user.id, item_id)
    return success(message="Item removed from cart")
