from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from app.core.exceptions import CartItemNotFound, ProductUnavailable
from app.models.cart import CartItem
from app.models.product import Product, ProductVariant
from app.schemas.cart import CartItemCreate, CartItemResponse, CartResponse

MAX_QUANTITY_PER_ITEM = 10


class CartService:

    @staticmethod
    def get_items(db: Session, user_id: str) -> List[CartItem]:
        return (
            db.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .order_by(CartItem.id)
            .all()
        )

    @staticmethod
    def ensure_available(item: CartItem) -> None:
        """Raise when the product or variant behind a cart line was withdrawn."""
        product = item.product
        variant = item.variant
        if (
            product is None
            or not product.is_active
            or variant is None
            or not variant.is_active
            or variant.product_id != product.id
        ):
            raise ProductUnavailable(product_id=item.product_id, variant_id=item.variant_id)

    @staticmethod
    def get_cart(db: Session, user_id: str) -> CartResponse:
        """Current cart priced from the catalog."""
        lines = []
        subtotal = Decimal("0.00")

        for item in CartService.get_items(db, user_id):
            variant = item.variant
            unit_price = variant.unit_price
            total_price = unit_price * item.quantity
            subtotal += total_price
            lines.append(
                CartItemResponse(
                    id=item.id,
                    product_id=item.product_id,
                    product_name=item.product.name,
                    variant_id=variant.id,
                    size=variant.size,
                    color=variant.color,
                    quantity=item.quantity,
                    unit_price=unit_price,
                    total_price=total_price,
                )
            )

        return CartResponse(
            items=lines,
            subtotal=subtotal,
            total_items=sum(line.quantity for line in lines),
        )

    @staticmethod
    def add_item(db: Session, user_id: str, payload: CartItemCreate) -> CartItem:
        product = db.query(Product).filter(
            Product.id == payload.product_id,
            Product.is_active.is_(True),
        ).first()
        variant = db.query(ProductVariant).filter(
            ProductVariant.id == payload.variant_id,
            ProductVariant.product_id == payload.product_id,
            ProductVariant.is_active.is_(True),
        ).first()
        if not product or not variant:
            raise ProductUnavailable(product_id=payload.product_id, variant_id=payload.variant_id)

        existing = db.query(CartItem).filter(
            CartItem.user_id == user_id,
            CartItem.variant_id == payload.variant_id,
        ).first()

        if existing:
            existing.quantity = min(existing.quantity + payload.quantity, MAX_QUANTITY_PER_ITEM)
            db.commit()
            db.refresh(existing)
            return existing

        item = CartItem(
            user_id=user_id,
            product_id=payload.product_id,
            variant_id=payload.variant_id,
            quantity=payload.quantity,
        )
        db.add(item)
        db.commit()
        db.refresh(item)
        return item

    @staticmethod
    def _get_owned_item(db: Session, user_id: str, item_id: int) -> CartItem:
        item = db.query(CartItem).filter(
            CartItem.id == item_id,
            CartItem.user_id == user_id,
        ).first()
        if not item:
            raise CartItemNotFound()
        return item

    @staticmethod
    def update_quantity(db: Session, user_id: str, item_id: int, quantity: int) -> CartItem:
        item = CartService._get_owned_item(db, user_id, item_id)
        item.quantity = quantity
        db.commit()
        db.refresh(item)
        return item

    @staticmethod
    def remove_item(db: Session, user_id: str, item_id: int) -> None:
        item = CartService._get_owned_item(db, user_id, item_id)
        db.delete(item)
        db.commit()

    @staticmethod
    def clear(db: Session, user_id: str) -> int:
        """Delete the user's cart lines without committing."""
        return (
            db.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .delete(synchronize_session=False)
        )
