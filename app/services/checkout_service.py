"""
Order placement.

All money is recomputed here from the catalog; nothing monetary is taken
from the client. The order, its lines, the first timeline entry, the coupon
redemption and the cart clean-up are committed in one transaction.
"""
import random
import string
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import CartEmpty, CouponRejected, DomainError, ServiceUnavailable
from app.models.coupon import Coupon
from app.models.coupon_redemption import CouponRedemption
from app.models.order import Order, OrderItem, ShippingMethod
from app.schemas.order import OrderCreate
from app.services.cart_service import CartService
from app.services.coupon_ledger import commit_redemption
from app.services.discount_engine import evaluate, to_money
from app.services.order_state_machine import start_order

logger = structlog.get_logger()

ORDER_ID_SUFFIX_LENGTH = 7
ORDER_ID_MAX_ATTEMPTS = 10


def shipping_rate(method: ShippingMethod) -> Decimal:
    rates = {
        ShippingMethod.STANDARD: settings.SHIPPING_RATE_STANDARD,
        ShippingMethod.EXPRESS: settings.SHIPPING_RATE_EXPRESS,
        ShippingMethod.SAME_DAY: settings.SHIPPING_RATE_SAME_DAY,
    }
    return to_money(rates[method])


def calculate_tax(subtotal: Decimal) -> Decimal:
    # GST is charged on the subtotal and rounded to the rupee
    tax = (subtotal * settings.GST_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return to_money(tax)


def generate_order_id(db: Session) -> str:
    """Generate a unique public order id with bounded retries."""
    for _ in range(ORDER_ID_MAX_ATTEMPTS):
        timestamp = int(time.time() * 1000)
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=ORDER_ID_SUFFIX_LENGTH)
        )
        order_id = f"ORD-{timestamp}-{random_part}"

        if db.get(Order, order_id) is None:
            return order_id

    raise ValueError("Failed to generate unique order id")


def find_existing_order(db: Session, user_id: str, idempotency_key: str) -> Optional[Order]:
    return (
        db.query(Order)
        .filter(
            Order.user_id == user_id,
            Order.idempotency_key == idempotency_key,
        )
        .first()
    )


def _lock_coupon(db: Session, code: str) -> Optional[Coupon]:
    return (
        db.query(Coupon)
        .filter(Coupon.code == code.strip().upper())
        .with_for_update()
        .first()
    )


def _user_redemption_count(db: Session, coupon_id: int, user_id: str) -> int:
    times_used = (
        db.query(CouponRedemption.times_used)
        .filter(
            CouponRedemption.coupon_id == coupon_id,
            CouponRedemption.user_id == user_id,
        )
        .scalar()
    )
    return times_used or 0


def _create_order(db: Session, user_id: str, payload: OrderCreate) -> Order:
    cart_items = CartService.get_items(db, user_id)
    if not cart_items:
        raise CartEmpty()

    subtotal = Decimal("0.00")
    lines: List[OrderItem] = []
    for cart_item in cart_items:
        CartService.ensure_available(cart_item)
        variant = cart_item.variant
        unit_price = to_money(variant.unit_price)
        total_price = unit_price * cart_item.quantity
        subtotal += total_price
        lines.append(
            OrderItem(
                product_id=cart_item.product_id,
                variant_id=variant.id,
                product_name=cart_item.product.name,
                size=variant.size,
                color=variant.color,
                quantity=cart_item.quantity,
                unit_price=unit_price,
                total_price=total_price,
            )
        )

    coupon = None
    discount = Decimal("0.00")
    if payload.coupon_code:
        coupon = _lock_coupon(db, payload.coupon_code)
        user_count = _user_redemption_count(db, coupon.id, user_id) if coupon else 0
        evaluation = evaluate(coupon, subtotal, user_count)
        if not evaluation.valid:
            raise CouponRejected(evaluation.reason, evaluation.message, coupon_code=payload.coupon_code)
        discount = evaluation.discount_amount

    shipping = shipping_rate(payload.shipping_method)
    tax = calculate_tax(subtotal)
    total = subtotal - discount + shipping + tax

    order = Order(
        id=generate_order_id(db),
        user_id=user_id,
        idempotency_key=payload.idempotency_key,
        subtotal=subtotal,
        discount=discount,
        shipping=shipping,
        tax=tax,
        total=total,
        coupon_id=coupon.id if coupon else None,
        coupon_code=coupon.code if coupon else None,
        payment_method=payload.payment_method,
        shipping_method=payload.shipping_method,
        shipping_address=payload.shipping_address.model_dump(),
        customer_notes=payload.customer_notes,
    )
    order.items = lines
    start_order(order)
    db.add(order)
    db.flush()

    if coupon:
        commit_redemption(db, coupon.id, user_id, order.id, discount)

    CartService.clear(db, user_id)
    db.commit()
    db.refresh(order)
    return order


def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, OperationalError) or bool(exc.connection_invalidated)


def place_order(db: Session, user_id: str, payload: OrderCreate) -> Tuple[Order, bool]:
    """Place an order from the user's cart.

    Returns ``(order, created)``; ``created`` is False when an order with the
    same idempotency key already exists and is returned unchanged.
    """
    existing = find_existing_order(db, user_id, payload.idempotency_key)
    if existing:
        return existing, False

    max_attempts = settings.CHECKOUT_COMMIT_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        try:
            order = _create_order(db, user_id, payload)
        except DomainError:
            db.rollback()
            raise
        except IntegrityError:
            db.rollback()
            # A concurrent request with the same idempotency key won
            existing = find_existing_order(db, user_id, payload.idempotency_key)
            if existing:
                return existing, False
            raise
        except DBAPIError as exc:
            db.rollback()
            if not _is_transient(exc):
                raise
            if attempt == max_attempts:
                logger.error(
                    "checkout_commit_failed",
                    user_id=user_id,
                    attempts=attempt,
                    error=str(exc),
                )
                raise ServiceUnavailable() from exc
            delay = settings.CHECKOUT_RETRY_BASE_DELAY * (2 ** (attempt - 1))
            logger.warning(
                "checkout_commit_retry",
                user_id=user_id,
                attempt=attempt,
                delay_seconds=delay,
            )
            time.sleep(delay)
            continue
        except Exception:
            db.rollback()
            logger.exception("checkout_failed", user_id=user_id)
            raise

        logger.info(
            "order_placed",
            order_id=order.id,
            user_id=user_id,
            total=str(order.total),
            payment_method=order.payment_method.value,
            coupon_code=order.coupon_code,
        )
        return order, True
