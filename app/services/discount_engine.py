"""
Coupon eligibility and discount calculation.

``evaluate`` is a pure function: it reads the coupon and the caller's usage
count and returns a ``CouponEvaluation``. It never touches the session and
never mutates the coupon, so it is safe to call for every keystroke of a
coupon preview. Usage counters are only moved by ``coupon_ledger``.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from app.core.exceptions import ErrorCode
from app.models.coupon import Coupon, DiscountType
from app.schemas.coupon import CouponEvaluation

PAISA = Decimal("0.01")
ZERO = Decimal("0.00")

REJECTION_MESSAGES = {
    ErrorCode.NOT_FOUND: "Invalid coupon code",
    ErrorCode.INACTIVE: "This coupon is no longer active",
    ErrorCode.NOT_YET_VALID: "Coupon not yet valid",
    ErrorCode.EXPIRED: "This coupon has expired",
    ErrorCode.USAGE_LIMIT_REACHED: "This coupon has reached its usage limit",
    ErrorCode.PER_USER_LIMIT_REACHED: "You have already used this coupon",
    ErrorCode.BELOW_MINIMUM_ORDER: "Minimum order value of ₹{minimum} required",
}


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(PAISA, rounding=ROUND_HALF_UP)


def _rejection_reason(
    coupon: Optional[Coupon],
    order_total: Decimal,
    user_redemption_count: int,
    now: datetime,
) -> Optional[ErrorCode]:
    # First failing check wins
    if coupon is None:
        return ErrorCode.NOT_FOUND
    if not coupon.is_active:
        return ErrorCode.INACTIVE
    if now < coupon.start_date:
        return ErrorCode.NOT_YET_VALID
    if now > coupon.end_date:
        return ErrorCode.EXPIRED
    if coupon.max_uses is not None and (coupon.used_count or 0) >= coupon.max_uses:
        return ErrorCode.USAGE_LIMIT_REACHED
    if user_redemption_count >= coupon.max_uses_per_user:
        return ErrorCode.PER_USER_LIMIT_REACHED
    if order_total < to_money(coupon.min_order_value or 0):
        return ErrorCode.BELOW_MINIMUM_ORDER
    return None


def calculate_discount(coupon: Coupon, order_total: Decimal) -> Decimal:
    """Discount for an eligible coupon, rounded to the paisa and never above the order total."""
    value = Decimal(str(coupon.discount_value))
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = order_total * value / Decimal("100")
        if coupon.max_discount is not None:
            discount = min(discount, Decimal(str(coupon.max_discount)))
    else:
        discount = value
    return to_money(min(discount, order_total))


def evaluate(
    coupon: Optional[Coupon],
    order_total,
    user_redemption_count: int = 0,
    now: Optional[datetime] = None,
) -> CouponEvaluation:
    now = now or datetime.utcnow()
    order_total = to_money(order_total)

    reason = _rejection_reason(coupon, order_total, user_redemption_count, now)
    if reason is not None:
        message = REJECTION_MESSAGES[reason]
        if reason == ErrorCode.BELOW_MINIMUM_ORDER:
            message = message.format(minimum=to_money(coupon.min_order_value))
        return CouponEvaluation(
            valid=False,
            discount_amount=ZERO,
            final_total=order_total,
            reason=reason,
            message=message,
            coupon_id=coupon.id if coupon is not None else None,
            code=coupon.code if coupon is not None else None,
        )

    discount = calculate_discount(coupon, order_total)
    return CouponEvaluation(
        valid=True,
        discount_amount=discount,
        final_total=order_total - discount,
        message="Coupon applied successfully",
        coupon_id=coupon.id,
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=Decimal(str(coupon.discount_value)),
    )
