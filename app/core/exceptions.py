import enum
from typing import Any, List, Optional

from fastapi import status


class ErrorCode(str, enum.Enum):
    # Coupon evaluation
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    NOT_YET_VALID = "NOT_YET_VALID"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    PER_USER_LIMIT_REACHED = "PER_USER_LIMIT_REACHED"
    BELOW_MINIMUM_ORDER = "BELOW_MINIMUM_ORDER"

    # Redemption commit
    CONFLICT = "CONFLICT"

    # Order settlement
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    PAYMENT_NOT_AWAITING_VERIFICATION = "PAYMENT_NOT_AWAITING_VERIFICATION"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"

    # Checkout / catalog
    CART_EMPTY = "CART_EMPTY"
    CART_ITEM_NOT_FOUND = "CART_ITEM_NOT_FOUND"
    PRODUCT_UNAVAILABLE = "PRODUCT_UNAVAILABLE"

    # Coupon administration
    COUPON_NOT_FOUND = "COUPON_NOT_FOUND"
    COUPON_CODE_EXISTS = "COUPON_CODE_EXISTS"
    COUPON_IN_USE = "COUPON_IN_USE"
    INVALID_COUPON = "INVALID_COUPON"

    # Infrastructure
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class DomainError(APIError):
    """An expected business-rule failure carrying a machine-readable code."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, code: ErrorCode, message: str, status_code: Optional[int] = None, **details: Any):
        self.code = code
        super().__init__(
            status_code=status_code or self.status_code,
            message=message,
            errors=[{"code": code.value, **details}],
        )


class CouponRejected(DomainError):
    pass


class RedemptionConflict(DomainError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, coupon_id: int, scope: str):
        super().__init__(
            ErrorCode.CONFLICT,
            "This coupon was just used up by another order. Please try again without it.",
            coupon_id=coupon_id,
            scope=scope,
        )


class IllegalTransition(DomainError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current: str, target: str, field: str = "status"):
        super().__init__(
            ErrorCode.ILLEGAL_TRANSITION,
            f"Cannot move order {field} from '{current}' to '{target}'",
            field=field,
            current=current,
            target=target,
        )


class PaymentNotAwaitingVerification(DomainError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, payment_status: str):
        super().__init__(
            ErrorCode.PAYMENT_NOT_AWAITING_VERIFICATION,
            "Payment is not awaiting verification",
            payment_status=payment_status,
        )


class OrderNotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self):
        super().__init__(ErrorCode.ORDER_NOT_FOUND, "Order not found")


class CouponNotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self):
        super().__init__(ErrorCode.COUPON_NOT_FOUND, "Coupon not found")


class CartEmpty(DomainError):
    def __init__(self):
        super().__init__(ErrorCode.CART_EMPTY, "Cart is empty")


class CartItemNotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self):
        super().__init__(ErrorCode.CART_ITEM_NOT_FOUND, "Cart item not found")


class ProductUnavailable(DomainError):
    def __init__(self, product_id: int, variant_id: Optional[int] = None):
        super().__init__(
            ErrorCode.PRODUCT_UNAVAILABLE,
            "One of the products in your cart is no longer available",
            product_id=product_id,
            variant_id=variant_id,
        )


class ServiceUnavailable(DomainError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self):
        super().__init__(
            ErrorCode.SERVICE_UNAVAILABLE,
            "Service temporarily unavailable. Please try again shortly.",
        )
