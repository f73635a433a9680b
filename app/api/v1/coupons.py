from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.schemas.coupon import ApplyCouponRequest, AvailableCouponResponse
from app.schemas.user import CurrentUser
from app.services.coupon_service import CouponService
from app.utils.response import success

router = APIRouter()


@router.post("/validate", response_model=dict)
@limiter.limit("30/minute")
def validate_coupon(
    request: Request,
    payload: ApplyCouponRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Preview a coupon against a cart total.

    Rejections are returned as ``valid=false`` with a typed ``reason``;
    nothing is reserved until the order is placed.
    """
    evaluation = CouponService.preview_coupon(db, current_user.id, payload.coupon_code, payload.order_total)
    return success(data=evaluation, message=evaluation.message)


@router.get("/available", response_model=dict)
@limiter.limit("30/minute")
def list_available_coupons(
    request: Request,
    order_total: Decimal = Query(..., ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    coupons = CouponService.list_available_coupons(db, order_total)
    return success(
        data=[AvailableCouponResponse.model_validate(coupon) for coupon in coupons],
        message="Available coupons retrieved",
    )
