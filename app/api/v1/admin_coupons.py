from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.api.deps import require_admin
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.schemas.coupon import CouponCreate, CouponListFilters, CouponResponse, CouponUpdate
from app.schemas.user import CurrentUser
from app.services.coupon_service import CouponService
from app.utils.response import paginated_response, success

router = APIRouter()


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_coupon(
    request: Request,
    coupon_data: CouponCreate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    coupon = CouponService.create_coupon(db, coupon_data)
    return success(data=CouponResponse.model_validate(coupon), message="Coupon created successfully")


@router.get("", response_model=dict)
def list_coupons(
    coupon_status: Literal["all", "active", "inactive", "expired"] = Query("all", alias="status"),
    search: Optional[str] = Query(None, max_length=20),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    filters = CouponListFilters(status=coupon_status, search=search, page=page, limit=limit)
    coupons, total = CouponService.list_coupons(db, filters)
    return paginated_response(
        items=[CouponResponse.model_validate(coupon) for coupon in coupons],
        total=total,
        page=page,
        limit=limit,
        message="Coupons retrieved successfully",
    )


@router.get("/{coupon_id}", response_model=dict)
def get_coupon(
    coupon_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    coupon = CouponService.get_coupon(db, coupon_id)
    return success(data=CouponResponse.model_validate(coupon), message="Coupon retrieved successfully")


@router.put("/{coupon_id}", response_model=dict)
@limiter.limit("30/minute")
def update_coupon(
    request: Request,
    coupon_id: int,
    coupon_data: CouponUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    coupon = CouponService.update_coupon(db, coupon_id, coupon_data)
    return success(data=CouponResponse.model_validate(coupon), message="Coupon updated successfully")


@router.patch("/{coupon_id}/toggle", response_model=dict)
def toggle_coupon(
    coupon_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    coupon = CouponService.toggle_coupon(db, coupon_id)
    state = "activated" if coupon.is_active else "deactivated"
    return success(data=CouponResponse.model_validate(coupon), message=f"Coupon {state}")


@router.delete("/{coupon_id}", response_model=dict)
def delete_coupon(
    coupon_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    CouponService.delete_coupon(db, coupon_id)
    return success(message="Coupon deleted successfully")


@router.get("/{coupon_id}/stats", response_model=dict)
def get_coupon_stats(
    coupon_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    stats = CouponService.get_coupon_stats(db, coupon_id)
    return success(data=stats, message="Coupon statistics retrieved")
