from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from app.core.exceptions import CouponNotFound, DomainError, ErrorCode
from app.models.coupon import Coupon, DiscountType
from app.models.coupon_redemption import CouponRedemption
from app.models.coupon_usage import CouponUsage
from app.schemas.coupon import (
    CouponCreate,
    CouponEvaluation,
    CouponListFilters,
    CouponStats,
    CouponStatsResponse,
    CouponResponse,
    CouponUpdate,
    CouponUsageEntry,
)
from app.services.discount_engine import evaluate, to_money

logger = structlog.get_logger()


class CouponService:

    @staticmethod
    def get_by_code(db: Session, code: str) -> Optional[Coupon]:
        # Codes are stored upper-case, lookups are case-insensitive
        return db.query(Coupon).filter(Coupon.code == code.strip().upper()).first()

    @staticmethod
    def preview_coupon(db: Session, user_id: str, code: str, order_total: Decimal) -> CouponEvaluation:
        """Evaluate a code against a cart total without touching usage counters."""
        coupon = CouponService.get_by_code(db, code)
        user_count = 0
        if coupon:
            user_count = (
                db.query(CouponRedemption.times_used)
                .filter(
                    CouponRedemption.coupon_id == coupon.id,
                    CouponRedemption.user_id == user_id,
                )
                .scalar()
            ) or 0
        return evaluate(coupon, order_total, user_count)

    @staticmethod
    def list_available_coupons(db: Session, order_total: Decimal) -> List[Coupon]:
        """Currently valid coupons whose minimum the given total already meets."""
        now = datetime.utcnow()
        return (
            db.query(Coupon)
            .filter(
                Coupon.is_active.is_(True),
                Coupon.start_date <= now,
                Coupon.end_date >= now,
                Coupon.min_order_value <= order_total,
                or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
            )
            .order_by(Coupon.discount_value.desc())
            .all()
        )

    @staticmethod
    def get_coupon(db: Session, coupon_id: int) -> Coupon:
        coupon = db.get(Coupon, coupon_id)
        if not coupon:
            raise CouponNotFound()
        return coupon

    @staticmethod
    def list_coupons(db: Session, filters: CouponListFilters) -> Tuple[List[Coupon], int]:
        query = db.query(Coupon)
        now = datetime.utcnow()

        if filters.status == "active":
            query = query.filter(
                and_(Coupon.is_active.is_(True), Coupon.start_date <= now, Coupon.end_date >= now)
            )
        elif filters.status == "inactive":
            query = query.filter(Coupon.is_active.is_(False))
        elif filters.status == "expired":
            query = query.filter(Coupon.end_date < now)

        if filters.search:
            query = query.filter(Coupon.code.ilike(f"%{filters.search.strip()}%"))

        total = query.count()
        coupons = (
            query.order_by(Coupon.created_at.desc(), Coupon.id.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
            .all()
        )
        return coupons, total

    @staticmethod
    def create_coupon(db: Session, coupon_data: CouponCreate) -> Coupon:
        if CouponService.get_by_code(db, coupon_data.code):
            raise DomainError(
                ErrorCode.COUPON_CODE_EXISTS,
                "Coupon code already exists",
                status_code=409,
                coupon_code=coupon_data.code,
            )

        coupon = Coupon(**coupon_data.model_dump(), used_count=0)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)

        logger.info("coupon_created", coupon_id=coupon.id, code=coupon.code)
        return coupon

    @staticmethod
    def update_coupon(db: Session, coupon_id: int, coupon_data: CouponUpdate) -> Coupon:
        coupon = CouponService.get_coupon(db, coupon_id)

        for key, value in coupon_data.model_dump(exclude_unset=True).items():
            setattr(coupon, key, value)

        if coupon.discount_type == DiscountType.PERCENTAGE and coupon.discount_value > 100:
            db.rollback()
            raise DomainError(ErrorCode.INVALID_COUPON, "Percentage discount cannot exceed 100%")
        if coupon.end_date <= coupon.start_date:
            db.rollback()
            raise DomainError(ErrorCode.INVALID_COUPON, "End date must be after start date")

        db.commit()
        db.refresh(coupon)

        logger.info("coupon_updated", coupon_id=coupon.id, fields=sorted(coupon_data.model_fields_set))
        return coupon

    @staticmethod
    def toggle_coupon(db: Session, coupon_id: int) -> Coupon:
        coupon = CouponService.get_coupon(db, coupon_id)
        coupon.is_active = not coupon.is_active
        db.commit()
        db.refresh(coupon)

        logger.info("coupon_toggled", coupon_id=coupon.id, is_active=coupon.is_active)
        return coupon

    @staticmethod
    def delete_coupon(db: Session, coupon_id: int) -> None:
        """Delete a coupon that has never been redeemed."""
        coupon = CouponService.get_coupon(db, coupon_id)
        if coupon.used_count > 0:
            raise DomainError(
                ErrorCode.COUPON_IN_USE,
                "Cannot delete a coupon that has been used. Deactivate it instead.",
                status_code=409,
                used_count=coupon.used_count,
            )

        db.query(CouponRedemption).filter(CouponRedemption.coupon_id == coupon.id).delete()
        db.delete(coupon)
        db.commit()

        logger.info("coupon_deleted", coupon_id=coupon_id)

    @staticmethod
    def get_coupon_stats(db: Session, coupon_id: int) -> CouponStatsResponse:
        coupon = CouponService.get_coupon(db, coupon_id)

        total_usage, total_discount, unique_users = (
            db.query(
                func.count(CouponUsage.id),
                func.coalesce(func.sum(CouponUsage.discount_amount), 0),
                func.count(func.distinct(CouponUsage.user_id)),
            )
            .filter(CouponUsage.coupon_id == coupon.id)
            .one()
        )

        recent = (
            db.query(CouponUsage)
            .filter(CouponUsage.coupon_id == coupon.id)
            .order_by(CouponUsage.used_at.desc(), CouponUsage.id.desc())
            .limit(10)
            .all()
        )

        remaining_uses = None
        usage_percentage = None
        if coupon.max_uses:
            remaining_uses = max(0, coupon.max_uses - total_usage)
            usage_percentage = round(total_usage / coupon.max_uses * 100, 2)

        return CouponStatsResponse(
            coupon=CouponResponse.model_validate(coupon),
            stats=CouponStats(
                total_usage=total_usage,
                total_discount_given=to_money(total_discount),
                unique_users=unique_users,
                remaining_uses=remaining_uses,
                usage_percentage=usage_percentage,
            ),
            recent_usage=[CouponUsageEntry.model_validate(usage) for usage in recent],
        )
