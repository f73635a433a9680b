"""
Atomic coupon redemption accounting.

Both counters are moved with a single conditional UPDATE (compare-and-swap on
the row); an UPDATE that matches no row means a concurrent order took the last
slot and the redemption fails with ``RedemptionConflict``. Nothing here
commits: the caller owns the transaction, so a conflict aborts the whole
order placement.
"""
from decimal import Decimal

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import RedemptionConflict
from app.models.coupon import Coupon
from app.models.coupon_redemption import CouponRedemption
from app.models.coupon_usage import CouponUsage

logger = structlog.get_logger()


def _claim_global_use(db: Session, coupon_id: int) -> bool:
    result = db.execute(
        update(Coupon)
        .where(
            and_(
                Coupon.id == coupon_id,
                or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
            )
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _increment_user_counter(db: Session, coupon_id: int, user_id: str, max_per_user: int) -> bool:
    result = db.execute(
        update(CouponRedemption)
        .where(
            and_(
                CouponRedemption.coupon_id == coupon_id,
                CouponRedemption.user_id == user_id,
                CouponRedemption.times_used < max_per_user,
            )
        )
        .values(times_used=CouponRedemption.times_used + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _claim_user_use(db: Session, coupon_id: int, user_id: str, max_per_user: int) -> bool:
    if _increment_user_counter(db, coupon_id, user_id, max_per_user):
        return True

    existing = db.execute(
        select(CouponRedemption.id).where(
            CouponRedemption.coupon_id == coupon_id,
            CouponRedemption.user_id == user_id,
        )
    ).first()
    if existing is not None:
        return False

    # First redemption by this user; a concurrent first use loses on the unique constraint
    try:
        with db.begin_nested():
            db.add(CouponRedemption(coupon_id=coupon_id, user_id=user_id, times_used=1))
        return True
    except IntegrityError:
        return _increment_user_counter(db, coupon_id, user_id, max_per_user)


def commit_redemption(
    db: Session,
    coupon_id: int,
    user_id: str,
    order_id: str,
    discount_amount: Decimal,
) -> CouponUsage:
    """Record one redemption of ``coupon_id`` by ``user_id`` for ``order_id``.

    Raises ``RedemptionConflict`` when either the global or the per-user cap
    was exhausted between evaluation and commit.
    """
    max_per_user = db.execute(
        select(Coupon.max_uses_per_user).where(Coupon.id == coupon_id)
    ).scalar_one_or_none()

    if max_per_user is None or not _claim_global_use(db, coupon_id):
        logger.warning(
            "coupon_redemption_conflict",
            coupon_id=coupon_id,
            user_id=user_id,
            order_id=order_id,
            scope="global",
        )
        raise RedemptionConflict(coupon_id=coupon_id, scope="global")

    if not _claim_user_use(db, coupon_id, user_id, max_per_user):
        logger.warning(
            "coupon_redemption_conflict",
            coupon_id=coupon_id,
            user_id=user_id,
            order_id=order_id,
            scope="per_user",
        )
        raise RedemptionConflict(coupon_id=coupon_id, scope="per_user")

    usage = CouponUsage(
        coupon_id=coupon_id,
        user_id=user_id,
        order_id=order_id,
        discount_amount=discount_amount,
    )
    db.add(usage)
    db.flush()

    logger.info(
        "coupon_redeemed",
        coupon_id=coupon_id,
        user_id=user_id,
        order_id=order_id,
        discount_amount=str(discount_amount),
    )
    return usage
