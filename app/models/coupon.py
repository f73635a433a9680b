from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Enum, Text, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("discount_value > 0", name="ck_coupons_positive_value"),
        CheckConstraint(
            "discount_type != 'PERCENTAGE' OR discount_value <= 100",
            name="ck_coupons_percentage_range",
        ),
        CheckConstraint("end_date > start_date", name="ck_coupons_valid_dates"),
        CheckConstraint("max_uses_per_user > 0", name="ck_coupons_per_user_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, nullable=False, index=True)  # Always stored upper-case
    description = Column(Text, nullable=True)

    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False)  # Percentage (0-100] or fixed amount

    min_order_value = Column(Numeric(10, 2), default=0, nullable=False)
    max_discount = Column(Numeric(10, 2), nullable=True)  # Cap for percentage type only

    max_uses = Column(Integer, nullable=True)  # Global limit, NULL = unlimited
    used_count = Column(Integer, default=0, nullable=False)

    max_uses_per_user = Column(Integer, default=1, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    usages = relationship("CouponUsage", back_populates="coupon")
    redemptions = relationship("CouponRedemption", back_populates="coupon")
