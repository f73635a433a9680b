from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.base_class import Base


class CouponRedemption(Base):
    """Per user/coupon counter, guarded by conditional updates."""
    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        UniqueConstraint("user_id", "coupon_id", name="uq_coupon_redemptions_user_coupon"),
        CheckConstraint("times_used >= 0", name="ck_coupon_redemptions_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)

    times_used = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    coupon = relationship("Coupon", back_populates="redemptions")
