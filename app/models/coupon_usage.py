from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.base_class import Base


class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    order_id = Column(String(40), ForeignKey("orders.id"), unique=True, nullable=False)

    discount_amount = Column(Numeric(10, 2), nullable=False)
    used_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    coupon = relationship("Coupon", back_populates="usages")
    order = relationship("Order", back_populates="coupon_usage")
