from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.base_class import Base


class OrderTimelineEntry(Base):
    """Append-only audit trail of an order's status changes."""
    __tablename__ = "order_timeline"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(40), ForeignKey("orders.id"), nullable=False, index=True)

    status = Column(String(50), nullable=False)
    message = Column(Text, nullable=True)
    completed = Column(Boolean, default=True, nullable=False)  # False for states skipped over

    changed_by = Column(String(64), nullable=True)  # Null for system
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    order = relationship("Order", back_populates="timeline")
