from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.base_class import Base


class OrderAuditLog(Base):
    __tablename__ = "order_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(40), ForeignKey("orders.id"), nullable=False, index=True)

    actor_id = Column(String(64), nullable=True, index=True)
    actor_role = Column(String(20), nullable=True)  # admin, customer, system
    action = Column(String(50), nullable=False)  # PAYMENT_APPROVED, PAYMENT_REJECTED, STATUS_CHANGED, ...

    from_value = Column(String(50), nullable=True)
    to_value = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)
    correlation_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    order = relationship("Order", back_populates="audit_logs")
