from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import OrderNotFound
from app.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from app.schemas.order import OrderResponse, OrderSummaryResponse


class OrderService:

    @staticmethod
    def get_order(db: Session, order_id: str, for_update: bool = False) -> Order:
        query = db.query(Order).filter(Order.id == order_id)
        if for_update:
            query = query.with_for_update()
        order = query.first()
        if not order:
            raise OrderNotFound()
        return order

    @staticmethod
    def get_user_order(db: Session, user_id: str, order_id: str, for_update: bool = False) -> Order:
        """Order owned by ``user_id``; other users' orders are reported as missing."""
        query = db.query(Order).filter(Order.id == order_id, Order.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        order = query.first()
        if not order:
            raise OrderNotFound()
        return order

    @staticmethod
    def list_user_orders(db: Session, user_id: str) -> List[Order]:
        return (
            db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .all()
        )

    @staticmethod
    def list_orders(
        db: Session,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        query = db.query(Order)
        if status:
            query = query.filter(Order.status == status)
        if payment_status:
            query = query.filter(Order.payment_status == payment_status)

        total = query.count()
        orders = (
            query.options(selectinload(Order.items))
            .order_by(Order.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return orders, total

    @staticmethod
    def dashboard_stats(db: Session) -> dict:
        total_orders = db.query(func.count(Order.id)).scalar() or 0
        revenue = (
            db.query(func.coalesce(func.sum(Order.total), 0))
            .filter(Order.payment_status == PaymentStatus.PAID)
            .scalar()
        )
        awaiting_verification = (
            db.query(func.count(Order.id))
            .filter(Order.payment_status == PaymentStatus.AWAITING_VERIFICATION)
            .scalar()
        ) or 0

        by_status = {status.value: 0 for status in OrderStatus}
        for status, count in db.query(Order.status, func.count(Order.id)).group_by(Order.status).all():
            by_status[status.value] = count

        top_products = (
            db.query(OrderItem.product_name, func.sum(OrderItem.quantity).label("total_sold"))
            .join(Order, Order.id == OrderItem.order_id)
            .filter(Order.status != OrderStatus.CANCELLED)
            .group_by(OrderItem.product_name)
            .order_by(func.sum(OrderItem.quantity).desc())
            .limit(5)
            .all()
        )

        return {
            "total_orders": total_orders,
            "total_revenue": Decimal(str(revenue)).quantize(Decimal("0.01")),
            "pending_orders": by_status[OrderStatus.PENDING.value] + by_status[OrderStatus.PLACED.value],
            "awaiting_payment_verification": awaiting_verification,
            "orders_by_status": by_status,
            "top_products": [{"name": name, "sold": int(sold)} for name, sold in top_products],
        }

    @staticmethod
    def to_response(order: Order) -> OrderResponse:
        return OrderResponse.model_validate(order)

    @staticmethod
    def to_summary(order: Order) -> OrderSummaryResponse:
        return OrderSummaryResponse(
            id=order.id,
            user_id=order.user_id,
            status=order.status,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            total=order.total,
            items_count=sum(item.quantity for item in order.items),
            created_at=order.created_at,
        )
