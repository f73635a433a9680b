from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.api.deps import get_real_client_ip, require_admin
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.order import OrderStatus, PaymentStatus
from app.schemas.order import AuditLogResponse, OrderStatusUpdate, PaymentVerificationRequest
from app.schemas.user import CurrentUser
from app.services import order_state_machine
from app.services.order_service import OrderService
from app.utils.response import paginated_response, success

router = APIRouter()


# ============= ORDER MANAGEMENT =============

@router.get("/orders")
@limiter.limit("60/minute")
def get_all_orders(
    request: Request,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Get all orders"""
    orders, total = OrderService.list_orders(
        db,
        status=order_status,
        payment_status=payment_status,
        page=page,
        limit=limit,
    )
    return paginated_response(
        items=[OrderService.to_summary(order) for order in orders],
        total=total,
        page=page,
        limit=limit,
        message="Orders retrieved successfully",
    )


@router.get("/orders/{order_id}")
@limiter.limit("60/minute")
def get_order_detail_admin(
    request: Request,
    order_id: str,
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    order = OrderService.get_order(db, order_id)
    data = OrderService.to_response(order).model_dump()
    data["admin_notes"] = order.admin_notes
    return success(data=data, message="Order details retrieved successfully")


@router.put(
    "/orders/{order_id}/status",
    summary="Update order status (admin)",
    description="""
Moves an order along its fulfilment lifecycle.

Behavior:
1. Locks the order row
2. Rejects moves not allowed from the current status (409)
3. Records skipped intermediate states in the timeline as not completed
4. Marks COD orders as paid on delivery
5. Writes an audit log entry in the same transaction
""",
    responses={
        200: {"description": "Order status updated successfully"},
        403: {"description": "Admin access required"},
        404: {"description": "Order not found"},
        409: {"description": "Illegal status transition"},
    },
    tags=["Admin"],
)
@limiter.limit("30/minute")
def update_order_status(
    request: Request,
    order_id: str,
    payload: OrderStatusUpdate,
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    order = OrderService.get_order(db, order_id, for_update=True)
    client_ip, _ = get_real_client_ip(request)

    order_state_machine.transition_status(
        db,
        order,
        payload.status,
        actor_id=current_admin.id,
        actor_role="admin",
        notes=payload.notes,
        ip_address=client_ip,
    )
    if payload.notes:
        order.admin_notes = payload.notes
    db.commit()
    db.refresh(order)

    return success(data=OrderService.to_response(order), message="Order status updated successfully")


@router.put("/orders/{order_id}/payment-verification")
@limiter.limit("30/minute")
def verify_order_payment(
    request: Request,
    order_id: str,
    payload: PaymentVerificationRequest,
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: approve or reject a manual UPI payment"""
    order = OrderService.get_order(db, order_id, for_update=True)
    client_ip, _ = get_real_client_ip(request)

    order_state_machine.verify_payment(
        db,
        order,
        approve=payload.approved,
        admin_id=current_admin.id,
        notes=payload.notes,
        ip_address=client_ip,
    )
    db.commit()
    db.refresh(order)

    if not payload.approved:
        message = "Payment rejected and order cancelled"
    elif order.status == OrderStatus.CONFIRMED:
        message = "Payment verified and order confirmed"
    else:
        message = "Payment verified"
    return success(data=OrderService.to_response(order), message=message)


@router.get("/orders/{order_id}/audit")
@limiter.limit("60/minute")
def get_order_audit_log(
    request: Request,
    order_id: str,
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    order = OrderService.get_order(db, order_id)
    return success(
        data=[AuditLogResponse.model_validate(entry) for entry in order.audit_logs],
        message="Audit log retrieved",
    )


# ============= DASHBOARD =============

@router.get("/dashboard")
@limiter.limit("60/minute")
def get_dashboard(
    request: Request,
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: order and revenue overview"""
    return success(data=OrderService.dashboard_stats(db), message="Dashboard retrieved successfully")
