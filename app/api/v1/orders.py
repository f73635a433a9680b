from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_real_client_ip
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.schemas.order import (
    OrderCancelRequest,
    OrderCreate,
    PaymentReferenceRequest,
    TimelineEntryResponse,
)
from app.schemas.user import CurrentUser
from app.services import order_state_machine
from app.services.checkout_service import place_order
from app.services.order_service import OrderService
from app.utils.response import success

router = APIRouter()


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Place order",
    description="""
Places an order from the authenticated user's cart.

Process:
1. Returns the existing order when the idempotency key was already used
2. Re-prices every cart line from the catalog
3. Re-validates the coupon and locks it for the transaction
4. Computes shipping and GST server-side
5. Creates the order, its items and first timeline entry
6. Records the coupon redemption atomically and clears the cart
""",
    responses={
        201: {"description": "Order placed"},
        200: {"description": "Order already exists for this idempotency key"},
        400: {"description": "Cart empty, product unavailable or coupon rejected"},
        401: {"description": "Authentication required"},
        409: {"description": "Coupon was used up by a concurrent order"},
        503: {"description": "Database temporarily unavailable"},
    },
    tags=["Orders"],
)
@limiter.limit("10/minute")
def create_order(
    request: Request,
    order_data: OrderCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order, created = place_order(db, current_user.id, order_data)
    data = OrderService.to_response(order)

    if not created:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=success(data=data, message="Order already exists"),
        )

    message = "Order placed successfully"
    if order.payment_method.value == "cod":
        message = "Order placed successfully. Pay on delivery."
    return success(data=data, message=message)


@router.get("", response_model=dict)
@limiter.limit("30/minute")
def get_user_orders(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get user's order history"""
    orders = OrderService.list_user_orders(db, current_user.id)
    return success(data=[OrderService.to_summary(order) for order in orders], message="Orders retrieved")


@router.get("/{order_id}", response_model=dict)
@limiter.limit("30/minute")
def get_order_detail(
    request: Request,
    order_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = OrderService.get_user_order(db, current_user.id, order_id)
    return success(data=OrderService.to_response(order), message="Order detail retrieved")


@router.get("/{order_id}/timeline", response_model=dict)
@limiter.limit("30/minute")
def get_order_timeline(
    request: Request,
    order_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = OrderService.get_user_order(db, current_user.id, order_id)
    return success(
        data={
            "order_id": order.id,
            "current_status": order.status.value,
            "payment_status": order.payment_status.value,
            "timeline": [TimelineEntryResponse.model_validate(entry) for entry in order.timeline],
        },
        message="Order timeline retrieved",
    )


@router.put("/{order_id}/cancel", response_model=dict)
@limiter.limit("10/minute")
def cancel_order(
    request: Request,
    order_id: str,
    payload: OrderCancelRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = OrderService.get_user_order(db, current_user.id, order_id, for_update=True)
    client_ip, _ = get_real_client_ip(request)

    order_state_machine.cancel_by_customer(
        db,
        order,
        user_id=current_user.id,
        reason=payload.reason,
        ip_address=client_ip,
    )
    db.commit()
    db.refresh(order)

    return success(data=OrderService.to_response(order), message="Order cancelled successfully")


@router.put("/{order_id}/payment-reference", response_model=dict)
@limiter.limit("10/minute")
def submit_payment_reference(
    request: Request,
    order_id: str,
    payload: PaymentReferenceRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Attach the UPI transaction reference so an admin can verify the payment"""
    order = OrderService.get_user_order(db, current_user.id, order_id, for_update=True)
    client_ip, _ = get_real_client_ip(request)

    order_state_machine.submit_payment_reference(
        db,
        order,
        user_id=current_user.id,
        transaction_id=payload.transaction_id,
        ip_address=client_ip,
    )
    db.commit()
    db.refresh(order)

    return success(
        data=OrderService.to_response(order),
        message="Payment reference submitted. Awaiting admin verification.",
    )
