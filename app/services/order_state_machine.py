"""
Order settlement state machine.

``status`` and ``payment_status`` only change through the functions below.
Every change appends to the order's timeline, and every change made by an
admin or a customer is written to ``order_audit_logs``. Functions flush but
never commit; routes commit once per request.
"""
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from app.core.exceptions import IllegalTransition, OrderNotFound, PaymentNotAwaitingVerification
from app.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from app.models.order_audit_log import OrderAuditLog
from app.models.order_timeline import OrderTimelineEntry

logger = structlog.get_logger()

FULFILMENT_CHAIN: Tuple[OrderStatus, ...] = (
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

CANCELLABLE: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PENDING, OrderStatus.PLACED, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}
)

TERMINAL: FrozenSet[OrderStatus] = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


def _build_transitions() -> Dict[OrderStatus, FrozenSet[OrderStatus]]:
    table = {
        OrderStatus.PENDING: {OrderStatus.PLACED, OrderStatus.CANCELLED},
        OrderStatus.DELIVERED: set(),
        OrderStatus.CANCELLED: set(),
    }
    # Forward moves along the chain may skip states
    for index, state in enumerate(FULFILMENT_CHAIN[:-1]):
        table[state] = set(FULFILMENT_CHAIN[index + 1:])
    for state in CANCELLABLE:
        table[state].add(OrderStatus.CANCELLED)
    return {state: frozenset(targets) for state, targets in table.items()}


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = _build_transitions()

STATUS_MESSAGES = {
    OrderStatus.PENDING: "Order is pending",
    OrderStatus.PLACED: "Order placed successfully",
    OrderStatus.CONFIRMED: "Order confirmed",
    OrderStatus.PROCESSING: "Order is being processed",
    OrderStatus.SHIPPED: "Order has been shipped",
    OrderStatus.DELIVERED: "Order delivered successfully",
    OrderStatus.CANCELLED: "Order cancelled",
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def skipped_states(current: OrderStatus, target: OrderStatus) -> List[OrderStatus]:
    """Intermediate fulfilment states jumped over by a forward move."""
    if current not in FULFILMENT_CHAIN or target not in FULFILMENT_CHAIN:
        return []
    start = FULFILMENT_CHAIN.index(current)
    end = FULFILMENT_CHAIN.index(target)
    return list(FULFILMENT_CHAIN[start + 1:end])


def initial_state(payment_method: PaymentMethod) -> Tuple[OrderStatus, PaymentStatus]:
    if payment_method == PaymentMethod.UPI:
        return OrderStatus.PLACED, PaymentStatus.AWAITING_VERIFICATION
    return OrderStatus.PLACED, PaymentStatus.PENDING


def add_timeline_entry(
    order: Order,
    status: str,
    message: str,
    changed_by: Optional[str] = None,
    completed: bool = True,
) -> OrderTimelineEntry:
    entry = OrderTimelineEntry(
        status=status,
        message=message,
        completed=completed,
        changed_by=changed_by,
    )
    order.timeline.append(entry)
    return entry


def record_audit(
    db: Session,
    order: Order,
    action: str,
    actor_id: Optional[str],
    actor_role: str,
    from_value: Optional[str] = None,
    to_value: Optional[str] = None,
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
    details: Optional[dict] = None,
) -> OrderAuditLog:
    audit = OrderAuditLog(
        order_id=order.id,
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        from_value=from_value,
        to_value=to_value,
        notes=notes,
        details=details,
        ip_address=ip_address,
        correlation_id=structlog.contextvars.get_contextvars().get("correlation_id"),
    )
    db.add(audit)
    return audit


def start_order(order: Order) -> None:
    """Set the creation states for a new order and open its timeline."""
    order.status, order.payment_status = initial_state(order.payment_method)
    add_timeline_entry(order, order.status.value, STATUS_MESSAGES[order.status])


def _settle_cod_on_delivery(order: Order) -> bool:
    if order.payment_method == PaymentMethod.COD and order.payment_status == PaymentStatus.PENDING:
        order.payment_status = PaymentStatus.PAID
        order.paid_at = datetime.utcnow()
        return True
    return False


def _void_unverified_payment(order: Order) -> bool:
    # A cancelled order can no longer be paid, so its pending UPI attestation is closed
    if order.payment_status == PaymentStatus.AWAITING_VERIFICATION:
        order.payment_status = PaymentStatus.FAILED
        return True
    return False


def transition_status(
    db: Session,
    order: Order,
    target: OrderStatus,
    actor_id: Optional[str],
    actor_role: str = "admin",
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Order:
    current = order.status
    if not can_transition(current, target):
        raise IllegalTransition(current=current.value, target=target.value)

    for skipped in skipped_states(current, target):
        add_timeline_entry(
            order,
            skipped.value,
            STATUS_MESSAGES[skipped],
            changed_by=actor_id,
            completed=False,
        )

    order.status = target
    add_timeline_entry(
        order,
        target.value,
        notes or STATUS_MESSAGES[target],
        changed_by=actor_id,
    )

    settled = target == OrderStatus.DELIVERED and _settle_cod_on_delivery(order)
    voided = target == OrderStatus.CANCELLED and _void_unverified_payment(order)

    details = {}
    if settled:
        details["cod_settled"] = True
    if voided:
        details["payment_voided"] = True

    record_audit(
        db,
        order,
        action="STATUS_CHANGED",
        actor_id=actor_id,
        actor_role=actor_role,
        from_value=current.value,
        to_value=target.value,
        notes=notes,
        ip_address=ip_address,
        details=details or None,
    )
    db.flush()

    logger.info(
        "order_status_changed",
        order_id=order.id,
        from_status=current.value,
        to_status=target.value,
        actor_id=actor_id,
        actor_role=actor_role,
    )
    return order


def verify_payment(
    db: Session,
    order: Order,
    approve: bool,
    admin_id: str,
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Order:
    """Admin attestation of a manual (UPI) payment."""
    if order.payment_status != PaymentStatus.AWAITING_VERIFICATION:
        raise PaymentNotAwaitingVerification(payment_status=order.payment_status.value)

    previous_payment = order.payment_status
    previous_status = order.status

    if approve:
        order.payment_status = PaymentStatus.PAID
        order.paid_at = datetime.utcnow()
        if order.status == OrderStatus.PLACED:
            order.status = OrderStatus.CONFIRMED
        add_timeline_entry(
            order,
            order.status.value,
            "Payment verified and order confirmed",
            changed_by=admin_id,
        )
    else:
        if not can_transition(order.status, OrderStatus.CANCELLED):
            raise IllegalTransition(current=order.status.value, target=OrderStatus.CANCELLED.value)
        order.payment_status = PaymentStatus.FAILED
        order.status = OrderStatus.CANCELLED
        add_timeline_entry(
            order,
            OrderStatus.CANCELLED.value,
            "Payment verification failed - Order cancelled",
            changed_by=admin_id,
        )

    if notes:
        order.admin_notes = notes

    record_audit(
        db,
        order,
        action="PAYMENT_APPROVED" if approve else "PAYMENT_REJECTED",
        actor_id=admin_id,
        actor_role="admin",
        from_value=previous_payment.value,
        to_value=order.payment_status.value,
        notes=notes,
        ip_address=ip_address,
        details={
            "status_from": previous_status.value,
            "status_to": order.status.value,
            "transaction_id": order.transaction_id,
        },
    )
    db.flush()

    logger.info(
        "payment_verified",
        order_id=order.id,
        approved=approve,
        admin_id=admin_id,
        payment_status=order.payment_status.value,
        status=order.status.value,
    )
    return order


def cancel_by_customer(
    db: Session,
    order: Order,
    user_id: str,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Order:
    if order.user_id != user_id:
        # Other customers' orders are reported as missing
        raise OrderNotFound()

    return transition_status(
        db,
        order,
        OrderStatus.CANCELLED,
        actor_id=user_id,
        actor_role="customer",
        notes=reason or "Cancelled by customer",
        ip_address=ip_address,
    )


def submit_payment_reference(
    db: Session,
    order: Order,
    user_id: str,
    transaction_id: str,
    ip_address: Optional[str] = None,
) -> Order:
    """Attach the customer's UPI transaction reference for admin verification."""
    if order.user_id != user_id:
        raise OrderNotFound()
    if order.payment_method != PaymentMethod.UPI or order.payment_status != PaymentStatus.AWAITING_VERIFICATION:
        raise PaymentNotAwaitingVerification(payment_status=order.payment_status.value)

    previous = order.transaction_id
    order.transaction_id = transaction_id
    add_timeline_entry(
        order,
        PaymentStatus.AWAITING_VERIFICATION.value,
        f"Payment marked as paid - Transaction ID: {transaction_id}",
        changed_by=user_id,
    )
    record_audit(
        db,
        order,
        action="PAYMENT_REFERENCE_SUBMITTED",
        actor_id=user_id,
        actor_role="customer",
        from_value=previous,
        to_value=transaction_id,
        ip_address=ip_address,
    )
    db.flush()

    logger.info("payment_reference_submitted", order_id=order.id, user_id=user_id)
    return order
