from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from app.core.exceptions import ErrorCode, IllegalTransition, OrderNotFound, PaymentNotAwaitingVerification
from app.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus, ShippingMethod
from app.models.order_audit_log import OrderAuditLog
from app.services import order_state_machine
from app.services.order_state_machine import ALLOWED_TRANSITIONS, initial_state

ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "address_line2": None,
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
    "country": "India",
}


def _create_order(
    db: Session,
    payment_method: PaymentMethod = PaymentMethod.UPI,
    user_id: str = "user-1",
    order_id: str = "ORD-1700000000000-ABC1234",
) -> Order:
    order = Order(
        id=order_id,
        user_id=user_id,
        subtotal=Decimal("1000.00"),
        discount=Decimal("0.00"),
        shipping=Decimal("0.00"),
        tax=Decimal("180.00"),
        total=Decimal("1180.00"),
        payment_method=payment_method,
        shipping_method=ShippingMethod.STANDARD,
        shipping_address=ADDRESS,
    )
    order_state_machine.start_order(order)
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def test_initial_state_depends_on_payment_method():
    assert initial_state(PaymentMethod.UPI) == (OrderStatus.PLACED, PaymentStatus.AWAITING_VERIFICATION)
    assert initial_state(PaymentMethod.COD) == (OrderStatus.PLACED, PaymentStatus.PENDING)


def test_new_order_opens_its_timeline(db_session: Session):
    order = _create_order(db_session, PaymentMethod.COD)

    assert order.status == OrderStatus.PLACED
    assert order.payment_status == PaymentStatus.PENDING
    assert [entry.status for entry in order.timeline] == ["placed"]
    assert order.timeline[0].completed is True


def test_terminal_states_have_no_exits():
    assert ALLOWED_TRANSITIONS[OrderStatus.DELIVERED] == frozenset()
    assert ALLOWED_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()


def test_pending_can_only_be_placed_or_cancelled():
    assert ALLOWED_TRANSITIONS[OrderStatus.PENDING] == {OrderStatus.PLACED, OrderStatus.CANCELLED}


@pytest.mark.parametrize("target", list(OrderStatus))
def test_delivered_order_cannot_move(db_session: Session, target: OrderStatus):
    order = _create_order(db_session, PaymentMethod.COD)
    order_state_machine.transition_status(db_session, order, OrderStatus.DELIVERED, actor_id="admin-1")
    db_session.commit()

    with pytest.raises(IllegalTransition) as exc_info:
        order_state_machine.transition_status(db_session, order, target, actor_id="admin-1")

    assert exc_info.value.code == ErrorCode.ILLEGAL_TRANSITION
    assert exc_info.value.status_code == 409


def test_forward_skip_records_skipped_states_as_incomplete(db_session: Session):
    order = _create_order(db_session, PaymentMethod.COD)

    order_state_machine.transition_status(db_session, order, OrderStatus.SHIPPED, actor_id="admin-1")
    db_session.commit()
    db_session.refresh(order)

    assert order.status == OrderStatus.SHIPPED
    steps = [(entry.status, entry.completed) for entry in order.timeline]
    assert steps == [
        ("placed", True),
        ("confirmed", False),
        ("processing", False),
        ("shipped", True),
    ]


def test_backward_move_is_illegal(db_session: Session):
    order = _create_order(db_session, PaymentMethod.COD)
    order_state_machine.transition_status(db_session, order, OrderStatus.SHIPPED, actor_id="admin-1")

    with pytest.raises(IllegalTransition):
        order_state_machine.transition_status(db_session, order, OrderStatus.PROCESSING, actor_id="admin-1")


def test_shipped_order_cannot_be_cancelled(db_session: Session):
    order = _create_order(db_session, PaymentMethod.COD)
    order_state_machine.transition_status(db_session, order, OrderStatus.SHIPPED, actor_id="admin-1")

    with pytest.raises(IllegalTransition):
        order_state_machine.transition_status(db_session, order, OrderStatus.CANCELLED, actor_id="admin-1")


def test_pending_order_can_be_placed(db_session: Session):
    order = _create_order(db_session, PaymentMethod.COD)
    order.status = OrderStatus.PENDING
    db_session.commit()

    order_state_machine.transition_status(db_session, order, OrderStatus.PLACED, actor_id="system")

    assert order.status == OrderStatus.PLACED


def test_cod_order_becomes_paid_on_delivery(db_session: Session):
    order = _create_order(db_session, PaymentMethod.COD)

    order_state_machine.transition_status(db_session, order, OrderStatus.DELIVERED, actor_id="admin-1")
    db_session.commit()

    assert order.payment_status == PaymentStatus.PAID
    assert order.paid_at is not None


def test_status_change_is_audited(db_session: Session):
    order = _create_order(db_session, PaymentMethod.COD)

    order_state_machine.transition_status(
        db_session,
        order,
        OrderStatus.CONFIRMED,
        actor_id="admin-1",
        notes="Called customer",
        ip_address="10.0.0.5",
    )
    db_session.commit()

    audit = db_session.query(OrderAuditLog).filter_by(order_id=order.id).one()
    assert audit.action == "STATUS_CHANGED"
    assert audit.actor_id == "admin-1"
    assert (audit.from_value, audit.to_value) == ("placed", "confirmed")
    assert audit.ip_address == "10.0.0.5"


def test_rejecting_upi_payment_fails_and_cancels_together(db_session: Session):
    order = _create_order(db_session, PaymentMethod.UPI)

    order_state_machine.verify_payment(db_session, order, approve=False, admin_id="admin-1", notes="No credit")
    db_session.commit()
    db_session.refresh(order)

    assert order.payment_status == PaymentStatus.FAILED
    assert order.status == OrderStatus.CANCELLED
    assert order.timeline[-1].message == "Payment verification failed - Order cancelled"
    audit = db_session.query(OrderAuditLog).filter_by(order_id=order.id).one()
    assert audit.action == "PAYMENT_REJECTED"
    assert audit.actor_id == "admin-1"
    assert audit.notes == "No credit"


def test_approving_upi_payment_confirms_the_order(db_session: Session):
    order = _create_order(db_session, PaymentMethod.UPI)

    order_state_machine.verify_payment(db_session, order, approve=True, admin_id="admin-1")
    db_session.commit()

    assert order.payment_status == PaymentStatus.PAID
    assert order.status == OrderStatus.CONFIRMED
    assert order.paid_at is not None


def test_payment_can_only_be_verified_once(db_session: Session):
    order = _create_order(db_session, PaymentMethod.UPI)
    order_state_machine.verify_payment(db_session, order, approve=True, admin_id="admin-1")

    with pytest.raises(PaymentNotAwaitingVerification):
        order_state_machine.verify_payment(db_session, order, approve=False, admin_id="admin-1")


def test_cod_payment_is_never_awaiting_verification(db_session: Session):
    order = _create_order(db_session, PaymentMethod.COD)

    with pytest.raises(PaymentNotAwaitingVerification) as exc_info:
        order_state_machine.verify_payment(db_session, order, approve=True, admin_id="admin-1")

    assert exc_info.value.code == ErrorCode.PAYMENT_NOT_AWAITING_VERIFICATION


def test_customer_cannot_cancel_someone_elses_order(db_session: Session):
    order = _create_order(db_session, PaymentMethod.UPI, user_id="owner")

    with pytest.raises(OrderNotFound):
        order_state_machine.cancel_by_customer(db_session, order, user_id="intruder")

    assert order.status == OrderStatus.PLACED


def test_customer_cancellation_is_recorded(db_session: Session):
    order = _create_order(db_session, PaymentMethod.UPI, user_id="owner")

    order_state_machine.cancel_by_customer(db_session, order, user_id="owner", reason="Ordered wrong size")
    db_session.commit()

    assert order.status == OrderStatus.CANCELLED
    audit = db_session.query(OrderAuditLog).filter_by(order_id=order.id).one()
    assert audit.actor_role == "customer"
    assert audit.notes == "Ordered wrong size"


def test_payment_reference_is_attached_while_awaiting_verification(db_session: Session):
    order = _create_order(db_session, PaymentMethod.UPI, user_id="owner")

    order_state_machine.submit_payment_reference(db_session, order, user_id="owner", transaction_id="UPI123456789")
    db_session.commit()

    assert order.transaction_id == "UPI123456789"
    assert order.payment_status == PaymentStatus.AWAITING_VERIFICATION
    assert order.timeline[-1].message == "Payment marked as paid - Transaction ID: UPI123456789"


def test_cancelled_upi_order_cannot_be_paid(db_session: Session):
    order = _create_order(db_session, PaymentMethod.UPI, user_id="owner")
    order_state_machine.cancel_by_customer(db_session, order, user_id="owner")
    db_session.commit()

    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.FAILED

    with pytest.raises(PaymentNotAwaitingVerification):
        order_state_machine.verify_payment(db_session, order, approve=True, admin_id="admin-1")

    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.FAILED
    assert order.paid_at is None
    audit = db_session.query(OrderAuditLog).filter_by(order_id=order.id).one()
    assert audit.details == {"payment_voided": True}


def test_cancelling_cod_order_leaves_payment_pending(db_session: Session):
    order = _create_order(db_session, PaymentMethod.COD)

    order_state_machine.transition_status(db_session, order, OrderStatus.CANCELLED, actor_id="admin-1")

    assert order.payment_status == PaymentStatus.PENDING
