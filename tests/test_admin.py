from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.models.cart import CartItem
from app.models.coupon import Coupon, DiscountType
from app.models.order import Order
from app.models.product import Product, ProductVariant


def _coupon_payload(code: str = "WELCOME15", **overrides) -> dict:
    payload = {
        "code": code,
        "description": "Welcome offer",
        "discount_type": "percentage",
        "discount_value": "15",
        "min_order_value": "999",
        "max_discount": "300",
        "max_uses": 50,
        "max_uses_per_user": 1,
        "start_date": (datetime.utcnow() - timedelta(days=1)).isoformat(),
        "end_date": (datetime.utcnow() + timedelta(days=30)).isoformat(),
    }
    payload.update(overrides)
    return payload


def _place_order(client: TestClient, db: Session, headers: dict, user_id: str, payment_method: str = "upi") -> str:
    product = Product(name="Cargo Pants", slug=f"cargo-{uuid4().hex[:8]}", base_price=Decimal("2000.00"))
    db.add(product)
    db.flush()
    variant = ProductVariant(product_id=product.id, size="32", sku=f"SKU-{uuid4().hex[:10]}")
    db.add(variant)
    db.flush()
    db.add(CartItem(user_id=user_id, product_id=product.id, variant_id=variant.id, quantity=1))
    db.commit()

    response = client.post(
        "/api/v1/orders",
        headers=headers,
        json={
            "payment_method": payment_method,
            "shipping_address": {
                "full_name": "Ravi Kumar",
                "phone": "9123456780",
                "address_line1": "4 Park Street",
                "city": "Kolkata",
                "state": "West Bengal",
                "pincode": "700016",
            },
            "idempotency_key": str(uuid4()),
        },
    )
    assert response.status_code == 201
    return response.json()["data"]["id"]


def test_non_admin_is_forbidden(client: TestClient, auth_headers):
    response = client.get("/api/v1/admin/coupons", headers=auth_headers("shopper-1"))

    assert response.status_code == 403
    assert response.json()["success"] is False


def test_create_coupon_normalizes_code(client: TestClient, auth_headers):
    response = client.post(
        "/api/v1/admin/coupons",
        headers=auth_headers("admin-1", role="admin"),
        json=_coupon_payload(code="welcome15"),
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["code"] == "WELCOME15"
    assert data["used_count"] == 0


def test_duplicate_coupon_code_conflicts(client: TestClient, auth_headers):
    headers = auth_headers("admin-1", role="admin")
    client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload())

    response = client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload())

    assert response.status_code == 409
    assert response.json()["errors"][0]["code"] == "COUPON_CODE_EXISTS"


def test_coupon_rules_are_validated(client: TestClient, auth_headers):
    headers = auth_headers("admin-1", role="admin")

    over_hundred = client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload(discount_value="120"))
    backwards = client.post(
        "/api/v1/admin/coupons",
        headers=headers,
        json=_coupon_payload(end_date=(datetime.utcnow() - timedelta(days=2)).isoformat()),
    )

    assert over_hundred.status_code == 422
    assert backwards.status_code == 422


def test_update_coupon_rejects_percentage_above_hundred(client: TestClient, auth_headers):
    headers = auth_headers("admin-1", role="admin")
    coupon_id = client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload()).json()["data"]["id"]

    response = client.put(f"/api/v1/admin/coupons/{coupon_id}", headers=headers, json={"discount_value": "150"})
    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "INVALID_COUPON"

    response = client.put(f"/api/v1/admin/coupons/{coupon_id}", headers=headers, json={"discount_value": "25"})
    assert response.status_code == 200
    assert Decimal(str(response.json()["data"]["discount_value"])) == Decimal("25")


def test_list_coupons_filters_and_paginates(client: TestClient, auth_headers):
    headers = auth_headers("admin-1", role="admin")
    client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload(code="SUMMER10"))
    client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload(code="SUMMER20"))
    client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload(code="WINTER10", is_active=False))

    active = client.get("/api/v1/admin/coupons?status=active", headers=headers).json()
    assert active["meta"]["total"] == 2

    inactive = client.get("/api/v1/admin/coupons?status=inactive", headers=headers).json()
    assert [coupon["code"] for coupon in inactive["data"]] == ["WINTER10"]

    searched = client.get("/api/v1/admin/coupons?search=summer&limit=1", headers=headers).json()
    assert searched["meta"]["total"] == 2
    assert searched["meta"]["total_pages"] == 2
    assert searched["meta"]["has_next"] is True
    assert len(searched["data"]) == 1


def test_toggle_coupon(client: TestClient, auth_headers):
    headers = auth_headers("admin-1", role="admin")
    coupon_id = client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload()).json()["data"]["id"]

    response = client.patch(f"/api/v1/admin/coupons/{coupon_id}/toggle", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["is_active"] is False
    assert response.json()["message"] == "Coupon deactivated"


def test_delete_unused_coupon(client: TestClient, db_session: Session, auth_headers):
    headers = auth_headers("admin-1", role="admin")
    coupon_id = client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload()).json()["data"]["id"]

    response = client.delete(f"/api/v1/admin/coupons/{coupon_id}", headers=headers)

    assert response.status_code == 200
    assert client.get(f"/api/v1/admin/coupons/{coupon_id}", headers=headers).status_code == 404


def test_used_coupon_cannot_be_deleted_and_reports_stats(client: TestClient, db_session: Session, auth_headers):
    admin = auth_headers("admin-1", role="admin")
    coupon_id = client.post(
        "/api/v1/admin/coupons",
        headers=admin,
        json=_coupon_payload(code="FLAT250", discount_type="fixed", discount_value="250", max_discount=None),
    ).json()["data"]["id"]

    shopper = auth_headers("shopper-1")
    product = Product(name="Denim Jacket", slug="denim-jacket", base_price=Decimal("3000.00"))
    db_session.add(product)
    db_session.flush()
    variant = ProductVariant(product_id=product.id, size="L", sku="SKU-DENIM-L")
    db_session.add(variant)
    db_session.flush()
    db_session.add(CartItem(user_id="shopper-1", product_id=product.id, variant_id=variant.id, quantity=1))
    db_session.commit()
    placed = client.post(
        "/api/v1/orders",
        headers=shopper,
        json={
            "coupon_code": "FLAT250",
            "shipping_address": {
                "full_name": "Meera Nair",
                "phone": "9988776655",
                "address_line1": "22 Marine Drive",
                "city": "Kochi",
                "state": "Kerala",
                "pincode": "682031",
            },
            "idempotency_key": str(uuid4()),
        },
    )
    assert placed.status_code == 201

    response = client.delete(f"/api/v1/admin/coupons/{coupon_id}", headers=admin)
    assert response.status_code == 409
    assert response.json()["errors"][0]["code"] == "COUPON_IN_USE"

    stats = client.get(f"/api/v1/admin/coupons/{coupon_id}/stats", headers=admin).json()["data"]
    assert stats["stats"]["total_usage"] == 1
    assert stats["stats"]["unique_users"] == 1
    assert stats["stats"]["remaining_uses"] == 49
    assert Decimal(str(stats["stats"]["total_discount_given"])) == Decimal("250.00")
    assert stats["recent_usage"][0]["order_id"] == placed.json()["data"]["id"]


def test_illegal_status_transition_conflicts(client: TestClient, db_session: Session, auth_headers):
    admin = auth_headers("admin-1", role="admin")
    order_id = _place_order(client, db_session, auth_headers("shopper-1"), "shopper-1", payment_method="cod")

    delivered = client.put(f"/api/v1/admin/orders/{order_id}/status", headers=admin, json={"status": "delivered"})
    assert delivered.status_code == 200
    data = delivered.json()["data"]
    assert data["payment_status"] == "paid"
    assert [(step["status"], step["completed"]) for step in data["timeline"]] == [
        ("placed", True),
        ("confirmed", False),
        ("processing", False),
        ("shipped", False),
        ("delivered", True),
    ]

    backwards = client.put(f"/api/v1/admin/orders/{order_id}/status", headers=admin, json={"status": "shipped"})
    assert backwards.status_code == 409
    assert backwards.json()["errors"][0]["code"] == "ILLEGAL_TRANSITION"


def test_payment_rejection_cancels_order_and_is_audited(client: TestClient, db_session: Session, auth_headers):
    admin = auth_headers("admin-1", role="admin")
    order_id = _place_order(client, db_session, auth_headers("shopper-1"), "shopper-1")

    response = client.put(
        f"/api/v1/admin/orders/{order_id}/payment-verification",
        headers=admin,
        json={"decision": "reject", "notes": "No matching UPI credit"},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["payment_status"] == "failed"
    assert data["status"] == "cancelled"

    again = client.put(
        f"/api/v1/admin/orders/{order_id}/payment-verification",
        headers=admin,
        json={"decision": "approve"},
    )
    assert again.status_code == 409
    assert again.json()["errors"][0]["code"] == "PAYMENT_NOT_AWAITING_VERIFICATION"

    audit = client.get(f"/api/v1/admin/orders/{order_id}/audit", headers=admin).json()["data"]
    assert [entry["action"] for entry in audit] == ["PAYMENT_REJECTED"]
    assert audit[0]["actor_id"] == "admin-1"
    assert audit[0]["notes"] == "No matching UPI credit"

    detail = client.get(f"/api/v1/admin/orders/{order_id}", headers=admin).json()["data"]
    assert detail["admin_notes"] == "No matching UPI credit"


def test_payment_approval_confirms_order(client: TestClient, db_session: Session, auth_headers):
    admin = auth_headers("admin-1", role="admin")
    order_id = _place_order(client, db_session, auth_headers("shopper-1"), "shopper-1")

    response = client.put(
        f"/api/v1/admin/orders/{order_id}/payment-verification",
        headers=admin,
        json={"decision": "approve"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["payment_status"] == "paid"
    assert response.json()["data"]["status"] == "confirmed"
    assert db_session.get(Order, order_id).paid_at is not None


def test_admin_order_listing_and_dashboard(client: TestClient, db_session: Session, auth_headers):
    admin = auth_headers("admin-1", role="admin")
    upi_order = _place_order(client, db_session, auth_headers("shopper-1"), "shopper-1")
    _place_order(client, db_session, auth_headers("shopper-2"), "shopper-2", payment_method="cod")
    client.put(
        f"/api/v1/admin/orders/{upi_order}/payment-verification",
        headers=admin,
        json={"decision": "approve"},
    )

    awaiting = client.get("/api/v1/admin/orders?payment_status=pending", headers=admin).json()
    assert awaiting["meta"]["total"] == 1

    dashboard = client.get("/api/v1/admin/dashboard", headers=admin).json()["data"]
    assert dashboard["total_orders"] == 2
    assert dashboard["orders_by_status"]["confirmed"] == 1
    assert dashboard["pending_orders"] == 1
    assert dashboard["awaiting_payment_verification"] == 0
    # 2000 + 360 GST on the verified order
    assert Decimal(str(dashboard["total_revenue"])) == Decimal("2360.00")
    assert dashboard["top_products"][0] == {"name": "Cargo Pants", "sold": 2}


def test_health_endpoint(client: TestClient):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_unknown_coupon_returns_not_found(client: TestClient, auth_headers):
    response = client.get("/api/v1/admin/coupons/999", headers=auth_headers("admin-1", role="admin"))

    assert response.status_code == 404
    assert response.json()["errors"][0]["code"] == "COUPON_NOT_FOUND"


def test_payment_of_customer_cancelled_order_cannot_be_approved(client: TestClient, db_session: Session, auth_headers):
    admin = auth_headers("admin-1", role="admin")
    shopper = auth_headers("shopper-1")
    order_id = _place_order(client, db_session, shopper, "shopper-1")
    client.put(f"/api/v1/orders/{order_id}/cancel", headers=shopper, json={})

    response = client.put(
        f"/api/v1/admin/orders/{order_id}/payment-verification",
        headers=admin,
        json={"decision": "approve"},
    )

    assert response.status_code == 409
    assert response.json()["errors"][0]["code"] == "PAYMENT_NOT_AWAITING_VERIFICATION"
    db_session.expire_all()
    order = db_session.get(Order, order_id)
    assert order.status.value == "cancelled"
    assert order.payment_status.value == "failed"


def test_update_cannot_null_required_coupon_fields(client: TestClient, db_session: Session, auth_headers):
    headers = auth_headers("admin-1", role="admin")
    coupon_id = client.post("/api/v1/admin/coupons", headers=headers, json=_coupon_payload()).json()["data"]["id"]

    for field in ("max_uses_per_user", "discount_value", "end_date", "is_active"):
        response = client.put(f"/api/v1/admin/coupons/{coupon_id}", headers=headers, json={field: None})
        assert response.status_code == 422, field

    cleared = client.put(f"/api/v1/admin/coupons/{coupon_id}", headers=headers, json={"max_uses": None})
    assert cleared.status_code == 200
    assert cleared.json()["data"]["max_uses"] is None
    assert cleared.json()["data"]["max_uses_per_user"] == 1
