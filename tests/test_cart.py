from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.security import create_access_token
from app.models.cart import CartItem
from app.models.product import Product, ProductVariant


def _create_variant(db: Session, slug: str = "linen-shirt", is_active: bool = True) -> ProductVariant:
    product = Product(
        name="Linen Shirt",
        slug=slug,
        base_price=Decimal("1500.00"),
        sale_price=Decimal("1299.00"),
        is_active=is_active,
    )
    db.add(product)
    db.flush()

    variant = ProductVariant(
        product_id=product.id,
        size="L",
        color="Olive",
        sku=f"SKU-{slug}-L",
        additional_price=Decimal("100.00"),
        is_active=True,
    )
    db.add(variant)
    db.commit()
    db.refresh(variant)
    return variant


def test_cart_requires_authentication(client: TestClient):
    response = client.get("/api/v1/cart")

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_add_item_and_price_from_catalog(client: TestClient, db_session: Session, auth_headers):
    variant = _create_variant(db_session)
    headers = auth_headers("shopper-1")

    response = client.post(
        "/api/v1/cart/items",
        headers=headers,
        json={"product_id": variant.product_id, "variant_id": variant.id, "quantity": 2},
    )
    assert response.status_code == 201

    cart = client.get("/api/v1/cart", headers=headers).json()["data"]
    assert cart["total_items"] == 2
    line = cart["items"][0]
    assert Decimal(str(line["unit_price"])) == Decimal("1399.00")
    assert Decimal(str(cart["subtotal"])) == Decimal("2798.00")
    assert line["size"] == "L"


def test_adding_same_variant_merges_quantity(client: TestClient, db_session: Session, auth_headers):
    variant = _create_variant(db_session)
    headers = auth_headers("shopper-1")
    payload = {"product_id": variant.product_id, "variant_id": variant.id, "quantity": 3}

    client.post("/api/v1/cart/items", headers=headers, json=payload)
    client.post("/api/v1/cart/items", headers=headers, json=payload)

    items = db_session.query(CartItem).filter_by(user_id="shopper-1").all()
    assert len(items) == 1
    assert items[0].quantity == 6


def test_inactive_product_cannot_be_added(client: TestClient, db_session: Session, auth_headers):
    variant = _create_variant(db_session, slug="retired-shirt", is_active=False)

    response = client.post(
        "/api/v1/cart/items",
        headers=auth_headers("shopper-1"),
        json={"product_id": variant.product_id, "variant_id": variant.id, "quantity": 1},
    )

    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "PRODUCT_UNAVAILABLE"


def test_update_and_remove_only_own_items(client: TestClient, db_session: Session, auth_headers):
    variant = _create_variant(db_session)
    owner = auth_headers("shopper-1")
    created = client.post(
        "/api/v1/cart/items",
        headers=owner,
        json={"product_id": variant.product_id, "variant_id": variant.id, "quantity": 1},
    ).json()["data"]
    item_id = created["cart_item_id"]

    other = client.put(f"/api/v1/cart/items/{item_id}", headers=auth_headers("shopper-2"), json={"quantity": 4})
    assert other.status_code == 404
    assert other.json()["errors"][0]["code"] == "CART_ITEM_NOT_FOUND"

    updated = client.put(f"/api/v1/cart/items/{item_id}", headers=owner, json={"quantity": 4})
    assert updated.status_code == 200
    assert updated.json()["data"]["quantity"] == 4

    removed = client.delete(f"/api/v1/cart/items/{item_id}", headers=owner)
    assert removed.status_code == 200
    assert db_session.query(CartItem).count() == 0


def test_quantity_is_bounded(client: TestClient, db_session: Session, auth_headers):
    variant = _create_variant(db_session)

    response = client.post(
        "/api/v1/cart/items",
        headers=auth_headers("shopper-1"),
        json={"product_id": variant.product_id, "variant_id": variant.id, "quantity": 11},
    )

    assert response.status_code == 422


def test_cookie_authenticated_writes_need_csrf_token(client: TestClient, db_session: Session):
    variant = _create_variant(db_session)
    item = {"product_id": variant.product_id, "variant_id": variant.id, "quantity": 1}
    client.cookies.set("access_token", create_access_token({"sub": "shopper-1"}))

    # Reads are never checked
    assert client.get("/api/v1/cart").status_code == 200

    forged = client.post("/api/v1/cart/items", json=item)
    assert forged.status_code == 403
    assert forged.json()["message"] == "CSRF validation failed"

    token = client.get("/api/v1/csrf-token").json()["data"]["csrf_token"]
    assert client.cookies.get("csrf_token") == token

    response = client.post("/api/v1/cart/items", json=item, headers={"X-CSRF-Token": token})
    assert response.status_code == 201
