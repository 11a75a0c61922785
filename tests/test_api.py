from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from storefront.data.database import get_db
from storefront.main import create_app


@pytest.fixture
def scheduler():
    scheduler = MagicMock()
    scheduler.is_initialized = False
    scheduler.get_status.return_value = {"enabled": False, "initialized": False, "interval": 60.0}
    scheduler.trigger_cleanup.return_value = {"status": "queued", "task_id": "task-9"}
    return scheduler


@pytest.fixture
def app(session_factory, scheduler):
    fallback = MagicMock()
    fallback.is_running = True
    fallback.get_status.return_value = {
        "is_running": True,
        "interval": 300.0,
        "next_run": None,
        "last_result": None,
    }
    app = create_app(scheduler=scheduler, fallback=fallback)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    # no context manager: the lifespan (create_all, sweepers) stays out of tests
    return TestClient(app)


@pytest.fixture
def towel(make_product):
    return make_product("TOWEL-01", quantity=10, price="349.00")


def add(client, sku, qty, **params):
    return client.post("/api/cart/items", json={"sku": sku, "qty": qty}, params=params)


def test_add_item_creates_cart_and_combines_lines(client, towel):
    first = add(client, "TOWEL-01", 2)
    assert first.status_code == 201
    token = first.json()["token"]

    second = add(client, "TOWEL-01", 1, cart_token=token)

    assert second.status_code == 201
    body = second.json()
    assert body["cart_id"] == first.json()["cart_id"]
    assert [(i["sku"], i["quantity"]) for i in body["items"]] == [("TOWEL-01", 3)]
    assert body["subtotal"] == "1047.00"


@pytest.mark.parametrize("qty", [0, 1001])
def test_add_item_validation_envelope(client, towel, qty):
    response = add(client, "TOWEL-01", qty)

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"][0]["field"] == "qty"


def test_add_unknown_product_is_404(client):
    response = add(client, "NOPE-1", 1)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PRODUCT_NOT_FOUND"


def test_update_and_remove_item(client, towel, make_product):
    make_product("LINEN-QS", quantity=2, price="1899.00")
    cart = add(client, "TOWEL-01", 1, user_id=3).json()
    cart = add(client, "LINEN-QS", 1, user_id=3).json()
    towel_line = next(i for i in cart["items"] if i["sku"] == "TOWEL-01")
    linen_line = next(i for i in cart["items"] if i["sku"] == "LINEN-QS")

    updated = client.put(f"/api/cart/items/{towel_line['id']}", json={"qty": 4}, params={"user_id": 3})
    assert updated.status_code == 200
    assert {i["sku"]: i["quantity"] for i in updated.json()["items"]} == {"TOWEL-01": 4, "LINEN-QS": 1}

    removed = client.delete(f"/api/cart/items/{linen_line['id']}", params={"user_id": 3})
    assert removed.status_code == 200
    assert [i["sku"] for i in removed.json()["items"]] == ["TOWEL-01"]

    missing = client.delete(f"/api/cart/items/{linen_line['id']}", params={"user_id": 3})
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "CART_ITEM_NOT_FOUND"


def test_merge_guest_cart(client, towel):
    guest = add(client, "TOWEL-01", 2).json()
    add(client, "TOWEL-01", 1, user_id=7)

    merged = client.post("/api/cart/merge", json={"guest_cart_token": guest["token"]}, params={"user_id": 7})
    again = client.post("/api/cart/merge", json={"guest_cart_token": guest["token"]}, params={"user_id": 7})

    assert merged.status_code == 200
    assert merged.json()["items"][0]["quantity"] == 3
    assert again.json()["items"] == merged.json()["items"]
    assert client.get(f"/api/cart/{guest['cart_id']}").json()["status"] == "merged"


def test_merge_of_another_users_cart_is_403(client, towel):
    owned = add(client, "TOWEL-01", 2, user_id=7).json()

    response = client.post("/api/cart/merge", json={"guest_cart_token": owned["token"]}, params={"user_id": 8})

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ACCESS_DENIED"
    assert client.get(f"/api/cart/{owned['cart_id']}").json()["status"] == "active"


def test_checkout_session_lifecycle(client, towel, address):
    cart = add(client, "TOWEL-01", 3).json()
    payload = {
        "cart_id": cart["cart_id"],
        "shipping_address": address,
        "billing_address": address,
        "shipping_method": "express",
    }

    created = client.post("/api/checkout/sessions", json=payload)
    assert created.status_code == 201
    session = created.json()
    assert session["status"] == "active"
    assert session["time_remaining"] == 15
    assert session["items"] == [
        {"product_id": towel.id, "sku": "TOWEL-01", "quantity": 3, "hold_status": "active"}
    ]
    assert client.get(f"/api/admin/products/{towel.id}/stock").json()["quantity"] == 7

    fetched = client.get(f"/api/checkout/sessions/{session['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["shipping_method"] == "express"

    duplicate = client.post("/api/checkout/sessions", json=payload)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "SESSION_ALREADY_ACTIVE"

    cancelled = client.post(f"/api/checkout/sessions/{session['id']}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert client.get(f"/api/admin/products/{towel.id}/stock").json()["quantity"] == 10


def test_checkout_names_the_short_sku(client, make_product, address):
    make_product("SANI-500", quantity=1)
    cart = add(client, "SANI-500", 3).json()

    response = client.post(
        "/api/checkout/sessions",
        json={
            "cart_id": cart["cart_id"],
            "shipping_address": address,
            "billing_address": address,
            "shipping_method": "standard",
        },
    )

    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "INSUFFICIENT_STOCK"
    assert "SANI-500" in error["message"]
    assert error["details"] == [{"sku": "SANI-500", "requested": 3, "available": 1}]


def test_checkout_address_validation(client, towel, address):
    cart = add(client, "TOWEL-01", 1).json()
    bad = dict(address, email="not-an-email")

    response = client.post(
        "/api/checkout/sessions",
        json={
            "cart_id": cart["cart_id"],
            "shipping_address": bad,
            "billing_address": address,
            "shipping_method": "standard",
        },
    )

    assert response.status_code == 422
    fields = [d["field"] for d in response.json()["error"]["details"]]
    assert "shipping_address.email" in fields


def test_unknown_session_is_404(client):
    response = client.get("/api/checkout/sessions/999")

    assert response.status_code == 404
    assert response.json() == {
        "error": {"code": "SESSION_NOT_FOUND", "message": "Checkout session 999 not found"}
    }


def test_admin_stock_adjustment_and_history(client, towel):
    response = client.put(
        f"/api/admin/products/{towel.id}/stock",
        json={"quantity": 25, "reason": "recount", "note": "Annual count"},
        params={"user_id": 1},
    )
    assert response.status_code == 200
    assert response.json()["quantity"] == 25

    history = client.get(f"/api/admin/products/{towel.id}/stock/history", params={"limit": 1}).json()
    assert history["total"] == 2
    assert len(history["entries"]) == 1
    latest = history["entries"][0]
    assert (latest["delta"], latest["formatted_delta"], latest["reason"]) == (15, "+15", "recount")
    assert latest["created_by"] == 1


@pytest.mark.parametrize("payload", [
    {"delta": 1, "quantity": 2},
    {"delta": -1, "reason": "order_hold"},
    {"quantity": -5},
])
def test_admin_stock_adjustment_validation(client, towel, payload):
    response = client.put(f"/api/admin/products/{towel.id}/stock", json=payload)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_admin_reports(client, towel, make_product):
    make_product("SANI-500", quantity=3)

    assert [i["sku"] for i in client.get("/api/admin/inventory/low-stock").json()] == ["SANI-500"]
    assert client.get("/api/admin/inventory/out-of-stock").json() == []
    assert client.get("/api/admin/inventory/summary").json()["total_products"] == 2
    assert client.get("/api/admin/inventory/audit").json() == {"checked": 2, "mismatches": []}


def test_cleanup_endpoints(client, scheduler):
    status = client.get("/api/admin/checkout/cleanup/status").json()
    assert status["primary"]["initialized"] is False
    assert status["fallback"]["is_running"] is True

    triggered = client.post("/api/admin/checkout/cleanup/trigger")
    assert triggered.json() == {"status": "queued", "task_id": "task-9"}
    scheduler.trigger_cleanup.assert_called_once_with()


def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["database"] == "ok"
    assert body["fallback_cleanup"] is True


def test_unexpected_errors_get_a_generic_message(app):
    client = TestClient(app, raise_server_exceptions=False)

    with patch(
        "storefront.services.inventory_service.InventoryService.get_summary",
        side_effect=RuntimeError("password=hunter2"),
    ):
        response = client.get("/api/admin/inventory/summary")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "INTERNAL_ERROR"
    assert "hunter2" not in response.text
