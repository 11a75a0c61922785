from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from storefront.data.models.checkout_session import CheckoutSessionModel
from storefront.data.models.stock_ledger import StockLedgerModel
from storefront.domain.enums import CheckoutStatus, ReleaseOutcome, StockReason
from storefront.domain.errors import (
    AccessDenied,
    CartConflict,
    EmptyCart,
    InsufficientStock,
    SessionAlreadyActive,
    SessionNotActive,
    SessionNotFound,
    ValidationFailed,
)
from storefront.repos.cart_repo import CartRepo
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService
from storefront.services.inventory_service import InventoryService
from storefront.utils.clock import utcnow


def ledger_sum(db, product_id, reason):
    return db.execute(
        select(func.coalesce(func.sum(StockLedgerModel.delta), 0)).where(
            StockLedgerModel.product_id == product_id,
            StockLedgerModel.reason == reason,
        )
    ).scalar_one()


def ledger_count(db, reason):
    return db.execute(
        select(func.count(StockLedgerModel.id)).where(StockLedgerModel.reason == reason)
    ).scalar_one()


def quantity(db, product):
    return InventoryService(db).get_inventory(product.id)["quantity"]


@pytest.fixture
def towel(make_product):
    return make_product("TOWEL-01", quantity=10, price="349.00")


@pytest.fixture
def linen(make_product):
    return make_product("LINEN-QS", quantity=4, price="1899.00")


def start(db, cart, address, **kwargs):
    return CheckoutService(db).create_session(cart["cart_id"], address, address, "standard", **kwargs)


def test_insufficient_stock_creates_nothing(db, make_product, make_cart, address):
    towel = make_product("TOWEL-01", quantity=2)
    cart = make_cart({"TOWEL-01": 3})

    with pytest.raises(InsufficientStock) as exc:
        start(db, cart, address)

    assert exc.value.skus == ["TOWEL-01"]
    assert exc.value.details == [{"sku": "TOWEL-01", "requested": 3, "available": 2}]
    assert db.execute(select(func.count(CheckoutSessionModel.id))).scalar_one() == 0
    assert InventoryService(db).count_history(towel.id) == 1
    assert quantity(db, towel) == 2


def test_shortage_on_one_line_rolls_back_every_hold(db, towel, linen, make_cart, address):
    cart = make_cart({"TOWEL-01": 2, "LINEN-QS": 5})

    with pytest.raises(InsufficientStock) as exc:
        start(db, cart, address)

    assert exc.value.skus == ["LINEN-QS"]
    assert quantity(db, towel) == 10
    assert quantity(db, linen) == 4
    assert ledger_count(db, StockReason.ORDER_HOLD) == 0


def test_session_holds_every_line(db, towel, linen, make_cart, address):
    cart = make_cart({"TOWEL-01": 3, "LINEN-QS": 1}, user_id=8)
    now = utcnow()

    session = start(db, cart, address, user_id=8, now=now)

    assert session["status"] == "active"
    assert session["shipping_method"] == "standard"
    assert session["shipping_address"]["city"] == "Mumbai"
    assert session["currency"] == "INR"
    assert session["subtotal"] == Decimal("349.00") * 3 + Decimal("1899.00")
    assert session["time_remaining"] == 15
    assert session["is_expired"] is False
    assert {(i["sku"], i["quantity"], i["hold_status"]) for i in session["items"]} == {
        ("TOWEL-01", 3, "active"),
        ("LINEN-QS", 1, "active"),
    }
    assert quantity(db, towel) == 7
    assert quantity(db, linen) == 3
    assert ledger_sum(db, towel.id, StockReason.ORDER_HOLD) == -3


def test_session_snapshots_current_prices(db, towel, make_cart, address):
    cart = make_cart({"TOWEL-01": 2})
    towel.price = Decimal("399.00")
    db.commit()

    session = start(db, cart, address)

    assert session["subtotal"] == Decimal("798.00")


def test_second_session_for_cart_is_rejected(db, towel, make_cart, address):
    cart = make_cart({"TOWEL-01": 1})
    first = start(db, cart, address)

    with pytest.raises(SessionAlreadyActive) as exc:
        start(db, cart, address)

    assert exc.value.status_code == 409
    assert exc.value.details == {"cart_id": cart["cart_id"], "session_id": first["id"]}
    assert quantity(db, towel) == 9


def test_stale_session_is_expired_before_a_new_one(db, towel, make_cart, address):
    cart = make_cart({"TOWEL-01": 4})
    t0 = utcnow()
    old = start(db, cart, address, ttl_seconds=60, now=t0)

    new = start(db, cart, address, now=t0 + timedelta(seconds=120))

    svc = CheckoutService(db)
    assert svc.get_session(old["id"])["status"] == "expired"
    assert new["status"] == "active"
    assert quantity(db, towel) == 6
    assert ledger_sum(db, towel.id, StockReason.ORDER_RELEASE) == 4


def test_empty_cart_and_foreign_cart(db, towel, make_cart, address):
    empty = CartService(db).create_or_get_cart()
    with pytest.raises(EmptyCart):
        start(db, empty, address)

    cart = make_cart({"TOWEL-01": 1}, user_id=1)
    with pytest.raises(AccessDenied):
        start(db, cart, address, user_id=2)


def test_bad_ttl_and_shipping_method(db, towel, make_cart, address):
    cart = make_cart({"TOWEL-01": 1})
    svc = CheckoutService(db)

    with pytest.raises(ValidationFailed):
        svc.create_session(cart["cart_id"], address, address, "standard", ttl_seconds=0)
    with pytest.raises(ValidationFailed):
        svc.create_session(cart["cart_id"], address, address, "teleport")


def test_expire_releases_holds_once(db, towel, linen, make_cart, address):
    cart = make_cart({"TOWEL-01": 3, "LINEN-QS": 2})
    session = start(db, cart, address)
    svc = CheckoutService(db)

    assert svc.expire_or_cancel(session["id"], CheckoutStatus.EXPIRED) is ReleaseOutcome.RELEASED
    assert svc.expire_or_cancel(session["id"], CheckoutStatus.EXPIRED) is ReleaseOutcome.ALREADY_TERMINAL
    assert svc.expire_or_cancel(session["id"], "cancelled") is ReleaseOutcome.ALREADY_TERMINAL

    assert ledger_count(db, StockReason.ORDER_RELEASE) == 2
    assert quantity(db, towel) == 10
    assert quantity(db, linen) == 4
    for product in (towel, linen):
        assert ledger_sum(db, product.id, StockReason.ORDER_HOLD) == -ledger_sum(
            db, product.id, StockReason.ORDER_RELEASE
        )

    expired = svc.get_session(session["id"])
    assert expired["status"] == "expired"
    assert expired["closed_at"] is not None
    assert {i["hold_status"] for i in expired["items"]} == {"released"}


def test_release_uses_held_quantity_even_if_cart_changes(db, towel, make_cart, address):
    cart = make_cart({"TOWEL-01": 3})
    session = start(db, cart, address)
    carts = CartService(db)
    item_id = cart["items"][0]["id"]
    carts.update_item(cart["cart_id"], item_id, 7)

    CheckoutService(db).expire_or_cancel(session["id"], CheckoutStatus.EXPIRED)

    assert quantity(db, towel) == 10


def test_expire_rejects_non_releasing_status(db, towel, make_cart, address):
    session = start(db, make_cart({"TOWEL-01": 1}), address)

    with pytest.raises(ValidationFailed):
        CheckoutService(db).expire_or_cancel(session["id"], CheckoutStatus.COMPLETED)


def test_unknown_session(db):
    svc = CheckoutService(db)
    with pytest.raises(SessionNotFound):
        svc.get_session(404)
    with pytest.raises(SessionNotFound):
        svc.expire_or_cancel(404, CheckoutStatus.EXPIRED)


def test_cancel_session(db, towel, make_cart, address):
    cart = make_cart({"TOWEL-01": 2}, user_id=5)
    session = start(db, cart, address, user_id=5)
    svc = CheckoutService(db)

    with pytest.raises(AccessDenied):
        svc.cancel_session(session["id"], user_id=6)

    cancelled = svc.cancel_session(session["id"], user_id=5)

    assert cancelled["status"] == "cancelled"
    assert quantity(db, towel) == 10


def test_complete_session_keeps_stock_and_converts_cart(db, towel, make_cart, address):
    cart = make_cart({"TOWEL-01": 2})
    session = start(db, cart, address)
    svc = CheckoutService(db)

    completed = svc.complete_session(session["id"])

    assert completed["status"] == "completed"
    assert {i["hold_status"] for i in completed["items"]} == {"confirmed"}
    assert CartService(db).get_cart(cart["cart_id"])["status"] == "converted"
    assert svc.expire_or_cancel(session["id"], CheckoutStatus.EXPIRED) is ReleaseOutcome.ALREADY_TERMINAL
    assert ledger_count(db, StockReason.ORDER_RELEASE) == 0
    assert quantity(db, towel) == 8
    assert InventoryService(db).verify_product(towel.id) == 8


def test_complete_rolls_back_on_cart_version_clash(db, towel, make_cart, address, monkeypatch):
    cart = make_cart({"TOWEL-01": 2})
    session = start(db, cart, address)
    svc = CheckoutService(db)
    monkeypatch.setattr(CartRepo, "update_cart_version", lambda self, **kwargs: 0)

    with pytest.raises(CartConflict):
        svc.complete_session(session["id"])

    monkeypatch.undo()
    current = svc.get_session(session["id"])
    assert current["status"] == "active"
    assert {i["hold_status"] for i in current["items"]} == {"active"}
    assert CartService(db).get_cart(cart["cart_id"])["status"] == "active"
    assert svc.complete_session(session["id"])["status"] == "completed"


def test_expired_session_cannot_complete(db, towel, make_cart, address):
    t0 = utcnow()
    session = start(db, make_cart({"TOWEL-01": 1}), address, ttl_seconds=30, now=t0)

    with pytest.raises(SessionNotActive):
        CheckoutService(db).complete_session(session["id"], now=t0 + timedelta(seconds=31))


def test_time_remaining_counts_down(db, towel, make_cart, address):
    t0 = utcnow()
    session = start(db, make_cart({"TOWEL-01": 1}), address, ttl_seconds=600, now=t0)
    svc = CheckoutService(db)

    assert svc.get_session(session["id"], now=t0 + timedelta(seconds=150))["time_remaining"] == 7
    later = svc.get_session(session["id"], now=t0 + timedelta(seconds=601))
    assert later["time_remaining"] == 0
    assert later["is_expired"] is True
