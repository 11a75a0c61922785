"""
Shared fixtures.

Every test gets its own SQLite file under tmp_path so that sweeper threads
and the test body can open independent connections to the same database.
"""

import os

# settings are read at import time; keep the module-level engine off postgres/redis
os.environ.setdefault("DATABASE_URL", "sqlite:///./.pytest-storefront.db")
os.environ["DISABLE_REDIS"] = "true"

from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from storefront.data.database import Base, build_engine
from storefront.data import models  # noqa: F401
from storefront.data.models.product import ProductModel
from storefront.domain.enums import StockReason
from storefront.services.cart_service import CartService
from storefront.services.inventory_service import InventoryService


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'storefront.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_product(db):
    def _make(sku, quantity=0, price="100.00", status="published"):
        product = ProductModel(sku=sku, name=sku.title(), price=Decimal(price), status=status)
        db.add(product)
        db.commit()
        if quantity:
            InventoryService(db).apply_delta(product.id, quantity, StockReason.INITIAL, note="test stock")
        return product

    return _make


@pytest.fixture
def make_cart(db):
    """Build a cart from {sku: qty}; returns the cart dict."""

    def _make(lines, user_id=None):
        svc = CartService(db)
        cart = svc.create_or_get_cart(user_id=user_id)
        for sku, qty in lines.items():
            cart = svc.add_item(cart["cart_id"], sku, qty, user_id)
        return cart

    return _make


@pytest.fixture
def address():
    return {
        "name": "Front Desk",
        "phone": "+91 22 5555 0100",
        "email": "procurement@seaview-hotel.example",
        "line1": "12 Marine Drive",
        "line2": None,
        "city": "Mumbai",
        "state": "MH",
        "postal_code": "400020",
        "country": "IN",
    }
