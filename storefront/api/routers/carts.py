# storefront/api/routers/carts.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.data.database import get_db
from storefront.domain.schemas import CartCreateIn, CartMergeIn, CartOut, ItemIn, ItemUpdateIn
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/api/cart", tags=["cart"])


def get_service(db: Session):
    return CartService(db)


@router.post("", response_model=CartOut)
def create_or_get_cart(
    payload: CartCreateIn,
    user_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.create_or_get_cart(user_id, payload.cart_token, payload.currency)


@router.get("/{cart_id}", response_model=CartOut)
def get_cart(
    cart_id: int,
    user_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.get_cart(cart_id, user_id)


@router.post("/items", response_model=CartOut, status_code=201)
def add_item(
    payload: ItemIn,
    user_id: int | None = Query(None, gt=0),
    cart_token: str | None = Query(None, max_length=36),
    db: Session = Depends(get_db),
):
    """Adds to the caller's current cart, creating it on first add."""
    svc = get_service(db)
    cart = svc.create_or_get_cart(user_id, cart_token)
    return svc.add_item(cart["cart_id"], payload.sku, payload.qty, user_id)


@router.put("/items/{item_id}", response_model=CartOut)
def update_item(
    item_id: int,
    payload: ItemUpdateIn,
    user_id: int | None = Query(None, gt=0),
    cart_token: str | None = Query(None, max_length=36),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    cart = svc.find_current_cart(user_id, cart_token)
    return svc.update_item(cart["cart_id"], item_id, payload.qty, user_id)


@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(
    item_id: int,
    user_id: int | None = Query(None, gt=0),
    cart_token: str | None = Query(None, max_length=36),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    cart = svc.find_current_cart(user_id, cart_token)
    return svc.remove_item(cart["cart_id"], item_id, user_id)


@router.post("/merge", response_model=CartOut)
def merge_carts(
    payload: CartMergeIn,
    user_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.merge(payload.guest_cart_token, user_id)
