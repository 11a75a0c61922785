# storefront/api/routers/checkout.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.data.database import get_db
from storefront.domain.schemas import CheckoutSessionCreateIn, CheckoutSessionOut
from storefront.services.checkout_service import CheckoutService

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


def get_service(db: Session):
    return CheckoutService(db)


@router.post("/sessions", response_model=CheckoutSessionOut, status_code=201)
def create_session(
    payload: CheckoutSessionCreateIn,
    user_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    """
    Snapshots the cart and holds stock for every line until the session
    expires. 409 INSUFFICIENT_STOCK lists the SKUs that could not be held.
    """
    svc = get_service(db)
    return svc.create_session(
        cart_id=payload.cart_id,
        shipping_address=payload.shipping_address.model_dump(),
        billing_address=payload.billing_address.model_dump(),
        shipping_method=payload.shipping_method,
        user_id=user_id,
    )


@router.get("/sessions/{session_id}", response_model=CheckoutSessionOut)
def get_session(
    session_id: int,
    user_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.get_session(session_id, user_id)


@router.post("/sessions/{session_id}/cancel", response_model=CheckoutSessionOut)
def cancel_session(
    session_id: int,
    user_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.cancel_session(session_id, user_id)
