# storefront/api/routers/admin.py
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from storefront.data.database import get_db
from storefront.domain.schemas import (
    InventoryOut,
    InventorySummaryOut,
    LedgerAuditOut,
    StockAdjustIn,
    StockHistoryOut,
)
from storefront.services.inventory_service import InventoryService, ledger_entry_dict

router = APIRouter(prefix="/api/admin", tags=["admin"])


def get_service(db: Session):
    return InventoryService(db)


@router.put("/products/{product_id}/stock", response_model=InventoryOut)
def adjust_stock(
    product_id: int,
    payload: StockAdjustIn,
    user_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return svc.adjust_stock(
        product_id,
        delta=payload.delta,
        quantity=payload.quantity,
        reason=payload.reason,
        note=payload.note,
        actor_id=user_id,
        low_stock_threshold=payload.low_stock_threshold,
    )


@router.get("/products/{product_id}/stock", response_model=InventoryOut)
def get_stock(product_id: int, db: Session = Depends(get_db)):
    return get_service(db).get_inventory(product_id)


@router.get("/products/{product_id}/stock/history", response_model=StockHistoryOut)
def get_stock_history(
    product_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    entries = [ledger_entry_dict(e) for e in svc.get_history(product_id, limit)]
    return {
        "product_id": product_id,
        "total": svc.count_history(product_id),
        "entries": entries,
    }


@router.get("/inventory/low-stock", response_model=list[InventoryOut])
def low_stock(
    limit: int = Query(50, ge=1, le=500),
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
):
    return get_service(db).get_low_stock(limit, page)


@router.get("/inventory/out-of-stock", response_model=list[InventoryOut])
def out_of_stock(
    limit: int = Query(50, ge=1, le=500),
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
):
    return get_service(db).get_out_of_stock(limit, page)


@router.get("/inventory/summary", response_model=InventorySummaryOut)
def inventory_summary(db: Session = Depends(get_db)):
    return get_service(db).get_summary()


@router.get("/inventory/audit", response_model=LedgerAuditOut)
def inventory_audit(db: Session = Depends(get_db)):
    """Ledger sums versus projections. Reports mismatches, never repairs them."""
    return get_service(db).audit()


@router.get("/checkout/cleanup/status")
def cleanup_status(request: Request):
    return {
        "primary": request.app.state.cleanup_scheduler.get_status(),
        "fallback": request.app.state.cleanup_fallback.get_status(),
    }


@router.post("/checkout/cleanup/trigger")
def trigger_cleanup(request: Request):
    return request.app.state.cleanup_scheduler.trigger_cleanup()
